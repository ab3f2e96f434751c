"""코디네이터와의 WebSocket 시그널링 채널 (websockets 클라이언트)."""
import json
import logging
from typing import Any, AsyncIterator, Optional, Tuple

import websockets
from pydantic import ValidationError

from ..shared.errors import ConnectivityError
from ..shared.schemas import Envelope, EventType, envelope

logger = logging.getLogger(__name__)


class SignalingChannel:
    """``{"type", "data"}`` 봉투를 주고받는 WebSocket 채널.

    async for로 반복하면 ``(event, data)`` 튜플을 돌려줍니다. 형식이 잘못된
    프레임은 로그만 남기고 건너뜁니다.

    Examples:
        >>> async with SignalingChannel("ws://localhost:3000/ws") as channel:
        ...     await channel.send(EventType.JOIN_ROOM, "meeting-1")
        ...     async for event, data in channel:
        ...         print(event, data)
    """

    def __init__(self, url: str):
        self.url = url
        self._ws: Optional[Any] = None

    async def connect(self) -> "SignalingChannel":
        try:
            self._ws = await websockets.connect(self.url)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise ConnectivityError(f"cannot connect to {self.url}: {e}") from e
        logger.info(f"[Channel] 코디네이터 연결: {self.url}")
        return self

    async def send(self, event: EventType, data: Any = None) -> None:
        if self._ws is None:
            raise ConnectivityError("signaling channel is not connected")
        try:
            await self._ws.send(json.dumps(envelope(event, data)))
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectivityError(f"signaling channel closed: {e}") from e

    def __aiter__(self) -> AsyncIterator[Tuple[str, Any]]:
        return self._receive()

    async def _receive(self) -> AsyncIterator[Tuple[str, Any]]:
        if self._ws is None:
            raise ConnectivityError("signaling channel is not connected")
        try:
            async for raw in self._ws:
                try:
                    message = Envelope.model_validate_json(raw)
                except ValidationError as e:
                    logger.warning(f"[Channel] 잘못된 프레임 무시: {e.errors()}")
                    continue
                yield message.type, message.data
        except websockets.exceptions.ConnectionClosedError as e:
            raise ConnectivityError(f"signaling channel closed: {e}") from e
        logger.info("[Channel] 코디네이터 연결 종료")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def __aenter__(self) -> "SignalingChannel":
        return await self.connect()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
