"""릴레이 코디네이터 모듈.

룸 멤버십의 서버측 권한자로서 시그널링 메시지와 위치 갱신을 같은 룸의
참가자들에게 중계합니다. 시그널 페이로드의 의미는 해석하지 않으며
라우팅 메타데이터(roomId, to)만 사용합니다.

메시지 흐름:
    1. 연결 수락 시 ParticipantId 발급 (connected 이벤트)
    2. join-room: 다른 참가자에게 user-joined 브로드캐스트 → 본인에게 room-state
    3. webrtc-signal: from을 발신자 ID로 덮어쓴 뒤 대상(또는 룸 전체)에게 전달
    4. location-update: 최신 위치 저장 후 다른 참가자에게 전달
    5. leave-room / 연결 끊김: 룸에서 제거 후 user-left 브로드캐스트

Concurrency:
    - 연결마다 수신 루프 하나가 dispatch()를 순서대로 호출 (연결 단위 직렬화)
    - 같은 룸에 대한 변경과 팬아웃은 registry.lock(room) 구간 안에서 수행
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from pydantic import ValidationError

from ..shared.errors import SignalingError
from ..shared.schemas import (
    Envelope,
    EventType,
    JoinRoom,
    LatLng,
    LocationEntry,
    LocationUpdate,
    RoomState,
    UserEvent,
    WebRTCSignal,
    envelope,
)
from .registry import RoomRegistry

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    """코디네이터에 연결된 참가자.

    Attributes:
        peer_id (str): 연결 시 발급된 ParticipantId
        websocket: ``send_json(dict)`` 코루틴을 제공하는 연결 객체
    """
    peer_id: str
    websocket: Any


class RelayCoordinator:
    """룸 멤버십과 시그널링 중계를 담당하는 코디네이터.

    Attributes:
        registry (RoomRegistry): 주입된 룸 레지스트리
        connections (Dict[str, Participant]): 참가자 ID → 연결 (룸과 무관한 전역 인덱스)

    Examples:
        >>> coordinator = RelayCoordinator(RoomRegistry())
        >>> peer_id = await coordinator.connect(websocket)
        >>> await coordinator.dispatch(peer_id, {"type": "join-room", "data": "meeting-1"})
        >>> await coordinator.disconnect(peer_id)
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry
        self.connections: Dict[str, Participant] = {}

        self._handlers: Dict[str, Callable[[str, Any], Awaitable[None]]] = {
            EventType.JOIN_ROOM.value: self._on_join_room,
            EventType.LEAVE_ROOM.value: self._on_leave_room,
            EventType.WEBRTC_SIGNAL.value: self._on_webrtc_signal,
            EventType.LOCATION_UPDATE.value: self._on_location_update,
        }

    # ------------------------------------------------------------------
    # 연결 수명주기
    # ------------------------------------------------------------------

    async def connect(self, websocket: Any, peer_id: Optional[str] = None) -> str:
        """새 연결을 등록하고 ParticipantId를 발급합니다.

        발급된 ID는 connected 이벤트로 클라이언트에 알립니다.
        """
        peer_id = peer_id or str(uuid.uuid4())
        if peer_id in self.connections:
            raise ValueError(f"participant id {peer_id} is already live")

        self.connections[peer_id] = Participant(peer_id=peer_id, websocket=websocket)
        logger.info(f"[Relay] 피어 {peer_id[:8]} 연결됨 (연결 수: {len(self.connections)})")

        await self._send(peer_id, envelope(EventType.CONNECTED, UserEvent(user_id=peer_id)))
        return peer_id

    async def disconnect(self, peer_id: str) -> None:
        """연결 종료 처리. 룸에 있었다면 퇴장 절차를 한 번만 수행합니다."""
        self.connections.pop(peer_id, None)
        await self.leave(peer_id)
        logger.info(f"[Relay] 피어 {peer_id[:8]} 연결 해제 정리 완료")

    # ------------------------------------------------------------------
    # 메시지 디스패치
    # ------------------------------------------------------------------

    async def dispatch(self, peer_id: str, message: Any) -> None:
        """수신한 WebSocket 메시지 하나를 처리합니다.

        형식 오류나 라우팅 불가 메시지는 SignalingError로 분류되어 로그만 남기고
        버려집니다. 발신자에게는 오류를 돌려보내지 않습니다.
        """
        try:
            await self._dispatch(peer_id, message)
        except SignalingError as e:
            logger.warning(f"[Relay] 메시지 폐기 - 피어: {peer_id[:8]}: {e}")

    async def _dispatch(self, peer_id: str, message: Any) -> None:
        try:
            env = Envelope.model_validate(message)
        except ValidationError as e:
            raise SignalingError(f"malformed envelope: {e.error_count()} errors") from e

        handler = self._handlers.get(env.type)
        if handler is None:
            raise SignalingError(f"unknown event type '{env.type}'")

        try:
            await handler(peer_id, env.data)
        except ValidationError as e:
            raise SignalingError(f"invalid '{env.type}' payload: {e.error_count()} errors") from e

    async def _on_join_room(self, peer_id: str, data: Any) -> None:
        await self.join(peer_id, JoinRoom.parse(data).room_id)

    async def _on_leave_room(self, peer_id: str, data: Any) -> None:
        await self.leave(peer_id)

    async def _on_webrtc_signal(self, peer_id: str, data: Any) -> None:
        message = WebRTCSignal.model_validate(data)
        await self.relay(
            peer_id,
            message.room_id,
            message.signal.model_dump(exclude_none=True),
            to=message.to,
        )

    async def _on_location_update(self, peer_id: str, data: Any) -> None:
        message = LocationUpdate.model_validate(data)
        await self.location_update(peer_id, message.room_id, message.lat, message.lng)

    # ------------------------------------------------------------------
    # 코디네이터 연산
    # ------------------------------------------------------------------

    async def join(self, peer_id: str, room_id: str) -> None:
        """참가자를 룸에 입장시킵니다.

        이미 다른 룸(또는 같은 룸)에 있으면 먼저 퇴장 절차를 수행합니다.
        다른 참가자에게 user-joined를 먼저 보내고, 그 다음 본인에게만
        room-state 스냅샷을 보냅니다. 스냅샷의 users에는 본인이 포함되지 않습니다.

        Args:
            peer_id (str): 입장하는 참가자 ID
            room_id (str): 공백 제거된 룸 이름
        """
        if self.registry.get_peer_room(peer_id) is not None:
            await self.leave(peer_id)

        async with self.registry.lock(room_id):
            room = self.registry.join_room(room_id, peer_id)
            others = [p for p in sorted(room.participants) if p != peer_id]

            await self._broadcast(
                others,
                envelope(EventType.USER_JOINED, UserEvent(user_id=peer_id)),
            )

            state = RoomState(
                users=others,
                locations=[
                    LocationEntry(user_id=user_id, lat=loc.lat, lng=loc.lng)
                    for user_id, loc in room.locations.items()
                ],
            )
            await self._send(peer_id, envelope(EventType.ROOM_STATE, state))

    async def leave(self, peer_id: str) -> bool:
        """참가자를 현재 룸에서 퇴장시킵니다.

        룸이 비게 되면 레지스트리에서 삭제되고, 남은 참가자들에게 user-left를
        브로드캐스트합니다. 룸에 없던 참가자에 대해서는 아무것도 하지 않으므로
        명시적 퇴장 후 연결이 끊겨도 user-left는 한 번만 전송됩니다.

        Returns:
            bool: 실제로 퇴장 처리했으면 True
        """
        room_name = self.registry.get_peer_room(peer_id)
        if room_name is None:
            return False

        async with self.registry.lock(room_name):
            room = self.registry.leave_room(peer_id)
            if room is None:
                return False
            await self._broadcast(
                sorted(room.participants),
                envelope(EventType.USER_LEFT, UserEvent(user_id=peer_id)),
            )
        return True

    async def relay(
        self,
        peer_id: str,
        room_id: str,
        signal: dict,
        to: Optional[str] = None,
    ) -> bool:
        """시그널을 중계합니다.

        호출자의 현재 룸이 room_id와 다르면 (룸 전환 후의 오래된 메시지 등)
        로그만 남기고 버립니다. from은 항상 호출자 ID로 덮어씁니다.

        Args:
            peer_id (str): 발신자 ID
            room_id (str): 발신자가 주장하는 룸
            signal (dict): 불투명한 시그널 페이로드
            to (Optional[str]): 대상 참가자. 없으면 룸의 다른 모든 참가자

        Returns:
            bool: 하나 이상의 대상에게 전달을 시도했으면 True
        """
        current_room = self.registry.get_peer_room(peer_id)
        if current_room != room_id:
            logger.warning(f"[Relay] 피어 {peer_id[:8]}가 룸 '{room_id}'에 시그널 시도, "
                           f"현재 룸: '{current_room}'")
            return False

        message = envelope(
            EventType.WEBRTC_SIGNAL,
            {"roomId": room_id, "from": peer_id, "signal": signal},
        )

        if to:
            if to not in self.connections:
                logger.warning(f"[Relay] 알 수 없는 대상 {to[:8]} - {peer_id[:8]}의 "
                               f"{signal.get('type')} 시그널 폐기")
                return False
            logger.debug(f"[Relay] {signal.get('type')} 시그널: {peer_id[:8]} -> {to[:8]}")
            await self._send(to, message)
            return True

        async with self.registry.lock(room_id):
            targets = self.registry.get_other_peers(room_id, peer_id)
            await self._broadcast(targets, message)
        return True

    async def location_update(self, peer_id: str, room_id: str, lat: float, lng: float) -> bool:
        """참가자의 최신 위치를 저장하고 다른 참가자에게 전달합니다.

        Returns:
            bool: 저장 및 팬아웃했으면 True, 룸 불일치/룸 없음이면 False (no-op)
        """
        if self.registry.get_peer_room(peer_id) != room_id:
            logger.debug(f"[Relay] 피어 {peer_id[:8]}의 위치 갱신 무시 (룸 불일치: '{room_id}')")
            return False

        async with self.registry.lock(room_id):
            if not self.registry.set_location(room_id, peer_id, LatLng(lat=lat, lng=lng)):
                logger.debug(f"[Relay] 룸 '{room_id}' 없음 - 위치 갱신 무시")
                return False

            await self._broadcast(
                self.registry.get_other_peers(room_id, peer_id),
                envelope(
                    EventType.LOCATION_UPDATE,
                    LocationUpdate(room_id=room_id, user_id=peer_id, lat=lat, lng=lng),
                ),
            )
        return True

    # ------------------------------------------------------------------
    # 전송
    # ------------------------------------------------------------------

    async def _send(self, peer_id: str, message: dict) -> bool:
        participant = self.connections.get(peer_id)
        if participant is None:
            return False
        try:
            await participant.websocket.send_json(message)
            return True
        except Exception as e:
            # 끊긴 연결은 자신의 수신 루프에서 disconnect()로 정리됨
            logger.error(f"[Relay] 피어 {peer_id[:8]}에 {message.get('type')} 전송 중 오류: {e}")
            return False

    async def _broadcast(self, peer_ids: Iterable[str], message: dict) -> None:
        for peer_id in peer_ids:
            await self._send(peer_id, message)

    def stats(self) -> dict:
        return {
            "connections": len(self.connections),
            "rooms": len(self.registry.rooms),
        }
