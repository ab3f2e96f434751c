"""피어 링크 모듈.

원격 참가자 한 명과의 관계를 담당하는 상태 머신입니다. 피어 전송(Peer Transport)
인스턴스를 하나 소유하며, offer/answer/ICE candidate 교환을 구동합니다.

상태 전이:
    IDLE -> OFFERING -> AWAITING_ANSWER -> CONNECTED
    IDLE / OFFERING / AWAITING_ANSWER -> CLOSED (close)
    CONNECTED -> FAILED -> CLOSED (복구 불가능한 전송 실패)
    AWAITING_ANSWER -> FAILED (협상 타임아웃)

Concurrency:
    링크마다 asyncio.Task 하나가 inbox 큐를 소비합니다. offer 명령, 수신 시그널,
    ICE 실패, 타임아웃은 모두 inbox를 거쳐 순서대로 처리되므로 전송 객체에 대한
    비동기 호출이 서로 겹치지 않습니다.

Glare:
    양쪽이 동시에 offer를 보낸 경우 ID가 사전순으로 작은 쪽이 polite가 되어 자신의
    offer를 롤백(전송 객체 재생성)하고 상대 offer에 answer합니다. impolite 쪽은 수신한
    offer를 무시하고 자신의 answer를 기다립니다.

Examples:
    >>> link = PeerLink("peer-a", "peer-b", AiortcPeerTransport, send_signal,
    ...                 local_stream=stream)
    >>> link.request_offer()
    True
    >>> link.deliver({"type": "answer", "sdp": "..."})
    >>> await link.close()
"""
import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Iterable, Optional, Tuple

from ..shared.errors import NegotiationError
from .config import negotiation_config
from .transport import PeerTransport

logger = logging.getLogger(__name__)

SendSignal = Callable[[str, dict], Awaitable[None]]
RemoteTrackCallback = Callable[[str, Any], Awaitable[None]]
StatusCallback = Callable[[str, str], Awaitable[None]]


class LinkState(str, Enum):
    IDLE = "idle"
    OFFERING = "offering"
    AWAITING_ANSWER = "awaiting_answer"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


_OFFER = "offer"
_SIGNAL = "signal"
_ICE_FAILED = "ice-failed"
_TIMEOUT = "timeout"


class PeerLink:
    """원격 참가자 한 명과의 WebRTC 링크.

    Attributes:
        local_id (str): 로컬 참가자 ID
        remote_id (str): 원격 참가자 ID (local_id와 같을 수 없음)
        polite (bool): glare 발생 시 자신의 offer를 양보하는 쪽인지 여부
        state (LinkState): 현재 협상 상태
        offer_sent (bool): 이 링크에서 offer를 요청한 적이 있는지 여부
        transport (PeerTransport): 소유한 전송 객체

    Args:
        transport_factory: 새 PeerTransport를 만드는 callable (롤백 시 재호출)
        send_signal: ``(remote_id, signal)``을 코디네이터로 보내는 코루틴
        local_stream: 전송 객체에 붙일 로컬 트랙 목록 (없으면 수신 전용)
        on_remote_track: 원격 트랙 도착 시 ``(remote_id, track)`` 코루틴
        on_status: 상태 이벤트 ``(remote_id, status)`` 코루틴
        timeout: 연결 완료까지 대기 시간 (초). None이면 무제한
        ice_restart_attempts: ICE 실패 시 자동 재시작 횟수

    Raises:
        ValueError: remote_id가 local_id와 같은 경우 (자기 자신과의 링크)
    """

    def __init__(
        self,
        local_id: str,
        remote_id: str,
        transport_factory: Callable[[], PeerTransport],
        send_signal: SendSignal,
        local_stream: Optional[Iterable[Any]] = None,
        on_remote_track: Optional[RemoteTrackCallback] = None,
        on_status: Optional[StatusCallback] = None,
        timeout: Optional[float] = negotiation_config.timeout,
        ice_restart_attempts: int = negotiation_config.ICE_RESTART_ATTEMPTS,
    ):
        if remote_id == local_id:
            raise ValueError(f"cannot create a peer link to self ({local_id})")

        self.local_id = local_id
        self.remote_id = remote_id
        self.polite = local_id < remote_id
        self.state = LinkState.IDLE
        self.offer_sent = False

        self._transport_factory = transport_factory
        self._send_signal = send_signal
        self._local_stream = list(local_stream) if local_stream else []
        self._on_remote_track = on_remote_track
        self._on_status = on_status
        self._timeout = timeout
        self._ice_restart_attempts = ice_restart_attempts
        self._ice_restarts = 0

        # 원격 디스크립션 적용 전에 도착한 candidate (FIFO)
        self._pending_candidates: Deque[dict] = deque()
        self._remote_applied = False
        self._has_local_offer = False

        self.transport: PeerTransport = self._create_transport()

        self._inbox: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue()
        self._timeout_task: Optional[asyncio.Task] = None
        self._task = asyncio.create_task(self._run(), name=f"peer-link-{remote_id[:8]}")

        logger.info(f"[PeerLink] 링크 생성: {local_id[:8]} -> {remote_id[:8]} "
                    f"(polite={self.polite}, 로컬 트랙={len(self._local_stream)})")

    # ------------------------------------------------------------------
    # 공개 API (동기 호출, inbox에 적재)
    # ------------------------------------------------------------------

    def request_offer(self) -> bool:
        """offer 전송을 요청합니다. 이미 요청했거나 닫힌 링크면 False."""
        if self.offer_sent or self.is_closed:
            return False
        self.offer_sent = True
        self._inbox.put_nowait((_OFFER, None))
        return True

    def deliver(self, signal: dict) -> None:
        """원격에서 온 시그널(offer/answer/candidate)을 전달합니다."""
        if self.is_closed:
            logger.debug(f"[PeerLink] 닫힌 링크 {self.remote_id[:8]}로 온 시그널 무시")
            return
        self._inbox.put_nowait((_SIGNAL, signal))

    async def wait_idle(self) -> None:
        """inbox에 쌓인 작업이 모두 처리될 때까지 대기합니다."""
        await self._inbox.join()

    @property
    def is_closed(self) -> bool:
        return self.state is LinkState.CLOSED

    @property
    def pending_candidates(self) -> int:
        return len(self._pending_candidates)

    async def close(self) -> None:
        """링크를 종료하고 전송 객체를 해제합니다.

        반환 전에 링크 태스크를 취소하고 전송 객체를 닫습니다. 이미 닫힌 링크에
        대해 호출하면 아무것도 하지 않습니다.
        """
        if self.is_closed:
            return
        self.state = LinkState.CLOSED

        tasks = [t for t in (self._task, self._timeout_task)
                 if t is not None and t is not asyncio.current_task() and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        # join() 대기자가 멈추지 않도록 남은 작업 정리
        while not self._inbox.empty():
            self._inbox.get_nowait()
            self._inbox.task_done()

        self._pending_candidates.clear()
        await self._close_transport(self.transport)
        logger.info(f"[PeerLink] 링크 {self.remote_id[:8]} 종료")

    # ------------------------------------------------------------------
    # 링크 태스크
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            kind, payload = await self._inbox.get()
            try:
                if self.state in (LinkState.CLOSED, LinkState.FAILED):
                    logger.debug(f"[PeerLink] {self.remote_id[:8]} {self.state.value} 상태 - {kind} 무시")
                elif kind == _OFFER:
                    await self._make_offer(restart=bool(payload))
                elif kind == _SIGNAL:
                    await self._handle_signal(payload)
                elif kind == _ICE_FAILED:
                    await self._handle_ice_failure()
                elif kind == _TIMEOUT:
                    await self._fail("negotiation timed out")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # 한 메시지 처리 실패가 링크 전체를 중단시키지 않음
                logger.error(f"[PeerLink] {self.remote_id[:8]} {kind} 처리 중 오류: {e}", exc_info=True)
            finally:
                self._inbox.task_done()

    async def _make_offer(self, restart: bool = False) -> None:
        if not restart and (self.state is not LinkState.IDLE or self._remote_applied):
            logger.info(f"[PeerLink] {self.remote_id[:8]} 이미 협상 중 - offer 생략 (state={self.state.value})")
            return

        self.state = LinkState.OFFERING
        if restart:
            self._remote_applied = False

        offer = await self.transport.create_offer()
        applied = await self.transport.set_local_description(offer)
        self._has_local_offer = True

        await self._send(applied or offer)
        self.state = LinkState.AWAITING_ANSWER
        self._arm_timeout()
        logger.info(f"[PeerLink] offer 전송: {self.local_id[:8]} -> {self.remote_id[:8]}")

    async def _handle_signal(self, signal: dict) -> None:
        signal_type = signal.get("type")
        if signal_type == "offer":
            await self._on_offer(signal)
        elif signal_type == "answer":
            await self._on_answer(signal)
        elif signal_type == "candidate":
            await self._on_candidate(signal)
        else:
            logger.warning(f"[PeerLink] {self.remote_id[:8]}에서 알 수 없는 시그널 타입: {signal_type}")

    async def _on_offer(self, signal: dict) -> None:
        if self._has_local_offer and not self._remote_applied:
            if not self.polite:
                logger.info(f"[PeerLink] glare: {self.remote_id[:8]}의 offer 무시 (impolite)")
                return
            logger.info(f"[PeerLink] glare: 로컬 offer 롤백 후 {self.remote_id[:8]}의 offer 수락 (polite)")
            await self._rollback()

        await self.transport.set_remote_description(_description(signal))
        self._remote_applied = True
        await self._flush_candidates()

        answer = await self.transport.create_answer()
        applied = await self.transport.set_local_description(answer)
        await self._send(applied or answer)

        if self.state is not LinkState.CONNECTED:
            self.state = LinkState.AWAITING_ANSWER
        self._arm_timeout()
        logger.info(f"[PeerLink] answer 전송: {self.local_id[:8]} -> {self.remote_id[:8]}")

    async def _on_answer(self, signal: dict) -> None:
        if self.state is not LinkState.AWAITING_ANSWER or not self._has_local_offer:
            # 엄격한 검사 대신 허용 (상태와 무관하게 적용 시도)
            logger.warning(f"[PeerLink] {self.remote_id[:8]}에서 예상치 않은 answer "
                           f"(state={self.state.value}) - 적용 시도")
        try:
            await self.transport.set_remote_description(_description(signal))
        except Exception as e:
            logger.warning(f"[PeerLink] {self.remote_id[:8]} answer 적용 실패: {e}")
            return

        self._remote_applied = True
        await self._flush_candidates()
        logger.info(f"[PeerLink] answer 적용: {self.remote_id[:8]}")

    async def _on_candidate(self, signal: dict) -> None:
        candidate = signal.get("candidate")
        if not isinstance(candidate, dict):
            candidate = {
                "candidate": candidate,
                "sdpMid": signal.get("sdpMid"),
                "sdpMLineIndex": signal.get("sdpMLineIndex"),
            }

        if not self._remote_applied:
            self._pending_candidates.append(candidate)
            logger.debug(f"[PeerLink] {self.remote_id[:8]} candidate 대기열 추가 "
                         f"(대기 {len(self._pending_candidates)}개)")
            return
        await self._add_candidate(candidate)

    async def _add_candidate(self, candidate: dict) -> None:
        try:
            await self.transport.add_ice_candidate(candidate)
        except Exception as e:
            logger.warning(f"[PeerLink] {self.remote_id[:8]} ICE candidate 추가 실패: {e}")

    async def _flush_candidates(self) -> None:
        if self._pending_candidates:
            logger.info(f"[PeerLink] {self.remote_id[:8]} 대기 candidate {len(self._pending_candidates)}개 적용")
        while self._pending_candidates:
            await self._add_candidate(self._pending_candidates.popleft())

    async def _rollback(self) -> None:
        old = self.transport
        self.transport = self._create_transport()
        self._has_local_offer = False
        self.state = LinkState.IDLE
        await self._close_transport(old)

    async def _handle_ice_failure(self) -> None:
        if self._ice_restarts < self._ice_restart_attempts:
            self._ice_restarts += 1
            logger.warning(f"[PeerLink] {self.remote_id[:8]} ICE 실패 - 재시작 시도 "
                           f"({self._ice_restarts}/{self._ice_restart_attempts})")
            if await self.transport.restart_ice():
                if self._has_local_offer:
                    await self._make_offer(restart=True)
                return
        await self._fail("ICE connection failed")

    async def _fail(self, reason: str) -> None:
        error = NegotiationError(self.remote_id, reason)
        logger.error(f"[PeerLink] 링크 실패 - {error}")
        self.state = LinkState.FAILED
        if self._timeout_task is not None and self._timeout_task is not asyncio.current_task():
            self._timeout_task.cancel()
        await self._close_transport(self.transport)
        await self._emit_status(LinkState.FAILED.value)

    # ------------------------------------------------------------------
    # 전송 객체 / 콜백
    # ------------------------------------------------------------------

    def _create_transport(self) -> PeerTransport:
        transport = self._transport_factory()
        if self._local_stream:
            transport.attach_local_tracks(self._local_stream)

        async def on_ice_candidate(candidate: dict):
            if transport is self.transport and not self.is_closed:
                await self._send({"type": "candidate", "candidate": candidate})

        async def on_track(track):
            if transport is not self.transport or self.is_closed:
                return
            logger.info(f"[PeerLink] {self.remote_id[:8]}의 {getattr(track, 'kind', '?')} 트랙 수신")
            if self._on_remote_track:
                await self._on_remote_track(self.remote_id, track)

        async def on_connection_state_change(state: str):
            if transport is not self.transport or self.state in (LinkState.CLOSED, LinkState.FAILED):
                return
            logger.info(f"[PeerLink] {self.remote_id[:8]} 연결 상태: {state}")
            if state == "connected":
                self.state = LinkState.CONNECTED
                self._cancel_timeout()
            await self._emit_status(state)

        async def on_ice_connection_state_change(state: str):
            if transport is not self.transport or self.state in (LinkState.CLOSED, LinkState.FAILED):
                return
            if state == "failed":
                self._inbox.put_nowait((_ICE_FAILED, None))

        transport.on_ice_candidate(on_ice_candidate)
        transport.on_track(on_track)
        transport.on_connection_state_change(on_connection_state_change)
        transport.on_ice_connection_state_change(on_ice_connection_state_change)
        return transport

    async def _close_transport(self, transport: PeerTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"[PeerLink] {self.remote_id[:8]} 전송 객체 종료 중 오류: {e}")

    async def _send(self, signal: dict) -> None:
        await self._send_signal(self.remote_id, signal)

    async def _emit_status(self, status: str) -> None:
        if self._on_status:
            await self._on_status(self.remote_id, status)

    def _arm_timeout(self) -> None:
        if self._timeout is None:
            return
        if self._timeout_task is not None and not self._timeout_task.done():
            return
        self._timeout_task = asyncio.create_task(self._expire(self._timeout))

    def _cancel_timeout(self) -> None:
        if self._timeout_task is not None and not self._timeout_task.done():
            self._timeout_task.cancel()
        self._timeout_task = None

    async def _expire(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.state in (LinkState.OFFERING, LinkState.AWAITING_ANSWER):
            self._inbox.put_nowait((_TIMEOUT, None))


def _description(signal: dict) -> dict:
    return {"type": signal["type"], "sdp": signal.get("sdp", "")}
