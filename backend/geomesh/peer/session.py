"""세션 클라이언트 모듈.

참가자 한 명의 클라이언트측 상태(현재 룸, 멤버십 뷰, 원격 참가자별 피어 링크,
로컬 미디어)를 관리하고 코디네이터 이벤트에 반응합니다.

이벤트 처리:
    - connected: 로컬 ParticipantId 기록
    - room-state: 멤버십 교체, 미디어 준비 시 기존 멤버 전원에게 offer
    - user-joined: 멤버 추가, 미디어 준비 시 링크 생성 + offer (아니면 pending)
    - user-left: 멤버 제거, 링크 종료, 화면 정리
    - webrtc-signal: 발신자의 링크로 전달 (없으면 callee로 생성)
    - location-update: 지도 마커 갱신
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pydantic import ValidationError

from ..shared.errors import MediaAcquisitionError
from ..shared.schemas import (
    EventType,
    LatLng,
    LocationUpdate,
    RoomState,
    Signal,
    UserEvent,
    WebRTCSignal,
)
from .config import negotiation_config
from .display import Display, LoggingDisplay
from .media import LocalMediaSource, MediaStream
from .peer_link import PeerLink
from .transport import AiortcPeerTransport, PeerTransport

logger = logging.getLogger(__name__)

# 멤버십에는 있지만 링크가 없는 참가자의 표시 상태
PENDING = "pending"
MEMBER = "member"


class SessionClient:
    """코디네이터 이벤트를 받아 피어 링크 메시를 유지하는 클라이언트 세션.

    Attributes:
        local_id (Optional[str]): connected 이벤트로 발급받은 로컬 ParticipantId
        room_id (Optional[str]): 현재 참여 중인 룸 이름
        members (Set[str]): 로컬 멤버십 뷰 (자기 자신 포함)
        peers (Dict[str, PeerLink]): 원격 참가자 ID → 피어 링크
        local_stream (Optional[MediaStream]): 획득한 로컬 미디어 (None이면 미디어 미준비)

    Args:
        channel: ``send(event, data)`` 코루틴과 ``(event, data)`` 비동기 반복을 제공하는 채널
        media_source (Optional[LocalMediaSource]): start_media()에서 사용할 미디어 소스
        transport_factory: 피어 링크마다 PeerTransport를 만드는 callable
        presence_display, location_display, video_display (Optional[Display]):
            참가자 목록 / 지도 마커 / 원격 비디오 표시 협력자
        timeout (Optional[float]): 피어 링크 협상 타임아웃 (초)

    Examples:
        >>> session = SessionClient(channel, media_source=PlayerMediaSource("clip.mp4"))
        >>> await session.join_room("meeting-1")
        >>> await session.start_media()
        >>> await session.run()
    """

    def __init__(
        self,
        channel: Any,
        media_source: Optional[LocalMediaSource] = None,
        transport_factory: Callable[[], PeerTransport] = AiortcPeerTransport,
        presence_display: Optional[Display] = None,
        location_display: Optional[Display] = None,
        video_display: Optional[Display] = None,
        timeout: Optional[float] = negotiation_config.timeout,
    ):
        self.channel = channel
        self.media_source = media_source
        self.transport_factory = transport_factory
        self.presence_display = presence_display or LoggingDisplay("Presence")
        self.location_display = location_display or LoggingDisplay("Location")
        self.video_display = video_display or LoggingDisplay("Video")
        self.timeout = timeout

        self.local_id: Optional[str] = None
        self.room_id: Optional[str] = None
        self.members: Set[str] = set()
        self.peers: Dict[str, PeerLink] = {}
        self.local_stream: Optional[MediaStream] = None
        self.local_position: Optional[LatLng] = None
        self.connected = asyncio.Event()

        self._handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            EventType.CONNECTED.value: self._on_connected,
            EventType.ROOM_STATE.value: self._on_room_state,
            EventType.USER_JOINED.value: self._on_user_joined,
            EventType.USER_LEFT.value: self._on_user_left,
            EventType.WEBRTC_SIGNAL.value: self._on_webrtc_signal,
            EventType.LOCATION_UPDATE.value: self._on_location_update,
        }

    @property
    def media_ready(self) -> bool:
        return self.local_stream is not None

    # ------------------------------------------------------------------
    # 이벤트 수신
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """채널이 닫힐 때까지 이벤트를 순서대로 처리합니다."""
        async for event, data in self.channel:
            await self.dispatch(event, data)

    async def dispatch(self, event: str, data: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug(f"[Session] 처리하지 않는 이벤트: {event}")
            return
        try:
            await handler(data)
        except ValidationError as e:
            logger.warning(f"[Session] {event} 페이로드 검증 실패: {e.errors()}")

    async def _on_connected(self, data: Any) -> None:
        self.local_id = UserEvent.model_validate(data).user_id
        logger.info(f"[Session] 로컬 ID 발급: {self.local_id}")
        if self.local_position is not None:
            self.location_display.upsert(self.local_id, self.local_position)
        self.connected.set()

    async def _on_room_state(self, data: Any) -> None:
        state = RoomState.model_validate(data)
        if self.local_id is None:
            logger.warning("[Session] connected 이전에 room-state 수신 - 무시")
            return

        others = [user for user in state.users if user != self.local_id]
        self.members = set(others) | {self.local_id}
        logger.info(f"[Session] room-state 수신: 기존 멤버 {len(others)}명, 위치 {len(state.locations)}개")

        # room-state 이전 시그널로 만든 링크 중 스냅샷에 없는 발신자는 정리
        for remote_id in [r for r in self.peers if r not in self.members]:
            await self.peers.pop(remote_id).close()

        for user in others:
            if user in self.peers:
                # 먼저 도착한 offer로 이미 callee 링크가 있음
                self.presence_display.upsert(user, MEMBER)
            elif self.media_ready:
                self._ensure_link(user).request_offer()
                self.presence_display.upsert(user, MEMBER)
            else:
                self.presence_display.upsert(user, PENDING)

        for entry in state.locations:
            self.location_display.upsert(entry.user_id, LatLng(lat=entry.lat, lng=entry.lng))

    async def _on_user_joined(self, data: Any) -> None:
        user_id = UserEvent.model_validate(data).user_id
        if user_id == self.local_id:
            logger.warning("[Session] 자기 자신에 대한 user-joined 무시")
            return

        self.members.add(user_id)
        if self.media_ready:
            self._ensure_link(user_id).request_offer()
            self.presence_display.upsert(user_id, MEMBER)
        else:
            logger.info(f"[Session] {user_id[:8]} 입장 - 미디어 미준비로 offer 보류")
            self.presence_display.upsert(user_id, PENDING)

    async def _on_user_left(self, data: Any) -> None:
        user_id = UserEvent.model_validate(data).user_id
        self.members.discard(user_id)

        link = self.peers.pop(user_id, None)
        if link is not None:
            await link.close()

        self.location_display.remove(user_id)
        self.presence_display.remove(user_id)
        self.video_display.remove(user_id)
        logger.info(f"[Session] {user_id[:8]} 퇴장 (남은 링크 {len(self.peers)}개)")

    async def _on_webrtc_signal(self, data: Any) -> None:
        message = WebRTCSignal.model_validate(data)
        sender = message.from_id

        if message.to is not None and message.to != self.local_id:
            logger.warning(f"[Session] 다른 참가자({message.to[:8]}) 대상 시그널 무시")
            return
        if not sender or sender == self.local_id:
            logger.warning(f"[Session] 발신자가 잘못된 시그널 무시: {sender}")
            return

        link = self.peers.get(sender)
        if link is None:
            if not self.media_ready:
                logger.info(f"[Session] {sender[:8]}의 {message.signal.type} 무시 - 미디어 미준비 (pending)")
                return
            if self.room_id is None:
                logger.warning(f"[Session] 룸 밖에서 {sender[:8]}의 시그널 수신 - 무시")
                return
            if sender not in self.members:
                # 시그널 중계는 룸 락 밖에서 이루어져 room-state보다 먼저 올 수 있음
                logger.info(f"[Session] room-state 이전에 {sender[:8]}의 {message.signal.type} 수신 - 멤버로 추가")
                self.members.add(sender)
            link = self._ensure_link(sender)
            self.presence_display.upsert(sender, MEMBER)

        link.deliver(message.signal.model_dump())

    async def _on_location_update(self, data: Any) -> None:
        update = LocationUpdate.model_validate(data)
        if update.user_id is None:
            logger.warning("[Session] userId 없는 location-update 무시")
            return
        self.location_display.upsert(update.user_id, LatLng(lat=update.lat, lng=update.lng))

    # ------------------------------------------------------------------
    # 로컬 조작
    # ------------------------------------------------------------------

    async def join_room(self, name: str) -> None:
        """룸에 참여합니다. 다른 룸에 있으면 기존 링크와 멤버십을 모두 정리합니다.

        Raises:
            ValueError: 공백뿐인 룸 이름
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("room name must not be empty")

        if self.room_id is not None:
            logger.info(f"[Session] 룸 전환: {self.room_id} -> {name}")
            await self._reset_room()

        self.room_id = name
        await self.channel.send(EventType.JOIN_ROOM, name)
        logger.info(f"[Session] join-room 전송: {name}")

    async def leave_room(self) -> None:
        if self.room_id is None:
            return
        await self.channel.send(EventType.LEAVE_ROOM)
        logger.info(f"[Session] 룸 퇴장: {self.room_id}")
        await self._reset_room()
        self.room_id = None

    async def start_media(self) -> MediaStream:
        """로컬 미디어를 획득하고 링크가 없는 멤버 전원에게 offer합니다.

        Raises:
            MediaAcquisitionError: 미디어 획득 실패 (세션은 룸에 그대로 남음)
        """
        if self.local_stream is not None:
            return self.local_stream
        if self.media_source is None:
            raise MediaAcquisitionError("no local media source configured")

        self.local_stream = await self.media_source.acquire()

        others = [member for member in sorted(self.members) if member != self.local_id]
        for member in others:
            self._ensure_link(member).request_offer()
            self.presence_display.upsert(member, MEMBER)
        logger.info(f"[Session] 미디어 준비 완료 - 멤버 {len(others)}명에게 offer")
        return self.local_stream

    async def update_location(self, lat: float, lng: float) -> None:
        """자신의 위치를 지도에 표시하고, 룸에 있으면 다른 참가자에게 전송합니다.

        connected 이전에는 위치만 기록하고, ID를 받으면 그때 마커를 표시합니다.
        """
        position = LatLng(lat=lat, lng=lng)
        self.local_position = position
        if self.local_id is None:
            logger.warning("[Session] connected 이전 위치 갱신 - 전송 생략")
            return
        self.location_display.upsert(self.local_id, position)

        if self.room_id is None:
            return
        update = LocationUpdate(room_id=self.room_id, user_id=self.local_id, lat=position.lat, lng=position.lng)
        await self.channel.send(EventType.LOCATION_UPDATE, update)

    async def settle(self) -> None:
        """모든 피어 링크의 대기 작업이 처리될 때까지 기다립니다."""
        await asyncio.gather(*(link.wait_idle() for link in list(self.peers.values())))

    async def close(self) -> None:
        await self._close_links()
        if self.media_source is not None and self.local_stream is not None:
            self.media_source.stop()
        self.local_stream = None
        logger.info("[Session] 세션 종료")

    # ------------------------------------------------------------------
    # 내부
    # ------------------------------------------------------------------

    def _ensure_link(self, remote_id: str) -> PeerLink:
        link = self.peers.get(remote_id)
        if link is None:
            link = PeerLink(
                self.local_id,
                remote_id,
                self.transport_factory,
                self._send_signal,
                local_stream=self.local_stream,
                on_remote_track=self._on_remote_track,
                on_status=self._on_link_status,
                timeout=self.timeout,
            )
            self.peers[remote_id] = link
        return link

    async def _send_signal(self, remote_id: str, signal: dict) -> None:
        if self.room_id is None:
            logger.debug(f"[Session] 룸 밖이므로 {remote_id[:8]} 대상 시그널 폐기")
            return
        message = WebRTCSignal(
            room_id=self.room_id,
            from_id=self.local_id,
            to=remote_id,
            signal=Signal.model_validate(signal),
        )
        await self.channel.send(EventType.WEBRTC_SIGNAL, message)

    async def _on_remote_track(self, remote_id: str, track: Any) -> None:
        self.video_display.upsert(remote_id, track)

    async def _on_link_status(self, remote_id: str, status: str) -> None:
        if remote_id in self.members:
            self.presence_display.upsert(remote_id, status)

    async def _close_links(self) -> None:
        links = list(self.peers.values())
        self.peers.clear()
        for link in links:
            await link.close()

    async def _reset_room(self) -> None:
        await self._close_links()
        for member in self.members:
            if member == self.local_id:
                continue
            self.presence_display.remove(member)
            self.location_display.remove(member)
            self.video_display.remove(member)
        self.members = set()
