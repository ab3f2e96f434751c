"""피어 전송(Peer Transport) 모듈.

피어 링크가 소유하는 양방향 미디어 채널의 능력 인터페이스와 aiortc 구현을
제공합니다. 코덱 협상, 암호화 등 내부 동작은 블랙박스로 취급합니다.

세션 디스크립션과 ICE candidate는 와이어 형식 그대로의 dict로 주고받습니다:
    - description: {"type": "offer" | "answer", "sdp": "..."}
    - candidate: {"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}
"""
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from aiortc import RTCConfiguration, RTCPeerConnection, RTCSessionDescription, MediaStreamTrack
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from .config import ice_config

logger = logging.getLogger(__name__)

TrackCallback = Callable[[Any], Awaitable[None]]
CandidateCallback = Callable[[dict], Awaitable[None]]
StateCallback = Callable[[str], Awaitable[None]]


class PeerTransport(Protocol):
    """피어 링크가 사용하는 전송 능력 인터페이스."""

    connection_state: str

    def attach_local_tracks(self, stream: Iterable[Any]) -> None: ...

    async def create_offer(self) -> dict: ...

    async def create_answer(self) -> dict: ...

    async def set_local_description(self, description: dict) -> dict:
        """로컬 디스크립션을 적용하고 실제 적용된 디스크립션을 반환합니다."""
        ...

    async def set_remote_description(self, description: dict) -> None: ...

    async def add_ice_candidate(self, candidate: dict) -> None: ...

    async def restart_ice(self) -> bool:
        """ICE 재시작을 요청합니다. 지원하지 않으면 False."""
        ...

    async def close(self) -> None: ...

    def on_track(self, callback: TrackCallback) -> None: ...

    def on_ice_candidate(self, callback: CandidateCallback) -> None: ...

    def on_connection_state_change(self, callback: StateCallback) -> None: ...

    def on_ice_connection_state_change(self, callback: StateCallback) -> None: ...


def candidate_from_dict(data: dict):
    """와이어 형식 candidate dict를 aiortc RTCIceCandidate로 변환합니다.

    브라우저가 보내는 ``{"candidate": {...}}`` 중첩 형식도 허용합니다.
    """
    inner = data.get("candidate", "")
    if isinstance(inner, dict):
        data = inner
        inner = inner.get("candidate", "")

    candidate_str = inner or ""
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]
    if not candidate_str:
        raise ValueError("empty ICE candidate")

    candidate = candidate_from_sdp(candidate_str)
    candidate.sdpMid = data.get("sdpMid")
    candidate.sdpMLineIndex = data.get("sdpMLineIndex")
    return candidate


def candidate_to_dict(candidate) -> dict:
    return {
        "candidate": "candidate:" + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


class AiortcPeerTransport:
    """RTCPeerConnection을 감싼 PeerTransport 구현.

    Note:
        - aiortc는 trickle ICE 이벤트를 발생시키지 않고 setLocalDescription()에서
          후보 수집을 마친 뒤 SDP에 포함시킴. 그래서 set_local_description()은
          후보가 포함된 실제 디스크립션을 반환함
        - aiortc는 ICE 재시작을 지원하지 않으므로 restart_ice()는 False를 반환
    """

    def __init__(self, configuration: Optional[RTCConfiguration] = None):
        self.pc = RTCPeerConnection(configuration=configuration or ice_config.to_rtc_configuration())

        self._track_callback: Optional[TrackCallback] = None
        self._candidate_callback: Optional[CandidateCallback] = None
        self._state_callback: Optional[StateCallback] = None
        self._ice_state_callback: Optional[StateCallback] = None

        @self.pc.on("track")
        async def on_track(track: MediaStreamTrack):
            if self._track_callback:
                await self._track_callback(track)

        @self.pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate and self._candidate_callback:
                await self._candidate_callback(candidate_to_dict(candidate))

        @self.pc.on("connectionstatechange")
        async def on_connection_state_change():
            if self._state_callback:
                await self._state_callback(self.pc.connectionState)

        @self.pc.on("iceconnectionstatechange")
        async def on_ice_connection_state_change():
            if self._ice_state_callback:
                await self._ice_state_callback(self.pc.iceConnectionState)

    @property
    def connection_state(self) -> str:
        return self.pc.connectionState

    def on_track(self, callback: TrackCallback) -> None:
        self._track_callback = callback

    def on_ice_candidate(self, callback: CandidateCallback) -> None:
        self._candidate_callback = callback

    def on_connection_state_change(self, callback: StateCallback) -> None:
        self._state_callback = callback

    def on_ice_connection_state_change(self, callback: StateCallback) -> None:
        self._ice_state_callback = callback

    def attach_local_tracks(self, stream: Iterable[MediaStreamTrack]) -> None:
        for track in stream:
            self.pc.addTrack(track)

    async def create_offer(self) -> dict:
        offer = await self.pc.createOffer()
        return {"type": offer.type, "sdp": offer.sdp}

    async def create_answer(self) -> dict:
        answer = await self.pc.createAnswer()
        return {"type": answer.type, "sdp": answer.sdp}

    async def set_local_description(self, description: dict) -> dict:
        await self.pc.setLocalDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )
        local = self.pc.localDescription
        candidate_count = local.sdp.count("a=candidate:")
        logger.debug(f"[Transport] setLocalDescription 후: gathering={self.pc.iceGatheringState}, "
                     f"후보수={candidate_count}")
        return {"type": local.type, "sdp": local.sdp}

    async def set_remote_description(self, description: dict) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_ice_candidate(self, candidate: dict) -> None:
        await self.pc.addIceCandidate(candidate_from_dict(candidate))

    async def restart_ice(self) -> bool:
        logger.warning("[Transport] aiortc는 ICE 재시작을 지원하지 않음")
        return False

    async def close(self) -> None:
        await self.pc.close()
