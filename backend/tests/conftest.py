"""pytest 설정 및 공유 fixture

테스트 인프라:
- Mock WebSocket (코디네이터 송신 기록)
- Fake PeerTransport (aiortc 없이 피어 링크 구동)
- Fake 시그널링 채널 / 미디어 소스
"""

from typing import Any, List
from unittest.mock import AsyncMock, MagicMock

import pytest

from geomesh.peer.display import LoggingDisplay
from geomesh.relay import RelayCoordinator, RoomRegistry
from geomesh.shared.schemas import envelope


# ===== 릴레이 Fixture =====


def make_websocket() -> MagicMock:
    """send_json 호출을 기록하는 WebSocket mock"""
    websocket = MagicMock()
    websocket.send_json = AsyncMock()
    return websocket


def sent_messages(websocket: MagicMock) -> List[dict]:
    return [call.args[0] for call in websocket.send_json.call_args_list]


@pytest.fixture
def registry() -> RoomRegistry:
    return RoomRegistry()


@pytest.fixture
def coordinator(registry) -> RelayCoordinator:
    return RelayCoordinator(registry)


@pytest.fixture
def websocket_factory():
    return make_websocket


@pytest.fixture
def messages_of():
    return sent_messages


# ===== 피어 Fixture =====


class FakeTransport:
    """PeerTransport 인터페이스를 흉내내고 호출 순서를 기록하는 전송 객체"""

    def __init__(self, name: str):
        self.name = name
        self.connection_state = "new"
        self.events: List[tuple] = []
        self.local_tracks: List[Any] = []
        self.local_description = None
        self.remote_description = None
        self.candidates: List[str] = []
        self.failing_candidates = set()
        self.reject_remote = False
        self.restart_result = False
        self.restarts = 0
        self.close_count = 0

        self._track_callback = None
        self._candidate_callback = None
        self._state_callback = None
        self._ice_state_callback = None

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    def on_track(self, callback):
        self._track_callback = callback

    def on_ice_candidate(self, callback):
        self._candidate_callback = callback

    def on_connection_state_change(self, callback):
        self._state_callback = callback

    def on_ice_connection_state_change(self, callback):
        self._ice_state_callback = callback

    def attach_local_tracks(self, stream):
        self.local_tracks.extend(stream)

    async def create_offer(self) -> dict:
        return {"type": "offer", "sdp": f"offer-sdp-{self.name}"}

    async def create_answer(self) -> dict:
        return {"type": "answer", "sdp": f"answer-sdp-{self.name}"}

    async def set_local_description(self, description: dict) -> dict:
        self.local_description = description
        self.events.append(("local", description["type"]))
        return description

    async def set_remote_description(self, description: dict) -> None:
        if self.reject_remote:
            raise ValueError("remote description rejected")
        self.remote_description = description
        self.events.append(("remote", description["type"]))

    async def add_ice_candidate(self, candidate: dict) -> None:
        value = candidate["candidate"]
        if value in self.failing_candidates:
            raise ValueError(f"bad candidate {value}")
        self.candidates.append(value)
        self.events.append(("candidate", value))

    async def restart_ice(self) -> bool:
        self.restarts += 1
        return self.restart_result

    async def close(self) -> None:
        self.close_count += 1

    # 테스트에서 전송 이벤트를 발생시키는 헬퍼
    async def emit_connection_state(self, state: str):
        self.connection_state = state
        await self._state_callback(state)

    async def emit_ice_state(self, state: str):
        await self._ice_state_callback(state)

    async def emit_candidate(self, candidate: dict):
        await self._candidate_callback(candidate)

    async def emit_track(self, track):
        await self._track_callback(track)


@pytest.fixture
def transport_factory():
    """생성된 FakeTransport를 ``factory.created``에 모으는 팩토리"""
    created: List[FakeTransport] = []

    def factory() -> FakeTransport:
        transport = FakeTransport(f"t{len(created)}")
        created.append(transport)
        return transport

    factory.created = created
    return factory


@pytest.fixture
def signal_recorder():
    """PeerLink.send_signal 대용. ``recorder.sent``에 (remote_id, signal) 기록"""
    sent: List[tuple] = []

    async def send_signal(remote_id: str, signal: dict):
        sent.append((remote_id, signal))

    send_signal.sent = sent
    return send_signal


class FakeChannel:
    """SessionClient가 보낸 이벤트를 와이어 봉투로 기록하는 채널"""

    def __init__(self):
        self.sent: List[dict] = []

    async def send(self, event, data=None):
        self.sent.append(envelope(event, data))

    def of_type(self, event_type: str) -> List[dict]:
        return [message for message in self.sent if message["type"] == event_type]


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def media_source():
    source = MagicMock()
    source.acquire = AsyncMock(return_value=["audio-track", "video-track"])
    source.stop = MagicMock()
    return source


@pytest.fixture
def displays():
    return {
        "presence_display": LoggingDisplay("Presence"),
        "location_display": LoggingDisplay("Location"),
        "video_display": LoggingDisplay("Video"),
    }
