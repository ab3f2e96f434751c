"""FastAPI 앱 통합 테스트 (TestClient)

- HTTP: /, /api/health, /api/rooms, /api/ice-servers
- WebSocket /ws: connected → join-room → 시그널/위치 중계 → 연결 끊김 시 user-left
"""

import pytest
from fastapi.testclient import TestClient

from app import app

pytestmark = pytest.mark.integration


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def _connect(ws) -> str:
    message = ws.receive_json()
    assert message["type"] == "connected"
    return message["data"]["userId"]


# ===== HTTP =====


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_health_without_connections(client):
    response = client.get("/api/health")

    assert response.json() == {"status": "ok", "connections": 0, "rooms": 0}


def test_ice_servers_include_default_stun(client):
    servers = client.get("/api/ice-servers").json()["iceServers"]

    assert {"urls": "stun:stun.l.google.com:19302"} in servers


# ===== WebSocket =====


def test_two_participants_signal_through_relay(client):
    with client.websocket_connect("/ws") as ws_a:
        peer_a = _connect(ws_a)
        ws_a.send_json({"type": "join-room", "data": "meeting-1"})
        assert ws_a.receive_json() == {"type": "room-state", "data": {"users": [], "locations": []}}

        with client.websocket_connect("/ws") as ws_b:
            peer_b = _connect(ws_b)
            ws_b.send_json({"type": "join-room", "data": {"roomId": "meeting-1"}})

            assert ws_a.receive_json() == {"type": "user-joined", "data": {"userId": peer_b}}
            assert ws_b.receive_json() == {"type": "room-state", "data": {"users": [peer_a], "locations": []}}

            rooms = client.get("/api/rooms").json()["rooms"]
            assert rooms == [{"room_name": "meeting-1", "peer_count": 2, "peers": sorted([peer_a, peer_b])}]

            ws_b.send_json({
                "type": "webrtc-signal",
                "data": {
                    "roomId": "meeting-1",
                    "from": "spoofed",
                    "to": peer_a,
                    "signal": {"type": "offer", "sdp": "v=0"},
                },
            })
            relayed = ws_a.receive_json()
            assert relayed["type"] == "webrtc-signal"
            assert relayed["data"]["from"] == peer_b
            assert relayed["data"]["signal"] == {"type": "offer", "sdp": "v=0"}

            ws_a.send_json({
                "type": "location-update",
                "data": {"roomId": "meeting-1", "lat": 37.5665, "lng": 126.978},
            })
            assert ws_b.receive_json() == {
                "type": "location-update",
                "data": {"roomId": "meeting-1", "userId": peer_a, "lat": 37.5665, "lng": 126.978},
            }

        assert ws_a.receive_json() == {"type": "user-left", "data": {"userId": peer_b}}


def test_malformed_frames_do_not_close_connection(client):
    with client.websocket_connect("/ws") as ws:
        _connect(ws)
        ws.send_text("not json")
        ws.send_json({"type": "unknown-event"})
        ws.send_json({"type": "join-room", "data": "   "})
        ws.send_json({"type": "join-room", "data": "lobby"})

        assert ws.receive_json() == {"type": "room-state", "data": {"users": [], "locations": []}}
