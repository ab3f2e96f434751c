"""룸 레지스트리 단위 테스트

- join_room / leave_room: 룸 생성/삭제 불변식
- set_location: 멤버만 저장
- lock: 참조 카운트 정리
- 조회 메서드
"""

import asyncio

import pytest

from geomesh.relay import RoomRegistry
from geomesh.shared.schemas import LatLng


# ===== join_room / leave_room =====


def test_join_creates_room_on_first_participant(registry: RoomRegistry):
    """첫 참가자 입장 시 룸 생성"""
    room = registry.join_room("meeting-1", "peer-a")

    assert registry.has_room("meeting-1")
    assert room.participants == {"peer-a"}
    assert registry.get_peer_room("peer-a") == "meeting-1"


def test_join_other_room_without_leaving_raises(registry: RoomRegistry):
    """다른 룸에 등록된 참가자는 먼저 퇴장해야 함"""
    registry.join_room("r1", "peer-a")

    with pytest.raises(ValueError):
        registry.join_room("r2", "peer-a")


def test_leave_last_participant_deletes_room(registry: RoomRegistry):
    """마지막 참가자 퇴장 시 룸 삭제, 재입장은 빈 룸부터 시작"""
    registry.join_room("R", "peer-a")
    registry.set_location("R", "peer-a", LatLng(lat=1.0, lng=2.0))

    room = registry.leave_room("peer-a")

    assert room.name == "R"
    assert not registry.has_room("R")
    assert registry.get_peer_room("peer-a") is None

    room = registry.join_room("R", "peer-b")
    assert room.participants == {"peer-b"}
    assert room.locations == {}


def test_leave_keeps_room_with_remaining_members(registry: RoomRegistry):
    registry.join_room("R", "peer-a")
    registry.join_room("R", "peer-b")
    registry.set_location("R", "peer-a", LatLng(lat=1.0, lng=2.0))

    room = registry.leave_room("peer-a")

    assert registry.has_room("R")
    assert room.participants == {"peer-b"}
    assert "peer-a" not in room.locations


def test_leave_unknown_peer_returns_none(registry: RoomRegistry):
    """룸에 없는 참가자 퇴장은 no-op"""
    assert registry.leave_room("ghost") is None


# ===== set_location =====


def test_set_location_latest_wins(registry: RoomRegistry):
    registry.join_room("R", "peer-a")

    assert registry.set_location("R", "peer-a", LatLng(lat=1.0, lng=1.0))
    assert registry.set_location("R", "peer-a", LatLng(lat=2.0, lng=3.0))

    assert registry.get_room("R").locations["peer-a"] == LatLng(lat=2.0, lng=3.0)


def test_set_location_rejects_non_member(registry: RoomRegistry):
    """멤버가 아닌 참가자 / 없는 룸의 위치는 저장하지 않음"""
    registry.join_room("R", "peer-a")

    assert not registry.set_location("R", "peer-b", LatLng(lat=1.0, lng=1.0))
    assert not registry.set_location("missing", "peer-a", LatLng(lat=1.0, lng=1.0))
    assert registry.get_room("R").locations == {}
    assert not registry.has_room("missing")


# ===== lock =====


@pytest.mark.asyncio
async def test_lock_entry_removed_after_last_user(registry: RoomRegistry):
    """마지막 사용자가 락을 놓으면 락 항목 제거"""
    async with registry.lock("R"):
        assert "R" in registry._locks

    assert "R" not in registry._locks


@pytest.mark.asyncio
async def test_lock_serializes_same_room(registry: RoomRegistry):
    """같은 룸 구간은 겹치지 않음"""
    order = []

    async def worker(name: str):
        async with registry.lock("R"):
            order.append(f"{name}-start")
            await asyncio.sleep(0.01)
            order.append(f"{name}-end")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-start", "a-end", "b-start", "b-end"]
    assert registry._locks == {}


# ===== 조회 =====


def test_room_queries(registry: RoomRegistry):
    registry.join_room("R", "peer-b")
    registry.join_room("R", "peer-a")
    registry.join_room("S", "peer-c")

    assert registry.get_room_peers("R") == ["peer-a", "peer-b"]
    assert registry.get_other_peers("R", "peer-a") == ["peer-b"]
    assert registry.get_room_count("R") == 2
    assert registry.get_room_count("missing") == 0

    rooms = {entry["room_name"]: entry for entry in registry.get_room_list()}
    assert rooms["R"] == {"room_name": "R", "peer_count": 2, "peers": ["peer-a", "peer-b"]}
    assert rooms["S"]["peer_count"] == 1
