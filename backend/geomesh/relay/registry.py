"""룸 레지스트리 모듈.

이 모듈은 릴레이 코디네이터가 사용하는 룸(방)과 참가자 멤버십 상태를 관리합니다.
여러 개의 독립적인 룸을 동시에 관리하며, 각 룸의 참가자와 최신 위치를 추적합니다.

주요 기능:
    - 룸 생성 및 삭제 (첫 입장 시 자동 생성/비어있게 되면 즉시 삭제)
    - 참가자 입장/퇴장 관리
    - 참가자별 최신 위치 저장 (latest-wins, 이력 없음)
    - 룸 단위 배타 구간 (asyncio.Lock) 제공

Architecture:
    - rooms: Dict[str, Room] - 룸 이름 → 룸 상태
    - peer_to_room: Dict[str, str] - 참가자 ID → 룸 이름 (빠른 조회용)
    - _locks: Dict[str, _RoomLock] - 룸 이름 → 참조 카운트가 있는 락

Invariant:
    룸은 participants가 비어있지 않을 때에만 rooms에 존재합니다.
    이 불변식은 단일 이벤트 처리 직후마다 성립합니다.

Examples:
    >>> registry = RoomRegistry()
    >>> async with registry.lock("meeting-1"):
    ...     registry.join_room("meeting-1", "peer-123")
    >>> registry.get_room_count("meeting-1")
    1

See Also:
    coordinator.py: 멤버십 이벤트 팬아웃
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Set

from ..shared.schemas import LatLng

logger = logging.getLogger(__name__)


@dataclass
class Room:
    """하나의 룸 상태.

    Attributes:
        name (str): 룸 이름 (공백 제거된 비어있지 않은 문자열)
        participants (Set[str]): 현재 참가자 ID 집합
        locations (Dict[str, LatLng]): 참가자별 최신 위치
    """
    name: str
    participants: Set[str] = field(default_factory=set)
    locations: Dict[str, LatLng] = field(default_factory=dict)


@dataclass
class _RoomLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class RoomRegistry:
    """룸과 참가자 멤버십을 관리하는 프로세스 단위 레지스트리.

    앱 시작 시 한 번 생성되어 코디네이터에 주입됩니다. 상태 변경 메서드는
    모두 동기 함수이며, 호출자는 ``lock(room_name)`` 구간 안에서 호출해야
    같은 룸에 대한 입장/퇴장/위치 갱신이 서로 섞이지 않습니다.

    Attributes:
        rooms (Dict[str, Room]): 룸 이름을 키로 하는 룸 딕셔너리
        peer_to_room (Dict[str, str]): 참가자 ID → 룸 이름 역 매핑

    Thread Safety:
        - asyncio 단일 이벤트 루프에서 동작
        - 룸 간 작업은 서로 조율이 필요 없음
    """

    def __init__(self):
        # room_name -> Room
        self.rooms: Dict[str, Room] = {}

        # peer_id -> room_name (for quick lookup)
        self.peer_to_room: Dict[str, str] = {}

        # room_name -> lock (참조 카운트가 0이 되면 제거)
        self._locks: Dict[str, _RoomLock] = {}

    @asynccontextmanager
    async def lock(self, room_name: str) -> AsyncIterator[None]:
        """룸 단위 배타 구간을 엽니다.

        락 객체는 룸 자체와 별도로 관리되므로, 대기 중인 작업이 있는 동안
        룸이 삭제되었다가 다시 생성되어도 같은 락을 공유합니다.

        Args:
            room_name (str): 잠글 룸 이름
        """
        entry = self._locks.get(room_name)
        if entry is None:
            entry = self._locks[room_name] = _RoomLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(room_name) is entry:
                del self._locks[room_name]

    def join_room(self, room_name: str, peer_id: str) -> Room:
        """참가자를 지정된 룸에 추가합니다.

        룸이 존재하지 않으면 생성한 후 참가자를 추가합니다. 이미 다른 룸에
        속해 있는 참가자는 호출 전에 ``leave_room()``으로 정리되어야 합니다.

        Args:
            room_name (str): 참가할 룸의 이름
            peer_id (str): 참가하는 참가자 ID

        Returns:
            Room: 참가자가 추가된 룸

        Raises:
            ValueError: 참가자가 이미 다른 룸에 등록되어 있는 경우
        """
        current = self.peer_to_room.get(peer_id)
        if current is not None and current != room_name:
            raise ValueError(f"peer {peer_id} is still registered in room '{current}'")

        room = self.rooms.get(room_name)
        if room is None:
            room = self.rooms[room_name] = Room(name=room_name)
            logger.info(f"[Relay] Room '{room_name}' created")

        room.participants.add(peer_id)
        self.peer_to_room[peer_id] = room_name

        logger.info(f"[Relay] Peer {peer_id[:8]} joined room '{room_name}'. "
                    f"Room has {len(room.participants)} peers")
        return room

    def leave_room(self, peer_id: str) -> Optional[Room]:
        """참가자를 현재 속한 룸에서 제거합니다.

        참가자 집합과 위치 맵, 역 매핑에서 모두 제거하며, 룸이 비게 되면 같은
        호출 안에서 룸을 삭제합니다.

        Args:
            peer_id (str): 퇴장할 참가자 ID

        Returns:
            Optional[Room]: 참가자가 속해 있던 룸 (삭제된 경우에도 반환되며
                participants는 남은 참가자). 어떤 룸에도 없었으면 None

        Examples:
            >>> registry.join_room("meeting-1", "peer-123")
            >>> room = registry.leave_room("peer-123")
            >>> room.name, registry.has_room("meeting-1")
            ('meeting-1', False)
            >>> registry.leave_room("peer-123") is None
            True
        """
        room_name = self.peer_to_room.pop(peer_id, None)
        if room_name is None:
            return None

        room = self.rooms.get(room_name)
        if room is None:
            return None

        room.participants.discard(peer_id)
        room.locations.pop(peer_id, None)

        # Delete room if empty
        if not room.participants:
            del self.rooms[room_name]
            logger.info(f"[Relay] Room '{room_name}' deleted (empty)")
        else:
            logger.info(f"[Relay] Peer {peer_id[:8]} left room '{room_name}'. "
                        f"Room has {len(room.participants)} peers")
        return room

    def set_location(self, room_name: str, peer_id: str, location: LatLng) -> bool:
        """참가자의 최신 위치를 덮어씁니다.

        Returns:
            bool: 저장했으면 True, 룸이 없거나 참가자가 룸에 없으면 False
        """
        room = self.rooms.get(room_name)
        if room is None or peer_id not in room.participants:
            return False
        room.locations[peer_id] = location
        return True

    def get_room(self, room_name: str) -> Optional[Room]:
        return self.rooms.get(room_name)

    def has_room(self, room_name: str) -> bool:
        return room_name in self.rooms

    def get_room_peers(self, room_name: str) -> List[str]:
        """특정 룸의 모든 참가자 ID 목록을 반환합니다 (정렬됨)."""
        room = self.rooms.get(room_name)
        return sorted(room.participants) if room else []

    def get_other_peers(self, room_name: str, exclude_peer_id: str) -> List[str]:
        """특정 참가자를 제외한 룸의 다른 참가자 ID를 반환합니다.

        브로드캐스트 대상 계산이나 새 참가자에게 보낼 스냅샷에 사용됩니다.
        """
        return [peer_id for peer_id in self.get_room_peers(room_name)
                if peer_id != exclude_peer_id]

    def get_peer_room(self, peer_id: str) -> Optional[str]:
        """참가자가 속한 룸 이름을 반환합니다. 없으면 None."""
        return self.peer_to_room.get(peer_id)

    def get_room_list(self) -> List[dict]:
        """모든 룸의 정보를 리스트로 반환합니다.

        Returns:
            List[dict]: 각 항목은 room_name, peer_count, peers 키를 포함
        """
        return [
            {
                "room_name": room_name,
                "peer_count": len(room.participants),
                "peers": sorted(room.participants),
            }
            for room_name, room in self.rooms.items()
        ]

    def get_room_count(self, room_name: str) -> int:
        """특정 룸의 현재 참가자 수. 룸이 없으면 0."""
        room = self.rooms.get(room_name)
        return len(room.participants) if room else 0
