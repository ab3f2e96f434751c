"""릴레이(서버) 모듈.

Classes:
    RoomRegistry: 룸 및 참가자 멤버십 레지스트리
    Room: 룸 상태 데이터 클래스
    RelayCoordinator: 멤버십 이벤트 팬아웃과 시그널 중계
    Participant: 연결된 참가자 데이터 클래스

Config:
    server_config: 서버 바인딩/로그/CORS 설정
"""

from .registry import RoomRegistry, Room
from .coordinator import RelayCoordinator, Participant
from .config import server_config, ServerConfig

__all__ = [
    "RoomRegistry",
    "Room",
    "RelayCoordinator",
    "Participant",
    "server_config",
    "ServerConfig",
]
