"""화면 표시 협력자 인터페이스.

참가자 목록, 지도 마커, 원격 비디오는 코어가 소비만 하는 외부 구성요소입니다.
"""
import logging
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)


class Display(Protocol):
    def upsert(self, participant_id: str, data: Any) -> None: ...

    def remove(self, participant_id: str) -> None: ...


class LoggingDisplay:
    """마지막 값을 보관하고 변경을 로그로 남기는 기본 구현.

    헤드리스 클라이언트(client.py)에서 사용됩니다.
    """

    def __init__(self, name: str):
        self.name = name
        self.items: Dict[str, Any] = {}

    def upsert(self, participant_id: str, data: Any) -> None:
        self.items[participant_id] = data
        logger.info(f"[{self.name}] {participant_id[:8]} 갱신: {data!r}")

    def remove(self, participant_id: str) -> None:
        if self.items.pop(participant_id, None) is not None:
            logger.info(f"[{self.name}] {participant_id[:8]} 제거")
