"""코디네이터-클라이언트 간 시그널링 메시지 스키마.

모든 WebSocket 프레임은 ``{"type": <event>, "data": <payload>}`` 형태의 JSON입니다.
필드 이름은 와이어에서는 camelCase, 파이썬에서는 snake_case를 사용합니다.
"""

from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(str, Enum):
    """시그널링 이벤트 타입"""
    # Server -> Client
    CONNECTED = "connected"
    ROOM_STATE = "room-state"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    # Client -> Server
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    # 양방향
    WEBRTC_SIGNAL = "webrtc-signal"
    LOCATION_UPDATE = "location-update"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def _clean_room_id(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("roomId must not be empty")
    return value


class Envelope(BaseModel):
    """WebSocket 프레임 봉투."""
    type: str
    data: Any = None


class LatLng(BaseModel):
    lat: float
    lng: float


class JoinRoom(_WireModel):
    """join-room 페이로드. 와이어에서는 룸 이름 문자열 하나입니다."""
    room_id: str = Field(alias="roomId")

    normalize_room_id = field_validator("room_id")(_clean_room_id)

    @classmethod
    def parse(cls, data: Any) -> "JoinRoom":
        if isinstance(data, str):
            data = {"roomId": data}
        return cls.model_validate(data)


class Signal(BaseModel):
    """offer/answer/candidate 시그널.

    sdp, candidate 등 나머지 필드는 그대로 통과시킵니다.
    """
    model_config = ConfigDict(extra="allow")

    type: Literal["offer", "answer", "candidate"]


class WebRTCSignal(_WireModel):
    room_id: str = Field(alias="roomId")
    from_id: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    signal: Signal

    normalize_room_id = field_validator("room_id")(_clean_room_id)


class LocationUpdate(_WireModel):
    room_id: str = Field(alias="roomId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    lat: float
    lng: float

    normalize_room_id = field_validator("room_id")(_clean_room_id)


class UserEvent(_WireModel):
    """user-joined / user-left / connected 페이로드."""
    user_id: str = Field(alias="userId")


class LocationEntry(_WireModel):
    user_id: str = Field(alias="userId")
    lat: float
    lng: float


class RoomState(_WireModel):
    users: List[str] = Field(default_factory=list)
    locations: List[LocationEntry] = Field(default_factory=list)


def envelope(event: EventType, data: Any = None) -> dict:
    """이벤트와 페이로드를 와이어 봉투 dict로 만듭니다."""
    if isinstance(data, _WireModel):
        data = data.to_wire()
    return {"type": event.value, "data": data}
