"""Lightweight shared schemas and errors for the relay and peer sides."""

from .errors import (
    GeomeshError,
    ConnectivityError,
    SignalingError,
    MediaAcquisitionError,
    NegotiationError,
)
from .schemas import (
    EventType,
    Envelope,
    LatLng,
    JoinRoom,
    Signal,
    WebRTCSignal,
    LocationUpdate,
    UserEvent,
    LocationEntry,
    RoomState,
    envelope,
)

__all__ = [
    # Errors
    "GeomeshError",
    "ConnectivityError",
    "SignalingError",
    "MediaAcquisitionError",
    "NegotiationError",
    # Schemas
    "EventType",
    "Envelope",
    "LatLng",
    "JoinRoom",
    "Signal",
    "WebRTCSignal",
    "LocationUpdate",
    "UserEvent",
    "LocationEntry",
    "RoomState",
    "envelope",
]
