"""Single-room WebRTC signaling coordinator.

Admits director, guest and program connections into named rooms and routes
signaling and control messages between them.
"""

from src.signaling.config import SignalingConfig
from src.signaling.coordinator import RoomCoordinator
from src.signaling.errors import (
    AdmissionError,
    AuthError,
    CapacityError,
    ProtocolError,
    SignalingError,
)
from src.signaling.registry import RoomRegistry
from src.signaling.session import Channel, Role, Session

__all__ = [
    "AdmissionError",
    "AuthError",
    "CapacityError",
    "Channel",
    "ProtocolError",
    "Role",
    "RoomCoordinator",
    "RoomRegistry",
    "Session",
    "SignalingConfig",
    "SignalingError",
]
