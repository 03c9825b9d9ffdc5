"""Session model for signaling rooms.

A session is one admitted connection. The coordinator only talks to the
connection through the Channel interface, so rooms can be driven by the
WebSocket transport or by an in-memory channel in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Connection role, chosen by the client at connect time.

    - DIRECTOR: sets/holds the room password, receives guest lifecycle events
    - GUEST: capacity-limited participant
    - PROGRAM: compositing output, receives layout and scene events
    """

    DIRECTOR = "director"
    GUEST = "guest"
    PROGRAM = "program"


class Channel(ABC):
    """Outbound half of a session's bidirectional connection.

    Implementations must never block the caller: the coordinator sends from
    inside synchronous event handlers.
    """

    @abstractmethod
    def send(self, message: dict[str, Any]) -> None:
        """Queue a JSON-serializable message for delivery.

        Raises:
            ConnectionError: If the channel is closed or broken
        """

    @abstractmethod
    def close(self) -> None:
        """Close the channel. Repeated calls are tolerated."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Check if the channel still accepts messages."""


@dataclass(eq=False)
class Session:
    """One admitted connection in a room."""

    id: str
    channel: Channel
    name: str
    role: Role

    @property
    def is_director(self) -> bool:
        return self.role is Role.DIRECTOR

    @property
    def is_guest(self) -> bool:
        return self.role is Role.GUEST

    @property
    def is_program(self) -> bool:
        return self.role is Role.PROGRAM
