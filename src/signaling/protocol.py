"""Signaling wire protocol.

Messages are JSON objects with a required ``type`` field and camelCase
payload fields. Outbound events are Pydantic models serialized with
``to_wire()``; inbound messages are validated just enough to dispatch them
and are otherwise relayed untouched.
"""

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from src.signaling.errors import MessageFormatError
from src.signaling.session import Session


class MessageKind(str, Enum):
    """Client → Server message kinds understood by the coordinator."""

    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    KICK_GUEST = "kick-guest"
    REMOTE_MUTE = "remote-mute"
    LAYOUT_CHANGE = "layout-change"
    SCENE_UPDATE = "scene-update"
    PROGRAM_READY = "program-ready"
    GET_GUESTS = "get-guests"

    @classmethod
    def lookup(cls, value: str) -> "MessageKind | None":
        """Return the kind for ``value`` or None when unrecognized."""
        try:
            return cls(value)
        except ValueError:
            return None


SIGNALING_KINDS = frozenset(
    {MessageKind.OFFER, MessageKind.ANSWER, MessageKind.ICE_CANDIDATE}
)
PROGRAM_FORWARD_KINDS = frozenset({MessageKind.LAYOUT_CHANGE, MessageKind.SCENE_UPDATE})


class WireModel(BaseModel):
    """Base for all protocol models (snake_case in Python, camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-ready dict using wire field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class InboundMessage(BaseModel):
    """Client → Server: any message.

    Only ``type`` is validated. Every other field is kept as sent, whatever
    its JSON type, and relayed verbatim; routing fields are read by the
    handlers that use them.
    """

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1, description="Message kind")

    @property
    def kind(self) -> MessageKind | None:
        return MessageKind.lookup(self.type)

    @property
    def target_id(self) -> Any:
        """Raw ``targetId`` (unicast target session), None when absent."""
        return (self.model_extra or {}).get("targetId")

    @property
    def guest_id(self) -> Any:
        """Raw ``guestId`` (guest addressed by a control), None when absent."""
        return (self.model_extra or {}).get("guestId")


class GuestJoinedEvent(WireModel):
    """Server → Directors: a guest was admitted."""

    type: Literal["guest-joined"] = "guest-joined"
    guest_id: str
    name: str


class GuestLeftEvent(WireModel):
    """Server → Directors/Programs: a guest left or was evicted.

    Directors receive the guest name; programs receive only the id.
    """

    type: Literal["guest-left"] = "guest-left"
    guest_id: str
    name: str | None = None


class ProgramConnectedEvent(WireModel):
    """Server → Directors: a program output connected."""

    type: Literal["program-connected"] = "program-connected"


class ProgramReadyEvent(WireModel):
    """Server → Directors: a program output is ready to render."""

    type: Literal["program-ready"] = "program-ready"


class DirectorPresentEvent(WireModel):
    """Server → new Guest: a director is already in the room."""

    type: Literal["director-present"] = "director-present"
    director_id: str


class DirectorDisconnectedEvent(WireModel):
    """Server → everyone: a director left."""

    type: Literal["director-disconnected"] = "director-disconnected"


class KickedEvent(WireModel):
    """Server → Guest: you are being evicted."""

    type: Literal["kicked"] = "kicked"


class ForceMuteEvent(WireModel):
    """Server → Guest: set local microphone mute state.

    ``muted`` is relayed exactly as the controller sent it and omitted only
    when the controller left it out.
    """

    type: Literal["force-mute"] = "force-mute"
    muted: Any = None

    def to_wire(self) -> dict[str, Any]:
        wire = self.model_dump(by_alias=True, exclude={"muted"})
        if "muted" in self.model_fields_set:
            wire["muted"] = self.muted
        return wire


class GuestInfo(WireModel):
    """Guest entry in a ``guests-list`` reply."""

    id: str
    name: str


class GuestsListEvent(WireModel):
    """Server → requester: current guests in enumeration order."""

    type: Literal["guests-list"] = "guests-list"
    guests: list[GuestInfo] = Field(default_factory=list)


def parse_message(raw: str | bytes) -> tuple[InboundMessage, dict[str, Any]]:
    """Parse an inbound frame.

    Args:
        raw: JSON text frame

    Returns:
        Validated routing view and the raw payload dict

    Raises:
        MessageFormatError: If the frame is not a JSON object with a ``type``
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageFormatError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MessageFormatError("Message must be a JSON object")

    try:
        message = InboundMessage.model_validate(data)
    except ValidationError as e:
        raise MessageFormatError(f"Invalid message: {e.error_count()} error(s)") from e

    return message, data


def stamp_sender(data: dict[str, Any], session: Session) -> dict[str, Any]:
    """Return a copy of ``data`` carrying server-assigned sender fields.

    Client-supplied ``senderId``/``senderName``/``senderRole`` are overwritten.
    """
    return {
        **data,
        "senderId": session.id,
        "senderName": session.name,
        "senderRole": session.role.value,
    }
