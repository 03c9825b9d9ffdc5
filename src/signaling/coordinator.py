"""Room coordinator.

Owns every session of one room and is the only reader and writer of that
room's state. All public methods are synchronous: the event loop runs each
connection event (admission, inbound message, disconnect) to completion
before starting the next, so no locking is needed.

Thread-safety: This class is NOT thread-safe. Use from a single event loop.
"""

import hmac
import logging
import uuid
from collections.abc import Callable
from typing import Any

from src.signaling.config import RoomConfig
from src.signaling.errors import (
    AdmissionError,
    AuthError,
    BadRequestError,
    CapacityError,
    MessageFormatError,
    reason_label,
)
from src.signaling.metrics import MetricsCollector, get_metrics_collector
from src.signaling.protocol import (
    PROGRAM_FORWARD_KINDS,
    SIGNALING_KINDS,
    DirectorDisconnectedEvent,
    DirectorPresentEvent,
    ForceMuteEvent,
    GuestInfo,
    GuestJoinedEvent,
    GuestLeftEvent,
    GuestsListEvent,
    KickedEvent,
    MessageKind,
    ProgramConnectedEvent,
    ProgramReadyEvent,
    WireModel,
    parse_message,
    stamp_sender,
)
from src.signaling.session import Channel, Role, Session

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def resolve_role(value: str | None) -> Role:
    """Map the ``role`` connect parameter to a Role (default: guest).

    Raises:
        BadRequestError: If the value names no known role
    """
    if not value:
        return Role.GUEST
    try:
        return Role(value)
    except ValueError as e:
        raise BadRequestError("Invalid role") from e


class RoomCoordinator:
    """Admission, routing and disconnect handling for one room.

    State:
    - sessions: session id → Session (insertion order is enumeration order)
    - director_password: fixed by the first director, cleared when the
      last director leaves
    """

    def __init__(
        self,
        name: str,
        config: RoomConfig | None = None,
        metrics: MetricsCollector | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """Initialize an empty room.

        Args:
            name: Room name (for logging)
            config: Room policy (defaults to RoomConfig())
            metrics: Metrics collector (defaults to the global collector)
            id_factory: Session id generator (defaults to uuid4 strings)
        """
        self.name = name
        self.config = config or RoomConfig()
        self.sessions: dict[str, Session] = {}
        self.director_password: str | None = None

        self._metrics = metrics or get_metrics_collector()
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))

    # === State views ===

    @property
    def directors(self) -> list[Session]:
        return [s for s in self.sessions.values() if s.is_director]

    @property
    def guests(self) -> list[Session]:
        return [s for s in self.sessions.values() if s.is_guest]

    @property
    def programs(self) -> list[Session]:
        return [s for s in self.sessions.values() if s.is_program]

    @property
    def guest_count(self) -> int:
        return sum(1 for s in self.sessions.values() if s.is_guest)

    @property
    def password_set(self) -> bool:
        return bool(self.director_password)

    @property
    def is_empty(self) -> bool:
        return not self.sessions

    def summary(self) -> dict[str, Any]:
        """Room snapshot for the /rooms endpoint. Never includes the password."""
        return {
            "name": self.name,
            "sessions": len(self.sessions),
            "directors": len(self.directors),
            "guests": self.guest_count,
            "programs": len(self.programs),
            "password_set": self.password_set,
        }

    # === Admission ===

    def check_admission(self, role: Role, password: str = "") -> None:
        """Check admission rules without changing room state.

        Raises:
            AuthError: Director password does not match the room password
            CapacityError: Guest limit reached
        """
        if role is Role.DIRECTOR and self.director_password:
            if not hmac.compare_digest(
                password.encode("utf-8"), self.director_password.encode("utf-8")
            ):
                raise AuthError()

        if role is Role.GUEST and self.guest_count >= self.config.max_guests:
            raise CapacityError()

    def admit(
        self,
        channel: Channel,
        name: str | None = None,
        role: Role = Role.GUEST,
        password: str | None = None,
    ) -> Session:
        """Admit a new session into the room.

        The first director admitted while no password is set fixes the
        room password.

        Args:
            channel: Outbound channel of the new connection
            name: Display name (empty → configured default)
            role: Requested role
            password: Supplied password (director only)

        Returns:
            The registered Session

        Raises:
            AuthError: Director password does not match
            CapacityError: Guest limit reached
        """
        name = name or self.config.default_name
        password = password or ""

        try:
            self.check_admission(role, password)
        except AdmissionError as e:
            self._metrics.record_rejection(reason_label(e))
            logger.info(
                "Admission refused",
                extra={"room": self.name, "role": role.value, "reason": e.reason},
            )
            raise

        if role is Role.DIRECTOR and not self.director_password:
            self.director_password = password
            logger.info("Room password set by director", extra={"room": self.name})

        session = Session(id=self._new_id(), channel=channel, name=name, role=role)
        self.sessions[session.id] = session
        self._metrics.record_admission(role.value)

        logger.info(
            "Session admitted",
            extra={
                "room": self.name,
                "session_id": session.id,
                "role": role.value,
                "display_name": name,
                "guests": self.guest_count,
            },
        )

        if role is Role.GUEST:
            self._notify_directors(GuestJoinedEvent(guest_id=session.id, name=name))
            director = next(iter(self.directors), None)
            if director is not None:
                self._deliver(session, DirectorPresentEvent(director_id=director.id))
        elif role is Role.PROGRAM:
            self._notify_directors(ProgramConnectedEvent())

        return session

    # === Routing ===

    def handle_message(self, session: Session, raw: str | bytes) -> None:
        """Dispatch one inbound frame from ``session``.

        Malformed frames and unrecognized kinds are ignored.
        """
        if session.id not in self.sessions:
            logger.debug(
                "Message from departed session ignored",
                extra={"room": self.name, "session_id": session.id},
            )
            return

        try:
            message, data = parse_message(raw)
        except MessageFormatError as e:
            self._metrics.record_message("malformed")
            logger.warning(
                "Malformed message ignored",
                extra={"room": self.name, "session_id": session.id, "error": e.reason},
            )
            return

        kind = message.kind
        self._metrics.record_message(kind.value if kind else "unknown")

        if kind is None:
            logger.debug(
                "Unknown message type",
                extra={"room": self.name, "session_id": session.id, "type": message.type},
            )
            return

        stamped = stamp_sender(data, session)

        if kind in SIGNALING_KINDS:
            if message.target_id:
                self._send_to(message.target_id, stamped)

        elif kind is MessageKind.KICK_GUEST:
            if self._authorize_control(session, kind):
                self.kick_guest(message.guest_id)

        elif kind is MessageKind.REMOTE_MUTE:
            if self._authorize_control(session, kind):
                self.remote_mute(message.guest_id, data.get("muted", _UNSET))

        elif kind in PROGRAM_FORWARD_KINDS:
            self._notify_programs(stamped)

        elif kind is MessageKind.PROGRAM_READY:
            self._notify_directors(ProgramReadyEvent())

        elif kind is MessageKind.GET_GUESTS:
            guests = [GuestInfo(id=g.id, name=g.name) for g in self.guests]
            self._deliver(session, GuestsListEvent(guests=guests))

    def kick_guest(self, guest_id: Any) -> bool:
        """Evict a guest: send ``kicked``, close it, remove it, tell programs.

        Returns:
            True if a guest was evicted
        """
        guest = self._lookup(guest_id)
        if guest is None or not guest.is_guest:
            logger.debug(
                "Kick target is not a guest in this room",
                extra={"room": self.name, "guest_id": guest_id},
            )
            return False

        self._deliver(guest, KickedEvent())
        try:
            guest.channel.close()
        except Exception as e:
            logger.debug(
                "Error closing kicked guest channel",
                extra={"room": self.name, "session_id": guest.id, "error": str(e)},
            )

        del self.sessions[guest.id]
        self._metrics.record_guest_kicked()
        self._metrics.record_session_end()
        logger.info(
            "Guest kicked",
            extra={"room": self.name, "session_id": guest.id, "display_name": guest.name},
        )

        self._notify_programs(GuestLeftEvent(guest_id=guest.id))
        return True

    def remote_mute(self, guest_id: Any, muted: Any = _UNSET) -> bool:
        """Send ``force-mute`` to a guest, relaying ``muted`` as given.

        Returns:
            True if a force-mute was sent to a guest session
        """
        guest = self._lookup(guest_id)
        if guest is None or not guest.is_guest:
            logger.debug(
                "Mute target is not a guest in this room",
                extra={"room": self.name, "guest_id": guest_id},
            )
            return False

        event = ForceMuteEvent() if muted is _UNSET else ForceMuteEvent(muted=muted)
        self._deliver(guest, event)
        return True

    def _authorize_control(self, session: Session, kind: MessageKind) -> bool:
        if self.config.restrict_control_to_director and not session.is_director:
            logger.warning(
                "Control message from non-director ignored",
                extra={
                    "room": self.name,
                    "session_id": session.id,
                    "role": session.role.value,
                    "type": kind.value,
                },
            )
            return False
        return True

    # === Disconnect ===

    def on_close(self, session: Session) -> None:
        """Remove a disconnected session and notify the room.

        No-op for sessions already removed by ``kick_guest``.
        """
        if self.sessions.pop(session.id, None) is None:
            logger.debug(
                "Closed session already removed",
                extra={"room": self.name, "session_id": session.id},
            )
            return

        self._metrics.record_session_end()
        logger.info(
            "Session disconnected",
            extra={"room": self.name, "session_id": session.id, "role": session.role.value},
        )

        if session.is_guest:
            self._notify_directors(GuestLeftEvent(guest_id=session.id, name=session.name))
            self._notify_programs(GuestLeftEvent(guest_id=session.id))
        elif session.is_director:
            self._broadcast(DirectorDisconnectedEvent())
            if not self.directors:
                self.director_password = None
                logger.info("Room password cleared", extra={"room": self.name})

    def close_all(self) -> None:
        """Close every session channel (server shutdown). Sessions stay
        registered until their transport reports the close."""
        for session in list(self.sessions.values()):
            try:
                session.channel.close()
            except Exception as e:
                logger.debug(
                    "Error closing channel",
                    extra={"room": self.name, "session_id": session.id, "error": str(e)},
                )

    # === Delivery ===

    def _deliver(self, session: Session, message: WireModel | dict[str, Any]) -> None:
        """Best-effort send. Failures are logged and counted, never raised."""
        payload = message.to_wire() if isinstance(message, WireModel) else message
        try:
            session.channel.send(payload)
        except Exception as e:
            self._metrics.record_delivery_failure()
            logger.debug(
                "Delivery failed",
                extra={
                    "room": self.name,
                    "session_id": session.id,
                    "type": payload.get("type"),
                    "error": str(e),
                },
            )

    def _lookup(self, session_id: Any) -> Session | None:
        # Ids arrive as raw JSON values; only strings can name a session.
        return self.sessions.get(session_id) if isinstance(session_id, str) else None

    def _send_to(self, session_id: Any, message: WireModel | dict[str, Any]) -> None:
        target = self._lookup(session_id)
        if target is None:
            logger.debug(
                "Routing target not found, dropping",
                extra={"room": self.name, "target_id": session_id},
            )
            return
        self._deliver(target, message)

    def _notify_directors(self, message: WireModel | dict[str, Any]) -> None:
        for session in self.directors:
            self._deliver(session, message)

    def _notify_programs(self, message: WireModel | dict[str, Any]) -> None:
        for session in self.programs:
            self._deliver(session, message)

    def _broadcast(self, message: WireModel | dict[str, Any]) -> None:
        for session in list(self.sessions.values()):
            self._deliver(session, message)
