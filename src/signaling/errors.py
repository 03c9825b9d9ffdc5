"""Error taxonomy for the signaling server.

Every admission failure maps to an HTTP status so the transport can answer
the upgrade request before any room state is touched.
"""

from http import HTTPStatus


class SignalingError(Exception):
    """Base class for signaling errors.

    Attributes:
        status_code: HTTP status returned to the client at upgrade time
        reason: Short human-readable reason (also used as close reason)
    """

    status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    reason: str = "Internal error"

    def __init__(self, reason: str | None = None) -> None:
        if reason is not None:
            self.reason = reason
        super().__init__(self.reason)


class ProtocolError(SignalingError):
    """Request did not ask for a WebSocket upgrade."""

    status_code = HTTPStatus.UPGRADE_REQUIRED
    reason = "Expected WebSocket"


class BadRequestError(ProtocolError):
    """Malformed connection request (missing room, unknown role)."""

    status_code = HTTPStatus.BAD_REQUEST
    reason = "Bad request"


class NotFoundError(SignalingError):
    """Request path is not a signaling endpoint."""

    status_code = HTTPStatus.NOT_FOUND
    reason = "Not found"


class ServerBusyError(SignalingError):
    """Server reached its concurrent connection limit."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    reason = "Server busy"


class AdmissionError(SignalingError):
    """Room refused to admit a session. No session is created."""


class AuthError(AdmissionError):
    """Director password does not match the room password."""

    status_code = HTTPStatus.UNAUTHORIZED
    reason = "Unauthorized"


class CapacityError(AdmissionError):
    """Room already holds the maximum number of guests."""

    status_code = HTTPStatus.FORBIDDEN
    reason = "Room full"


class MessageFormatError(SignalingError):
    """Inbound frame is not a JSON object with a string ``type`` field.

    Logged and ignored by the coordinator; never reported to the sender.
    """

    status_code = HTTPStatus.BAD_REQUEST
    reason = "Malformed message"


def reason_label(error: SignalingError) -> str:
    """Metric label for an error, e.g. ``"room_full"``."""
    return error.reason.lower().replace(" ", "_")
