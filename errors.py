from typing import Optional


class RoomsError(Exception):
    """Base for every failure the rooms core reports to a caller.

    `kind` is the stable identifier clients switch on; `message` is the
    human-readable text; `details` is merged into the response body.
    """

    kind = "RoomsError"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"ok": False, "kind": self.kind, "message": self.message}
        if self.retryable:
            body["retryable"] = True
        body.update(self.details)
        return body


class NotFound(RoomsError):
    kind = "NotFound"
    status_code = 404


class Unauthorized(RoomsError):
    kind = "Unauthorized"
    status_code = 403


class ValidationFailed(RoomsError):
    kind = "ValidationFailed"
    status_code = 400


class InvalidTransition(RoomsError):
    kind = "InvalidTransition"
    status_code = 409

    def __init__(self, attempted: str, current: str):
        super().__init__(
            f"Cannot move room to '{attempted}' while it is '{current}'.",
            {"attempted_state": attempted, "current_state": current},
        )
        self.attempted = attempted
        self.current = current


class InvalidVisibilityForContext(RoomsError):
    kind = "InvalidVisibilityForContext"
    status_code = 400


class RoomNotStarted(RoomsError):
    kind = "RoomNotStarted"
    status_code = 409


class RoomClosed(RoomsError):
    kind = "RoomClosed"
    status_code = 409


class RoomFull(RoomsError):
    kind = "RoomFull"
    status_code = 409


class NotCommunityMember(RoomsError):
    kind = "NotCommunityMember"
    status_code = 403


# Token and password failures share one surface message.
CREDENTIALS_MESSAGE = "Invite token or room password is invalid."


class InvalidInviteToken(RoomsError):
    kind = "InvalidInviteToken"
    status_code = 403


class InvalidPassword(RoomsError):
    kind = "InvalidPassword"
    status_code = 403


class AlreadyResolved(RoomsError):
    kind = "AlreadyResolved"
    status_code = 409


class RequestExpired(RoomsError):
    kind = "RequestExpired"
    status_code = 410


class TooManyPendingRequests(RoomsError):
    kind = "TooManyPendingRequests"
    status_code = 429


class ProviderUnavailable(RoomsError):
    kind = "ProviderUnavailable"
    status_code = 503
    retryable = True


class MeetIdUnavailable(RoomsError):
    kind = "MeetIdUnavailable"
    status_code = 503
    retryable = True
