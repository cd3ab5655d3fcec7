"""Error taxonomy for the invite and pass protocol.

Every error carries a machine-checkable ``reason_code`` and the HTTP status the
route layer answers with. Messages are short and safe to show to a client.
"""


class GateError(Exception):
    status_code = 400
    reason_code = "ERROR"
    message = "Request could not be completed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class NotFound(GateError):
    status_code = 404
    reason_code = "NOT_FOUND"
    message = "Not found"


class AlreadyUsed(GateError):
    reason_code = "ALREADY_USED"
    message = "Invite has already been used"


class CapacityExceeded(GateError):
    reason_code = "MAX_USES_REACHED"
    message = "Invite code has reached maximum uses"


class Expired(GateError):
    reason_code = "EXPIRED"
    message = "Token has expired"


class Unauthorized(GateError):
    status_code = 401
    reason_code = "UNAUTHORIZED"
    message = "Must be logged in"


class Forbidden(GateError):
    status_code = 403
    reason_code = "FORBIDDEN"
    message = "Not allowed"


class Malformed(GateError):
    reason_code = "MALFORMED"
    message = "Invalid token"


class InvalidToken(GateError):
    reason_code = "INVALID_TOKEN"
    message = "Invalid token"


class SignatureMismatch(GateError):
    reason_code = "SIGNATURE_MISMATCH"
    message = "Invalid token"


class AssignmentFailed(GateError):
    status_code = 500
    reason_code = "ASSIGNMENT_FAILED"
    message = "Failed to assign role"


class WrongEvent(GateError):
    reason_code = "WRONG_EVENT"
    message = "Pass is for a different event"


class Replay(GateError):
    status_code = 409
    reason_code = "REPLAY"
    message = "Already checked in"


class RateLimited(GateError):
    status_code = 429
    reason_code = "RATE_LIMITED"
    message = "Too many requests"


# Clients see one INVALID_TOKEN answer for both; the precise kind is only logged.
TAMPER_ERRORS = (Malformed, SignatureMismatch)


def client_reason(exc: GateError) -> str:
    if isinstance(exc, TAMPER_ERRORS):
        return InvalidToken.reason_code
    return exc.reason_code
