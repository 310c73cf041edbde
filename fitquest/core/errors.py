"""Engine error types.

Every error carries a stable ``code`` and the HTTP status the calling layer
is expected to map it to.
"""

from typing import Optional


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code

    def to_payload(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}, "detail": self.message}


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class InvalidStateError(AppError):
    code = "invalid_state"
    status_code = 409


class InactiveChallengeError(InvalidStateError):
    code = "challenge_inactive"
    status_code = 400


class AlreadyJoinedError(InvalidStateError):
    code = "challenge_already_joined"


class AlreadyCompletedError(InvalidStateError):
    code = "challenge_already_completed"


class NotJoinedError(InvalidStateError):
    code = "challenge_not_joined"
    status_code = 400


class CannotLeaveCompletedError(InvalidStateError):
    code = "challenge_cannot_leave_completed"
    status_code = 400


class ConflictError(AppError):
    """Raised when a transaction lost a race. Retried internally."""
    code = "conflict"
    status_code = 409
