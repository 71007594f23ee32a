"""
Error taxonomy for the leave workflow.

Every failure a caller can see is one of these types. The HTTP layer maps
them to status codes and user-facing notices; nothing below it formats
responses.
"""

from enum import Enum


class HRPortalError(Exception):
    """Base class for all service errors."""


class ValidationErrorCode(str, Enum):
    """Why a leave submission was rejected."""

    MISSING_FIELD = "missing_field"
    INVALID_RANGE = "invalid_range"
    TOO_SHORT = "too_short"


class ValidationError(HRPortalError):
    """A submission failed a structural check. Client-correctable."""

    def __init__(self, code: ValidationErrorCode, field: str, message: str):
        super().__init__(message)
        self.code = code
        self.field = field
        self.message = message

    def to_dict(self) -> dict:
        return {"field": self.field, "code": self.code.value, "message": self.message}


class Unauthorized(HRPortalError):
    """The caller may not perform this action. Carries no detail for the client."""


class AuthenticationError(Unauthorized):
    """Credentials or session token were rejected."""


class InvalidTransition(HRPortalError):
    """The request is not in a state that allows the requested transition."""

    def __init__(self, message: str, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status


class StorageError(HRPortalError):
    """Backend failure. Reported to the caller, never swallowed."""


class NotFoundError(StorageError):
    """No row matched a single-row update or lookup."""


class BalanceUpdateError(StorageError):
    """The atomic balance increment did not apply."""

    NOT_FOUND = "not_found"
    EXCEEDS_ALLOTMENT = "exceeds_allotment"
    UNAVAILABLE = "unavailable"

    def __init__(self, message: str, reason: str = UNAVAILABLE):
        super().__init__(message)
        self.reason = reason
