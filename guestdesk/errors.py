from typing import Any


class GuestdeskError(Exception):
    """Base class for all errors raised by the core."""

    code: str = "GUESTDESK_ERROR"
    status_code: int = 500

    def __init__(self, message: str, *, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "context": self.context}


class ValidationError(GuestdeskError):
    """Bad input shape, size or format."""

    code = "VALIDATION_ERROR"
    status_code = 400


class OwnershipConflict(GuestdeskError):
    """An identifier is already bound to another tenant."""

    code = "OWNERSHIP_CONFLICT"
    status_code = 403


class NotFound(GuestdeskError):
    code = "NOT_FOUND"
    status_code = 404


class ParseFailure(GuestdeskError):
    """A document could not be converted to text."""

    code = "PARSE_FAILURE"
    status_code = 422


class UnsupportedFormat(ParseFailure):
    code = "UNSUPPORTED_FORMAT"


class EmptyContent(ParseFailure):
    code = "EMPTY_CONTENT"
