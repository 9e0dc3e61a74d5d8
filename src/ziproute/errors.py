from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    FORMAT = "format"
    GEOGRAPHIC = "geographic"
    SERVICE_TERRITORY = "service_territory"
    AVAILABILITY = "availability"
    SYSTEM = "system"


class ErrorCode(str, Enum):
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_LENGTH = "INVALID_LENGTH"
    INVALID_CHARACTERS = "INVALID_CHARACTERS"
    NOT_IN_REGION = "NOT_IN_REGION"
    NOT_FOUND = "NOT_FOUND"
    NOT_SERVICEABLE = "NOT_SERVICEABLE"
    NO_CONTENT = "NO_CONTENT"
    INSUFFICIENT_CONTENT = "INSUFFICIENT_CONTENT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]

    @property
    def message(self) -> str:
        return _MESSAGES[self]

    @property
    def is_client_error(self) -> bool:
        return self.category is not ErrorCategory.SYSTEM


FORMAT_ERRORS = frozenset({
    ErrorCode.INVALID_FORMAT,
    ErrorCode.INVALID_LENGTH,
    ErrorCode.INVALID_CHARACTERS,
})

_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.INVALID_FORMAT: ErrorCategory.FORMAT,
    ErrorCode.INVALID_LENGTH: ErrorCategory.FORMAT,
    ErrorCode.INVALID_CHARACTERS: ErrorCategory.FORMAT,
    ErrorCode.NOT_IN_REGION: ErrorCategory.GEOGRAPHIC,
    ErrorCode.NOT_FOUND: ErrorCategory.GEOGRAPHIC,
    ErrorCode.NOT_SERVICEABLE: ErrorCategory.SERVICE_TERRITORY,
    ErrorCode.NO_CONTENT: ErrorCategory.AVAILABILITY,
    ErrorCode.INSUFFICIENT_CONTENT: ErrorCategory.AVAILABILITY,
    ErrorCode.UPSTREAM_ERROR: ErrorCategory.SYSTEM,
    ErrorCode.PERSISTENCE_ERROR: ErrorCategory.SYSTEM,
    ErrorCode.TIMEOUT: ErrorCategory.SYSTEM,
    ErrorCode.RATE_LIMITED: ErrorCategory.SYSTEM,
    ErrorCode.INTERNAL_ERROR: ErrorCategory.SYSTEM,
}

_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_FORMAT: "Please enter a 5-digit ZIP code.",
    ErrorCode.INVALID_LENGTH: "ZIP codes must be exactly 5 digits.",
    ErrorCode.INVALID_CHARACTERS: "ZIP codes can only contain numbers.",
    ErrorCode.NOT_IN_REGION: "This ZIP code is outside our Texas service region.",
    ErrorCode.NOT_FOUND: "We could not find this ZIP code in our service area.",
    ErrorCode.NOT_SERVICEABLE: "This area is served by a regulated utility and does not have retail choice.",
    ErrorCode.NO_CONTENT: "No electricity plans are published for this area yet.",
    ErrorCode.INSUFFICIENT_CONTENT: "Only a few electricity plans are published for this area.",
    ErrorCode.UPSTREAM_ERROR: "A territory verification service is unavailable. Please try again shortly.",
    ErrorCode.PERSISTENCE_ERROR: "We could not save this request. Please try again shortly.",
    ErrorCode.TIMEOUT: "The request took too long. Please try again.",
    ErrorCode.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorCode.INTERNAL_ERROR: "Something went wrong on our end. Please try again.",
}


class ZipRouteError(Exception):
    """Base for errors raised across component seams."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code.message)
        self.message = message or self.code.message


class BulkPayloadError(ZipRouteError):
    """A bulk request exceeded a size cap or named an unknown operation."""

    code = ErrorCode.INVALID_FORMAT


class SourceError(ZipRouteError):
    """An external verification source could not produce an answer."""

    code = ErrorCode.UPSTREAM_ERROR

    def __init__(self, source_id: str, message: str | None = None, code: ErrorCode | None = None):
        if code is not None:
            self.code = code
        super().__init__(message)
        self.source_id = source_id


class PersistenceError(ZipRouteError):
    """Mappings or coverage could not be read from or written to the database."""

    code = ErrorCode.PERSISTENCE_ERROR
