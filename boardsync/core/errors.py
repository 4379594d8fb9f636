"""Error taxonomy and classification for Asana sync failures."""

from enum import Enum

from pydantic import BaseModel


class ErrorCategory(Enum):
    """Categories of failures the sync core can surface."""

    SCHEMA_MISMATCH = "schema_mismatch"
    UNKNOWN_OPTION = "unknown_option"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    NETWORK = "network"
    INVALID_INTENT = "invalid_intent"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Custom field errors
    ERR_SCHEMA_MISMATCH = "ERR_SCHEMA_MISMATCH"
    ERR_UNKNOWN_OPTION = "ERR_UNKNOWN_OPTION"

    # Service errors
    ERR_UNAUTHORIZED = "ERR_UNAUTHORIZED"
    ERR_RATE_LIMITED = "ERR_RATE_LIMITED"
    ERR_TRANSIENT = "ERR_TRANSIENT"
    ERR_PERMANENT = "ERR_PERMANENT"
    ERR_NETWORK_ERROR = "ERR_NETWORK_ERROR"

    # Local errors
    ERR_INVALID_INTENT = "ERR_INVALID_INTENT"
    ERR_SUPERSEDED = "ERR_SUPERSEDED"
    ERR_CANCELLED_BY_RELOAD = "ERR_CANCELLED_BY_RELOAD"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


class CustomFieldError(ValueError):
    """Base class for custom field schema failures."""

    category = ErrorCategory.SCHEMA_MISMATCH

    def __init__(self, field_gid: str, message: str) -> None:
        super().__init__(f"Custom field {field_gid}: {message}")
        self.field_gid = field_gid
        self.detail = message


class SchemaMismatchError(CustomFieldError):
    """A custom field definition or value does not match its declared type."""


class UnknownOptionError(CustomFieldError):
    """An enum value references an option missing from the cached definition."""

    category = ErrorCategory.UNKNOWN_OPTION

    def __init__(self, field_gid: str, option_gids: list[str]) -> None:
        super().__init__(field_gid, f"unknown enum option(s) {', '.join(option_gids)}")
        self.option_gids = option_gids


class InvalidIntentError(ValueError):
    """An intent references state the local model does not have or cannot change."""

    category = ErrorCategory.INVALID_INTENT


class ApiError(Exception):
    """Base class for classified Asana API failures."""

    category = ErrorCategory.UNKNOWN
    retryable = False

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class UnauthorizedError(ApiError):
    """The access token was rejected (HTTP 401)."""

    category = ErrorCategory.UNAUTHORIZED


class RateLimitedError(ApiError):
    """The API asked us to slow down (HTTP 429)."""

    category = ErrorCategory.RATE_LIMITED
    retryable = True

    def __init__(self, message: str, *, status: int | None = 429, retry_after: float | None = None) -> None:
        super().__init__(message, status=status)
        self.retry_after = retry_after


class TransientError(ApiError):
    """Server-side or timeout failure that may succeed on retry."""

    category = ErrorCategory.TRANSIENT
    retryable = True


class PermanentError(ApiError):
    """Failure that will not change on retry (client errors, malformed responses)."""

    category = ErrorCategory.PERMANENT


class NetworkError(ApiError):
    """Connection could not be established or was dropped."""

    category = ErrorCategory.NETWORK
    retryable = True


def describe_failure(exception: BaseException) -> ErrorResponse:  # noqa: PLR0911
    """Classify a failure and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised while syncing or applying an intent

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, UnknownOptionError):
        return ErrorResponse(
            code=ErrorCode.ERR_UNKNOWN_OPTION,
            message="That option no longer exists on this field.",
            suggestion="Reload the project to refresh field options.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, CustomFieldError):
        return ErrorResponse(
            code=ErrorCode.ERR_SCHEMA_MISMATCH,
            message=f"Invalid value: {exception.detail}.",
            suggestion="Check the field type and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InvalidIntentError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_INTENT,
            message=str(exception),
            suggestion="Reload the project and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, UnauthorizedError):
        return ErrorResponse(
            code=ErrorCode.ERR_UNAUTHORIZED,
            message="Asana rejected the access token.",
            suggestion="Set a valid ASANA_ACCESS_TOKEN and restart.",
            severity=ErrorSeverity.CRITICAL,
        )

    if isinstance(exception, RateLimitedError):
        return ErrorResponse(
            code=ErrorCode.ERR_RATE_LIMITED,
            message="Too many requests to Asana.",
            suggestion="Please wait a moment and try again.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, TransientError):
        return ErrorResponse(
            code=ErrorCode.ERR_TRANSIENT,
            message="Asana is temporarily unavailable.",
            suggestion="Please try again later.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, NetworkError):
        return ErrorResponse(
            code=ErrorCode.ERR_NETWORK_ERROR,
            message="Network error occurred.",
            suggestion="Please check your connection and try again.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, PermanentError):
        status = f" (status {exception.status})" if exception.status else ""
        return ErrorResponse(
            code=ErrorCode.ERR_PERMANENT,
            message=f"Asana refused the change{status}: {exception}",
            suggestion="The change was reverted. Reload the project if it keeps happening.",
            severity=ErrorSeverity.HIGH,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, reload the project.",
        severity=ErrorSeverity.MEDIUM,
    )
