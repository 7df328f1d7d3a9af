"""
Error taxonomy shared by the engine, the API clients and the coordinators.

Every error raised by this package derives from SyncError and carries a
``retryable`` flag, which is what the retry policy consults first.
"""

from typing import Any

# Substrings that mark an error from a foreign library as transient.
RETRYABLE_MARKERS = (
    "rate limit",
    "too many requests",
    "quota exceeded",
    "network",
    "timeout",
    "econnrefused",
    "enotfound",
    "etimedout",
    "503",
    "502",
    "504",
)


class SyncError(Exception):
    """Base exception for sync errors."""

    code = "SYNC_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.status_code = status_code
        self.context = context or {}


class NetworkError(SyncError):
    code = "NETWORK_ERROR"
    retryable = True


class RateLimitError(SyncError):
    code = "RATE_LIMIT"
    retryable = True

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float | None = None, **kw):
        kw.setdefault("status_code", 429)
        super().__init__(message, **kw)
        self.retry_after = retry_after


class ValidationError(SyncError):
    code = "VALIDATION_ERROR"


class ConfigurationError(SyncError):
    code = "CONFIGURATION_ERROR"


class AuthenticationError(SyncError):
    """OAuth credentials were rejected. ``reason`` is the provider's error code."""

    code = "AUTH_ERROR"

    def __init__(self, message: str, reason: str | None = None, **kw):
        super().__init__(message, **kw)
        self.reason = reason


class ReadOnlyEventError(SyncError):
    """The remote record type forbids custom metadata (e.g. birthday events)."""

    code = "READ_ONLY_EVENT"


class TargetArchivedError(SyncError):
    """The linked record was archived or deleted on the remote side."""

    code = "TARGET_ARCHIVED"


class SyncTokenInvalidError(SyncError):
    code = "SYNC_TOKEN_INVALID"


class WebhookError(SyncError):
    code = "WEBHOOK_ERROR"


class JobAlreadyRunningError(SyncError):
    code = "JOB_RUNNING"


def is_retryable_error(exc: BaseException) -> bool:
    """Return True if ``exc`` is worth retrying.

    Our own errors are classified by their ``retryable`` flag alone. Builtin
    connection/timeout errors are transient. Anything else falls back to a
    case-insensitive match on the message.
    """
    if isinstance(exc, SyncError):
        return exc.retryable
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)
