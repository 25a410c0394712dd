"""Exception hierarchy and error classification for Backlog sync."""

from enum import Enum


class ErrorCode(str, Enum):
    """Classification attached to a degraded bucket set."""

    MISSING_CONFIG = "missing-config"
    PERMISSION_DENIED = "permission-denied"
    REQUEST_DENIED = "request-denied"
    NETWORK_ERROR = "network-error"


class BacklogSyncError(Exception):
    """Base exception for Backlog sync errors."""

    pass


class InvalidInputError(BacklogSyncError, ValueError):
    """An identifier or required field failed validation."""

    pass


class RemoteAccessError(BacklogSyncError):
    """A remote call could not be completed.

    Subclasses pin ``code`` to the classification the bucket-set path uses
    to pick its degradation policy.
    """

    code: ErrorCode = ErrorCode.NETWORK_ERROR


class MissingConfigError(RemoteAccessError):
    """No Backlog configuration is available."""

    code = ErrorCode.MISSING_CONFIG


class InvalidConfigError(MissingConfigError):
    """Configuration file exists but is invalid, so no usable config is available."""

    pass


class PermissionDeniedError(RemoteAccessError):
    """Access to the Backlog origin has not been granted."""

    code = ErrorCode.PERMISSION_DENIED


class RequestDeniedError(RemoteAccessError):
    """Backlog rejected the API key (HTTP 401)."""

    code = ErrorCode.REQUEST_DENIED


class BacklogApiError(RemoteAccessError):
    """Backlog answered with a non-success status."""

    def __init__(self, status_code: int, text: str = "") -> None:
        message = f"Backlog API error {status_code}"
        if text:
            message = f"{message}: {text}"
        super().__init__(message)
        self.status_code = status_code
        self.text = text


class RateLimitError(BacklogApiError):
    """Backlog rate limit exceeded (HTTP 429)."""

    pass


class BacklogConnectionError(RemoteAccessError):
    """Cannot reach the Backlog server, including timeouts."""

    pass


def classify_error(error: BaseException) -> ErrorCode:
    """Map a failed remote call to its error code.

    Anything that is not a ``RemoteAccessError`` counts as a network error.
    """
    if isinstance(error, RemoteAccessError):
        return error.code
    return ErrorCode.NETWORK_ERROR
