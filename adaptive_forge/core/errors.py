"""
Error taxonomy for the generation pipeline.

Completion-service adapters map their raw failures into an ErrorKind once;
everything downstream decides on retryability from the kind alone.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Closed set of classified completion-service failures."""
    RATE_LIMITED = "rate_limited"              # HTTP 429
    SERVER_ERROR = "server_error"              # HTTP 500
    BAD_GATEWAY = "bad_gateway"                # HTTP 502
    SERVICE_UNAVAILABLE = "service_unavailable"  # HTTP 503, connection loss
    MODEL_UNAVAILABLE = "model_unavailable"
    TIMEOUT = "timeout"
    INVALID_REQUEST = "invalid_request"        # HTTP 400/404/422
    AUTHENTICATION = "authentication"          # HTTP 401
    PERMISSION_DENIED = "permission_denied"    # HTTP 403
    EMPTY_RESPONSE = "empty_response"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Whether this failure should advance the fallback chain."""
        return self in _RETRYABLE_KINDS

    @classmethod
    def from_status(cls, status_code: int) -> "ErrorKind":
        """Classify an HTTP status code."""
        if status_code in _STATUS_KINDS:
            return _STATUS_KINDS[status_code]
        if 400 <= status_code < 500:
            return cls.INVALID_REQUEST
        return cls.UNKNOWN


_RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVER_ERROR,
    ErrorKind.BAD_GATEWAY,
    ErrorKind.SERVICE_UNAVAILABLE,
    ErrorKind.MODEL_UNAVAILABLE,
    ErrorKind.TIMEOUT,
})

_STATUS_KINDS = {
    400: ErrorKind.INVALID_REQUEST,
    401: ErrorKind.AUTHENTICATION,
    403: ErrorKind.PERMISSION_DENIED,
    429: ErrorKind.RATE_LIMITED,
    500: ErrorKind.SERVER_ERROR,
    502: ErrorKind.BAD_GATEWAY,
    503: ErrorKind.SERVICE_UNAVAILABLE,
}


class ConfigurationError(Exception):
    """Missing credentials, unknown tier, or an invalid model configuration.

    Never retried.
    """


class ServiceError(Exception):
    """A classified completion-service failure."""

    def __init__(self, message: str, kind: ErrorKind, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class TransientServiceError(ServiceError):
    """Retryable failure; drives fallback-chain advancement."""

    def __init__(self, message: str, kind: ErrorKind, status_code: Optional[int] = None):
        if not kind.retryable:
            raise ValueError(f"{kind.value} is not a retryable error kind")
        super().__init__(message, kind, status_code)


class NonRetryableServiceError(ServiceError):
    """Fatal failure; propagated without consulting the fallback chain."""

    def __init__(self, message: str, kind: ErrorKind, status_code: Optional[int] = None):
        if kind.retryable:
            raise ValueError(f"{kind.value} is a retryable error kind")
        super().__init__(message, kind, status_code)


class ExhaustedFallbackError(Exception):
    """Every tier in the fallback chain failed with a retryable error."""

    def __init__(self, message: str, attempted_tiers, last_error: ServiceError):
        super().__init__(message)
        self.attempted_tiers = tuple(attempted_tiers)
        self.last_error = last_error


def service_error_for(message: str, kind: ErrorKind, status_code: Optional[int] = None) -> ServiceError:
    """Build the typed error matching the kind's retryability."""
    if kind.retryable:
        return TransientServiceError(message, kind, status_code)
    return NonRetryableServiceError(message, kind, status_code)
