"""Exceptions raised across Eye on the Fire.

Every ``FireMapError`` knows the HTTP status it maps to, so the proxy can turn
it into the ``{status, error, message}`` payload without special cases.
"""
from typing import Any, Dict, Optional


class FireMapError(Exception):
    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str, status_code: Optional[int] = None, error: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error is not None:
            self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status_code,
            "error": self.error,
            "message": self.message,
        }


class UpstreamError(FireMapError):
    """An upstream API answered with a non-2xx status."""

    error = "Upstream API error"

    def __init__(self, status_code: int, message: str, error: Optional[str] = None):
        super().__init__(message, status_code=status_code, error=error)


class UpstreamUnavailable(FireMapError):
    """No response arrived from an upstream API."""

    status_code = 504
    error = "Upstream API timeout"


class ConfigurationError(FireMapError):
    status_code = 500
    error = "Server configuration error"


class BadRequestError(FireMapError):
    status_code = 400
    error = "Invalid request"


class ForbiddenError(FireMapError):
    status_code = 403
    error = "Security verification failed"


class RateLimitExceeded(FireMapError):
    status_code = 429
    error = "Too many requests"

    def __init__(self, message: str, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class FirmsFormatError(ValueError):
    """The payload is not FIRMS CSV (no latitude/longitude header)."""
