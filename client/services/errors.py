"""
Error taxonomy for the sync client

- TransportError: network failure or 5xx; RequestCache retries it
- ApiError: server answered `success: false`; not retried
- AuthorizationError: 401/403; never retried, controllers show access denied
- ConflictError: 409 / stale state; controllers revert and may recompute
"""
from typing import Optional


class SyncError(Exception):
    """Base class for failures crossing the REST/WebSocket boundary."""
    transient = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransportError(SyncError):
    """Raised when the request never produced a usable answer (connect error, timeout, 5xx)."""
    transient = True


class ApiError(SyncError):
    """Raised when the server rejected the request (`success: false` or 4xx)."""
    pass


class AuthorizationError(ApiError):
    """Raised on 401/403: missing, expired, or under-privileged bearer token."""
    pass


class ConflictError(ApiError):
    """Raised on 409: the server state moved on (e.g. report already verified)."""
    pass


def is_transient(error: BaseException) -> bool:
    """
    Should this failure be retried?

    SyncError subclasses declare it; anything else (a fetcher's own
    exception) is treated as transient.
    """
    return bool(getattr(error, 'transient', True))
