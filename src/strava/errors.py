"""Error taxonomy for the Strava sync subsystem.

    AdmissionDenied    — local quota exhausted, raised before any remote call
    RateLimitExceeded  — Strava (or the edge function) reported its own limit
    AuthError          — token invalid or revoked; the reconnect flow must run
    TransientError     — any other network or server failure
    EntityNotFound     — a detail lookup for an id that does not exist

None of these are retried inside a sync run.  The next scheduled tick is the
retry.
"""

from __future__ import annotations

import httpx


class StravaSyncError(Exception):
    """Base exception for sync errors."""

    default_message = "Sync failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        """Message suitable for a user-visible notice."""
        return str(self)


class AdmissionDenied(StravaSyncError):
    """Raised when the local daily quota does not admit another call."""

    default_message = "Strava API limit reached - sync postponed"

    @property
    def user_message(self) -> str:
        return self.default_message


class RateLimitExceeded(StravaSyncError):
    """Raised when the remote API signals HTTP 429 or a rate-limit message."""

    default_message = "Strava API limit reached"

    @property
    def user_message(self) -> str:
        return self.default_message


class AuthError(StravaSyncError):
    """Raised when credentials are invalid."""

    default_message = "Strava authentication problem"

    @property
    def user_message(self) -> str:
        return self.default_message


class TransientError(StravaSyncError):
    """Network or server failure that may succeed on a later tick."""

    default_message = "Error during synchronization"


_RATE_LIMIT_PATTERNS = ("rate limit", "429", "too many requests")
_AUTH_PATTERNS = ("token", "unauthorized", "401")


def classify_error(exc: BaseException) -> StravaSyncError:
    """Map an arbitrary exception onto the taxonomy.

    Args:
        exc: Exception raised by a remote collaborator.

    Returns:
        A StravaSyncError subclass instance, chained to ``exc`` when new.
    """
    if isinstance(exc, StravaSyncError):
        return exc

    classified: StravaSyncError
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        if status_code == 429:
            classified = RateLimitExceeded(f"Remote rate limit hit (HTTP {status_code})")
        elif status_code in {401, 403}:
            classified = AuthError(f"Remote rejected credentials (HTTP {status_code})")
        else:
            classified = TransientError(f"Remote error (HTTP {status_code})")
    elif isinstance(exc, httpx.TransportError):
        classified = TransientError(f"Network error: {exc}")
    else:
        message = str(exc)
        lowered = message.lower()
        if any(p in lowered for p in _RATE_LIMIT_PATTERNS):
            classified = RateLimitExceeded(message)
        elif any(p in lowered for p in _AUTH_PATTERNS):
            classified = AuthError(message)
        else:
            classified = TransientError(message or None)

    classified.__cause__ = exc
    return classified


class EntityNotFound(StravaSyncError):
    """Raised by detail sources when the requested entity does not exist."""

    default_message = "Activity not found"
