"""Error taxonomy for the SPOT client.

Cache failures are kept distinct from cache misses, and session-state errors
are never retried by the client itself.
"""

from __future__ import annotations

from typing import Optional


class SpotifierError(Exception):
    """Base class for every error raised by this package."""


class AuthenticationError(SpotifierError):
    """The SSO handshake failed.

    ``reason`` is one of ``bad_credentials``, ``network`` or
    ``unexpected_response``.
    """

    BAD_CREDENTIALS = "bad_credentials"
    NETWORK = "network"
    UNEXPECTED_RESPONSE = "unexpected_response"

    def __init__(self, reason: str, detail: Optional[str] = None) -> None:
        self.reason = reason
        self.detail = detail
        message = f"authentication failed ({reason})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class InvalidStateError(SpotifierError):
    """The operation is not legal in the session's current state."""


class SessionExpiredError(SpotifierError):
    """The portal reported the session as logged out."""


class CacheError(SpotifierError):
    """Storage-layer failure in a cache backend."""


class CacheReadError(CacheError):
    """An entry exists but could not be read back intact."""


class CacheWriteError(CacheError):
    """An entry could not be committed or removed."""


class SnapshotFormatError(SpotifierError):
    """A persisted session snapshot is malformed or unreadable."""


class TransportError(SpotifierError):
    """Opaque network failure reported by the transport."""


class ParsingError(SpotifierError):
    """A portal page did not have the expected structure."""


class PortalError(SpotifierError):
    """The portal answered with an unexpected status or page."""


class InvalidPeriodError(PortalError):
    """The requested academic period is unknown to the portal."""


class TaskSubmissionError(PortalError):
    pass


class TaskDeletionError(PortalError):
    pass


__all__ = [
    "SpotifierError",
    "AuthenticationError",
    "InvalidStateError",
    "SessionExpiredError",
    "CacheError",
    "CacheReadError",
    "CacheWriteError",
    "SnapshotFormatError",
    "TransportError",
    "ParsingError",
    "PortalError",
    "InvalidPeriodError",
    "TaskSubmissionError",
    "TaskDeletionError",
]
