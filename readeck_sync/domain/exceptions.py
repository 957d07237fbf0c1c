"""Domain-specific exceptions.

These exceptions represent protocol violations and failed login or sync
attempts. They are raised by the adapters and caught by the CLI layer, which
turns them into a notification and an exit code.
"""

from __future__ import annotations


class DomainException(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        """Initialize domain exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MalformedMultipartError(DomainException):
    """Raised when a multipart response cannot be framed into parts."""


class InvalidStateTransitionError(DomainException):
    """Raised when an invalid state transition is attempted."""


class AuthError(DomainException):
    """Base class for failures that end a login attempt."""


class AuthServerError(AuthError):
    """The authorization server answered with an unexpected status."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message, {"status": status})
        self.status = status


class AuthorizationRejectedError(AuthError):
    """The device code was denied by the user or expired server-side."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Authorization rejected: {reason}", {"reason": reason})
        self.reason = reason


class AuthorizationTimedOutError(AuthError):
    """Polling outlived the lifetime of the device code."""


class SyncError(DomainException):
    """Base class for failures that end a sync pass."""


class SyncAbortedError(SyncError):
    """An abort-class failure stopped the pass before the checkpoint moved."""

    def __init__(self, message: str, stage: str, details: dict | None = None) -> None:
        super().__init__(message, {"stage": stage, **(details or {})})
        self.stage = stage


class SyncAlreadyRunningError(SyncError):
    """A second pass was requested while one is still in flight."""


class InvalidBookmarkIdError(DomainException):
    """A bookmark id cannot be used as a single vault folder name."""

    def __init__(self, bookmark_id: str) -> None:
        super().__init__(f"Invalid bookmark id: {bookmark_id!r}", {"bookmark_id": bookmark_id})
        self.bookmark_id = bookmark_id
