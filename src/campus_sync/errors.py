# src/campus_sync/errors.py
"""
Error taxonomy for the sync engine.

Local errors (validation, not-found, storage) abort the calling operation
with nothing persisted. Remote errors are caught per queue entry by the
reconciler so one bad entry never blocks the rest of a pass.
"""

from typing import Optional


class CampusSyncError(Exception):
    """Base class for all engine errors."""


class InitializationError(CampusSyncError):
    """A resource was used before init() completed (or after close())."""


class ValidationError(CampusSyncError):
    """Bad input detected before any write."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DuplicateNameError(ValidationError):
    """Another non-deleted local row already uses this business key."""


class NotFoundError(CampusSyncError):
    """The target row does not exist or is soft-deleted."""


class StorageError(CampusSyncError):
    """A local transaction failed and was rolled back."""


class RemoteError(CampusSyncError):
    """Base class for failures reported by the remote store."""


class RemoteConflictError(RemoteError):
    """Unique constraint violation on the remote side."""

    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint


class RemoteTransientError(RemoteError):
    """Network or server failure; the operation may be retried later."""
