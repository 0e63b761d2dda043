# src/campus_sync/core/ports/remote.py
"""
Remote Store Port Interface

Abstract interface for the authoritative remote store.
Implementations:
- SupabaseRemoteStore (production)

Every method raises RemoteConflictError for unique violations and
RemoteTransientError for anything else that went wrong remotely.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class RemoteStorePort(ABC):
    """Operations the sync engine needs from the remote store, per table."""

    @abstractmethod
    async def insert(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it, including the remote-assigned id."""
        pass

    @abstractmethod
    async def update_by_uuid(self, table: str, uuid: str, data: Dict[str, Any]) -> int:
        """Update the live (not soft-deleted) row with this uuid. Returns affected rows."""
        pass

    @abstractmethod
    async def soft_delete_by_uuid(
        self, table: str, uuid: str, deleted_at: str, updated_at: Optional[str] = None
    ) -> int:
        """Set deleted_at on the live row with this uuid. Returns affected rows (0 is fine)."""
        pass

    @abstractmethod
    async def select_all(self, table: str) -> List[Dict[str, Any]]:
        """Every row of the table, soft-deleted ones included, ordered by id."""
        pass

    @abstractmethod
    async def find_by_uuid(self, table: str, uuid: str) -> Optional[Dict[str, Any]]:
        """The row with this uuid, or None."""
        pass
