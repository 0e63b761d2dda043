# src/campus_sync/core/__init__.py
"""
Core domain layer - entity schemas, domain types and port interfaces.

Following Ports and Adapters:
- Ports are the interfaces the sync engine needs from the outside world
- Adapters (campus_sync.adapters) are the concrete implementations
"""

from .models import (
    ConflictDecision,
    EntryStatus,
    MergeReport,
    Operation,
    QueueEntry,
    ReconcileReport,
    SyncConflict,
)
from .ports import RemoteStorePort
from .schema import SCHEMAS, SYNC_ORDER, EntitySchema, Reference, get_schema

__all__ = [
    "ConflictDecision",
    "EntryStatus",
    "MergeReport",
    "Operation",
    "QueueEntry",
    "ReconcileReport",
    "SyncConflict",
    "RemoteStorePort",
    "SCHEMAS",
    "SYNC_ORDER",
    "EntitySchema",
    "Reference",
    "get_schema",
]
