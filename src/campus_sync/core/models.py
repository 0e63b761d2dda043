# src/campus_sync/core/models.py
"""
Domain types shared by the repositories and the sync engine.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Operation(str, Enum):
    """Outstanding mutation type of a row / queue entry."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class EntryStatus(str, Enum):
    PENDING = "pending"
    CONFLICT = "conflict"


class ConflictDecision(str, Enum):
    """Human decision for a remote duplicate-key conflict."""
    DISCARD_LOCAL = "discard_local"   # delete local row + its queue entry
    ABANDON = "abandon"               # leave queued, retry later


@dataclass
class QueueEntry:
    """A not-yet-acknowledged local mutation."""
    queue_id: int
    entity_kind: str
    local_id: int
    uuid: str
    operation: Operation
    payload: Dict[str, Any]
    remote_id: Optional[int] = None
    enqueued_at: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None
    next_attempt_at: Optional[str] = None
    status: EntryStatus = EntryStatus.PENDING

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QueueEntry":
        """Create from a sync_queue row."""
        payload = row.get("payload")
        return cls(
            queue_id=row["id"],
            entity_kind=row["entity"],
            local_id=row["entity_local_id"],
            uuid=row.get("entity_uuid"),
            operation=Operation(row["operation"]),
            payload=json.loads(payload) if payload else {},
            remote_id=row.get("entity_supabase_id"),
            enqueued_at=row.get("timestamp"),
            attempts=row.get("attempts") or 0,
            last_error=row.get("last_error"),
            next_attempt_at=row.get("next_attempt_at"),
            status=EntryStatus(row.get("status") or EntryStatus.PENDING.value),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queue_id": self.queue_id,
            "entity_kind": self.entity_kind,
            "local_id": self.local_id,
            "uuid": self.uuid,
            "remote_id": self.remote_id,
            "operation": self.operation.value,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "next_attempt_at": self.next_attempt_at,
            "status": self.status.value,
        }


@dataclass
class SyncConflict:
    """A pushed INSERT collided with a different remote row on a business key."""
    queue_id: int
    entity_kind: str
    local_id: int
    uuid: str
    payload: Dict[str, Any]
    constraint: Optional[str] = None
    message: str = ""

    @property
    def name(self) -> Optional[str]:
        return self.payload.get("name")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queue_id": self.queue_id,
            "entity_kind": self.entity_kind,
            "local_id": self.local_id,
            "uuid": self.uuid,
            "name": self.name,
            "constraint": self.constraint,
            "message": self.message,
        }


@dataclass
class MergeReport:
    """Outcome of folding one remote snapshot into the local store."""
    entity_kind: str
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0

    @property
    def changed(self) -> int:
        return self.inserted + self.updated + self.deleted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_kind": self.entity_kind,
            "inserted": self.inserted,
            "updated": self.updated,
            "deleted": self.deleted,
            "unchanged": self.unchanged,
        }


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass for one entity kind."""
    entity_kind: str
    pushed: int = 0
    failed: int = 0
    deferred: int = 0
    blocked: int = 0
    discarded: int = 0
    conflicts: List[SyncConflict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    merge: Optional[MergeReport] = None
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_kind": self.entity_kind,
            "pushed": self.pushed,
            "failed": self.failed,
            "deferred": self.deferred,
            "blocked": self.blocked,
            "discarded": self.discarded,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "errors": list(self.errors),
            "merge": self.merge.to_dict() if self.merge else None,
            "skipped_reason": self.skipped_reason,
        }
