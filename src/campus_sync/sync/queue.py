# src/campus_sync/sync/queue.py
"""
Mutation Queue (outbox).

A durable, per-row log of local mutations not yet acknowledged by the remote
store. Repositories write to it inside their own transactions through the
synchronous helpers taking a connection; the reconciler reads and prunes it
through the async methods.

Invariant: at most one entry per (entity, local row). A new mutation on a
row with an outstanding entry replaces that entry:

- INSERT then UPDATE  -> INSERT carrying the fresh payload
- UPDATE then UPDATE  -> UPDATE carrying the fresh payload
- anything then DELETE -> DELETE
"""

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.models import EntryStatus, Operation, QueueEntry
from ..db import LocalStore
from ..errors import NotFoundError
from ..timeutils import backoff_delay, parse_timestamp, to_iso, utcnow

logger = logging.getLogger(__name__)


class MutationQueue:
    """Outbox shared by every entity kind."""

    def __init__(
        self,
        store: LocalStore,
        clock: Callable[[], datetime] = utcnow,
        retry_base_seconds: float = 2.0,
        retry_max_seconds: float = 300.0,
    ):
        self._store = store
        self._clock = clock
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds

    # =========================================================================
    # IN-TRANSACTION HELPERS (called by repositories and the merge fetcher)
    # =========================================================================

    def entry_for(self, conn: sqlite3.Connection, kind: str, local_id: int) -> Optional[QueueEntry]:
        row = conn.execute(
            "SELECT * FROM sync_queue WHERE entity = ? AND entity_local_id = ?",
            (kind, local_id),
        ).fetchone()
        return QueueEntry.from_row(dict(row)) if row else None

    def replace(
        self,
        conn: sqlite3.Connection,
        kind: str,
        local_id: int,
        uuid: str,
        remote_id: Optional[int],
        operation: Operation,
        payload: Dict[str, Any],
    ) -> Tuple[int, Operation]:
        """
        Record a mutation for a row, superseding its outstanding entry.

        Returns the new queue id and the effective operation after escalation.
        """
        existing = self.entry_for(conn, kind, local_id)
        if existing and operation == Operation.UPDATE and existing.operation == Operation.INSERT:
            operation = Operation.INSERT

        if existing:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", (existing.queue_id,))

        cursor = conn.execute(
            """
            INSERT INTO sync_queue
              (entity, entity_local_id, entity_uuid, entity_supabase_id,
               operation, payload, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (kind, local_id, uuid, remote_id, operation.value,
             json.dumps(payload), to_iso(self._clock())),
        )
        return cursor.lastrowid, operation

    def remove(self, conn: sqlite3.Connection, queue_id: int) -> bool:
        return conn.execute("DELETE FROM sync_queue WHERE id = ?", (queue_id,)).rowcount > 0

    def remove_for_row(self, conn: sqlite3.Connection, kind: str, local_id: int) -> int:
        return conn.execute(
            "DELETE FROM sync_queue WHERE entity = ? AND entity_local_id = ?",
            (kind, local_id),
        ).rowcount

    def requeue_as_update(self, conn: sqlite3.Connection, queue_id: int, remote_id: int) -> None:
        """An INSERT queued during its own push becomes an UPDATE once the row exists remotely."""
        conn.execute(
            """
            UPDATE sync_queue
            SET operation = ?, entity_supabase_id = ?
            WHERE id = ? AND operation = ?
            """,
            (Operation.UPDATE.value, remote_id, queue_id, Operation.INSERT.value),
        )

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, queue_id: int) -> QueueEntry:
        row = await self._store.fetch_one("SELECT * FROM sync_queue WHERE id = ?", (queue_id,))
        if not row:
            raise NotFoundError(f"Queue entry {queue_id} not found")
        return QueueEntry.from_row(row)

    async def entries(self, kind: Optional[str] = None) -> List[QueueEntry]:
        """All entries, FIFO by queue id."""
        if kind:
            rows = await self._store.fetch_all(
                "SELECT * FROM sync_queue WHERE entity = ? ORDER BY id ASC", (kind,)
            )
        else:
            rows = await self._store.fetch_all("SELECT * FROM sync_queue ORDER BY id ASC")
        return [QueueEntry.from_row(r) for r in rows]

    async def pending(
        self, kind: str, force: bool = False
    ) -> Tuple[List[QueueEntry], List[QueueEntry]]:
        """
        Split a kind's entries into (due, deferred).

        Entries still inside their backoff window, and entries awaiting a
        conflict decision, are deferred unless force is set (explicit user
        action).
        """
        now = self._clock()
        due, deferred = [], []
        for entry in await self.entries(kind):
            if not force and entry.status == EntryStatus.CONFLICT:
                deferred.append(entry)
                continue
            next_attempt = parse_timestamp(entry.next_attempt_at)
            if not force and next_attempt is not None and next_attempt > now:
                deferred.append(entry)
            else:
                due.append(entry)
        return due, deferred

    async def count(self, kind: Optional[str] = None) -> int:
        if kind:
            row = await self._store.fetch_one(
                "SELECT COUNT(*) AS n FROM sync_queue WHERE entity = ?", (kind,)
            )
        else:
            row = await self._store.fetch_one("SELECT COUNT(*) AS n FROM sync_queue")
        return row["n"] if row else 0

    async def conflicts(self, kind: Optional[str] = None) -> List[QueueEntry]:
        return [e for e in await self.entries(kind) if e.status == EntryStatus.CONFLICT]

    # =========================================================================
    # FAILURE BOOKKEEPING
    # =========================================================================

    async def record_failure(self, queue_id: int, error: str) -> Optional[str]:
        """Count a transient failure and schedule the next attempt. Returns next_attempt_at."""
        now = self._clock()

        def _record(conn: sqlite3.Connection) -> Optional[str]:
            row = conn.execute("SELECT attempts FROM sync_queue WHERE id = ?", (queue_id,)).fetchone()
            if row is None:
                return None
            attempts = (row["attempts"] or 0) + 1
            delay = backoff_delay(attempts, self.retry_base_seconds, self.retry_max_seconds)
            next_attempt_at = to_iso(now + delay)
            conn.execute(
                """
                UPDATE sync_queue
                SET attempts = ?, last_error = ?, next_attempt_at = ?, status = ?
                WHERE id = ?
                """,
                (attempts, error, next_attempt_at, EntryStatus.PENDING.value, queue_id),
            )
            return next_attempt_at

        return await self._store.run(_record)

    async def record_conflict(self, queue_id: int, message: str) -> None:
        await self._store.execute(
            "UPDATE sync_queue SET status = ?, last_error = ? WHERE id = ?",
            (EntryStatus.CONFLICT.value, message, queue_id),
        )

    async def clear_conflict(self, queue_id: int) -> None:
        """Put a conflicted entry back in line for the next pass."""
        changed = await self._store.execute(
            "UPDATE sync_queue SET status = ?, next_attempt_at = NULL WHERE id = ?",
            (EntryStatus.PENDING.value, queue_id),
        )
        if not changed:
            raise NotFoundError(f"Queue entry {queue_id} not found")
