# src/campus_sync/sync/reconciler.py
"""
Sync Reconciler - drain the mutation queue for one entity kind.

For each queued entry, in enqueue order:
- INSERT: remote insert carrying the uuid; attach the returned remote id
- UPDATE: remote update by uuid where not soft-deleted
- DELETE: remote soft-delete by uuid where not soft-deleted (0 rows is fine)

Then pull the remote collection back through the Remote Merge Fetcher.

Remote errors are handled per entry so one bad entry never stalls the
rest of the pass. A duplicate business key is never auto-resolved; it is
surfaced as a SyncConflict for a human decision.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..core.models import (
    ConflictDecision,
    Operation,
    QueueEntry,
    ReconcileReport,
    SyncConflict,
)
from ..core.ports.remote import RemoteStorePort
from ..core.schema import get_schema
from ..db import LocalStore
from ..errors import RemoteConflictError, RemoteError, ValidationError
from ..repositories.entity_repository import EntityRepository
from .connectivity import ConnectivityMonitor
from .merge import RemoteMergeFetcher
from .queue import MutationQueue

logger = logging.getLogger(__name__)

ConflictHandler = Callable[[SyncConflict], Awaitable[ConflictDecision]]


class SyncReconciler:
    """
    Push-side of the sync engine.

    Example:
        reconciler = SyncReconciler(store, remote, repos, queue, monitor)
        report = await reconciler.reconcile("offices")
        for conflict in report.conflicts:
            ...
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStorePort,
        repositories: Dict[str, EntityRepository],
        queue: MutationQueue,
        connectivity: ConnectivityMonitor,
        conflict_handler: Optional[ConflictHandler] = None,
        fetcher: Optional[RemoteMergeFetcher] = None,
    ):
        self._store = store
        self._remote = remote
        self._repositories = repositories
        self._queue = queue
        self._connectivity = connectivity
        self.conflict_handler = conflict_handler
        self._fetcher = fetcher or RemoteMergeFetcher(store, remote, repositories)
        self._in_flight: Set[str] = set()

    def is_running(self, kind: str) -> bool:
        return kind in self._in_flight

    async def reconcile(self, kind: str, force: bool = False) -> ReconcileReport:
        """
        One reconciliation pass for an entity kind.

        Safe to call repeatedly. Skipped (not queued) while offline or while
        another pass for the same kind is still running.

        Args:
            kind: Entity kind ("offices", "levels", "students")
            force: Ignore retry backoff (explicit user action)
        """
        get_schema(kind)
        report = ReconcileReport(entity_kind=kind)

        if not self._connectivity.is_online:
            report.skipped_reason = "offline"
            logger.debug(f"Skipping {kind} sync: offline")
            return report
        if kind in self._in_flight:
            report.skipped_reason = "in_flight"
            logger.debug(f"Skipping {kind} sync: already running")
            return report

        self._in_flight.add(kind)
        try:
            await self._drain(kind, force, report)
            try:
                report.merge = await self._fetcher.fetch_and_merge(kind)
            except RemoteError as e:
                report.errors.append(f"merge: {e}")
                logger.error(f"❌ Fetching {kind} from remote failed: {e}")
        finally:
            self._in_flight.discard(kind)

        self._log_report(report)
        return report

    # =========================================================================
    # PUSH
    # =========================================================================

    async def _drain(self, kind: str, force: bool, report: ReconcileReport) -> None:
        due, deferred = await self._queue.pending(kind, force=force)
        report.deferred = len(deferred)
        if due:
            logger.info(f"🔄 Pushing {len(due)} queued {kind} mutation(s)")

        for entry in due:
            try:
                pushed = await self._push(entry, report)
            except RemoteConflictError as e:
                # Only an unpushed row can be discarded; a rename onto a taken
                # name stays queued like any other failed UPDATE
                if entry.operation == Operation.INSERT:
                    await self._on_conflict(entry, e, report)
                else:
                    await self._on_failure(entry, e, report)
                continue
            except RemoteError as e:
                await self._on_failure(entry, e, report)
                continue
            if pushed:
                report.pushed += 1

    async def _on_failure(self, entry: QueueEntry, error: RemoteError, report: ReconcileReport) -> None:
        report.failed += 1
        report.errors.append(f"{entry.operation.value} {entry.uuid}: {error}")
        next_attempt = await self._queue.record_failure(entry.queue_id, str(error))
        logger.warning(
            f"⚠️ {entry.operation.value} {entry.entity_kind} {entry.local_id} failed, "
            f"retry after {next_attempt}: {error}"
        )

    async def _push(self, entry: QueueEntry, report: ReconcileReport) -> bool:
        """Push one entry. Returns False if it stayed queued without an attempt."""
        repo = self._repositories[entry.entity_kind]
        schema = repo.schema
        payload = entry.payload

        if entry.operation == Operation.DELETE:
            deleted_at = payload.get("deleted_at") or payload.get("updated_at")
            await self._remote.soft_delete_by_uuid(
                schema.table, entry.uuid, deleted_at, payload.get("updated_at")
            )
            await repo.complete_push(entry)
            return True

        resolved, unresolved = await repo.resolve_push_references(payload, entry.operation)
        if unresolved:
            report.blocked += 1
            logger.info(
                f"{schema.display_name} {entry.local_id} waits for unsynced "
                f"{', '.join(unresolved)}"
            )
            return False

        data = self._remote_data(schema.fields, resolved)
        if entry.operation == Operation.INSERT:
            data.update(uuid=entry.uuid, created_at=payload.get("created_at"))
            try:
                created = await self._remote.insert(schema.table, data)
            except RemoteConflictError as e:
                if e.constraint != schema.uuid_constraint:
                    raise
                # Row landed remotely on an earlier pass; the ack was lost
                created = await self._remote.find_by_uuid(schema.table, entry.uuid)
                if created is None:
                    raise
                logger.info(f"{schema.display_name} {entry.uuid} already on remote, re-attaching")
            await repo.complete_push(entry, remote_id=created["id"])
        else:
            await self._remote.update_by_uuid(schema.table, entry.uuid, data)
            await repo.complete_push(entry)
        return True

    @staticmethod
    def _remote_data(fields, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = {key: payload[key] for key in fields if key in payload}
        data.update(updated_at=payload.get("updated_at"), is_synced=True)
        return data

    # =========================================================================
    # CONFLICTS
    # =========================================================================

    async def _on_conflict(self, entry: QueueEntry, error: RemoteConflictError,
                           report: ReconcileReport) -> None:
        conflict = SyncConflict(
            queue_id=entry.queue_id,
            entity_kind=entry.entity_kind,
            local_id=entry.local_id,
            uuid=entry.uuid,
            payload=entry.payload,
            constraint=error.constraint,
            message=str(error),
        )
        report.conflicts.append(conflict)
        logger.warning(
            f"⚠️ {entry.entity_kind} '{conflict.name}' collides with a remote row "
            f"({conflict.constraint or 'unique violation'})"
        )

        if self.conflict_handler is None:
            await self._queue.record_conflict(entry.queue_id, str(error))
            return

        try:
            decision = ConflictDecision(await self.conflict_handler(conflict))
        except Exception as e:
            logger.error(f"❌ Conflict handler failed for {entry.uuid}: {e}")
            await self._queue.record_conflict(entry.queue_id, str(error))
            return

        if await self._apply_decision(entry, decision):
            report.discarded += 1

    async def _apply_decision(self, entry: QueueEntry, decision: ConflictDecision) -> bool:
        """Returns True if the local duplicate was discarded."""
        if decision == ConflictDecision.DISCARD_LOCAL:
            repo = self._repositories[entry.entity_kind]
            await repo.discard_local(entry.local_id, entry.uuid)
            return True
        await self._queue.record_failure(entry.queue_id, "conflict abandoned, retrying later")
        logger.info(f"Left {entry.entity_kind} {entry.local_id} queued for a later attempt")
        return False

    async def resolve_conflict(self, queue_id: int, decision: ConflictDecision) -> bool:
        """
        Apply a human decision to a conflict recorded on a queue entry.

        DISCARD_LOCAL deletes the local row and its entry; ABANDON puts the
        entry back in line for the next pass.
        Only an entry for a row that was never pushed (INSERT) can be
        discarded.

        Returns:
            True if the local row was discarded.
        """
        entry = await self._queue.get(queue_id)
        decision = ConflictDecision(decision)
        if decision == ConflictDecision.DISCARD_LOCAL:
            if entry.operation != Operation.INSERT:
                raise ValidationError(
                    f"{entry.entity_kind} {entry.local_id} already exists remotely and cannot be discarded"
                )
            return await self._apply_decision(entry, decision)
        await self._queue.clear_conflict(queue_id)
        logger.info(f"Conflict on {entry.entity_kind} {entry.local_id} abandoned; entry stays queued")
        return False

    def _log_report(self, report: ReconcileReport) -> None:
        merged = report.merge.changed if report.merge else 0
        summary = (
            f"{report.entity_kind}: {report.pushed} pushed, {report.failed} failed, "
            f"{report.blocked} blocked, {report.deferred} deferred, "
            f"{len(report.conflicts)} conflict(s), {merged} merged"
        )
        if report.failed or report.conflicts or report.errors:
            logger.warning(f"⚠️ Sync {summary}")
        else:
            logger.info(f"✅ Sync {summary}")

