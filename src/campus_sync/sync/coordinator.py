# src/campus_sync/sync/coordinator.py
"""
Sync Coordinator - wires the engine together and reacts to events.

Owns the repositories, mutation queue, reconciler and merge fetcher for one
Local Store. Subscribes to connectivity-regained and signed-in events while
started, and runs full syncs (offices, levels, students in that order) with
an in-flight flag so overlapping triggers coalesce instead of stacking up.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from ..config import CampusSyncConfig
from ..core.models import ConflictDecision, QueueEntry, ReconcileReport
from ..core.ports.remote import RemoteStorePort
from ..core.schema import SYNC_ORDER, get_schema
from ..db import LocalStore
from ..errors import InitializationError
from ..repositories import EntityRepository, build_repositories
from ..timeutils import to_iso, utcnow
from .connectivity import ConnectivityChange, ConnectivityMonitor
from .events import EventStream, SessionEvent, SessionEvents, SessionEventType
from .merge import RemoteMergeFetcher
from .queue import MutationQueue
from .reconciler import ConflictHandler, SyncReconciler

logger = logging.getLogger(__name__)


@dataclass
class RefreshedList:
    """Fresh read model for one kind, published after its sync pass."""
    entity_kind: str
    rows: List[Dict[str, Any]]


class SyncCoordinator:
    """
    Orchestration layer over one Local Store and one remote.

    Usage:
        coordinator = SyncCoordinator(store, remote, connectivity=monitor)
        await coordinator.start()
        await coordinator.repositories["offices"].create({"name": "Centre A"})
        reports = await coordinator.sync_all()
        await coordinator.stop()
    """

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteStorePort] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        session: Optional[SessionEvents] = None,
        conflict_handler: Optional[ConflictHandler] = None,
        auto_sync_on_reconnect: bool = True,
        retry_base_seconds: float = 2.0,
        retry_max_seconds: float = 300.0,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.remote = remote
        self.connectivity = connectivity or ConnectivityMonitor(initially_online=remote is not None)
        self.session = session or SessionEvents()
        self.auto_sync_on_reconnect = auto_sync_on_reconnect
        self._clock = clock

        self.queue = MutationQueue(
            store,
            clock=clock,
            retry_base_seconds=retry_base_seconds,
            retry_max_seconds=retry_max_seconds,
        )
        self.repositories: Dict[str, EntityRepository] = build_repositories(store, self.queue, clock=clock)

        self.reconciler: Optional[SyncReconciler] = None
        if remote is not None:
            fetcher = RemoteMergeFetcher(store, remote, self.repositories)
            self.reconciler = SyncReconciler(
                store, remote, self.repositories, self.queue, self.connectivity,
                conflict_handler=conflict_handler, fetcher=fetcher,
            )

        self.refreshed: EventStream[RefreshedList] = EventStream("refreshed")
        self._syncing_all = False
        self._unsubscribers: List[Callable[[], None]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._last_reports: Dict[str, ReconcileReport] = {}
        self._last_sync_at: Optional[str] = None

    @classmethod
    def from_config(
        cls,
        config: CampusSyncConfig,
        store: Optional[LocalStore] = None,
        remote: Optional[RemoteStorePort] = None,
        **kwargs,
    ) -> "SyncCoordinator":
        """
        Build a coordinator from configuration.

        The Supabase adapter is only created when a URL and key are configured;
        without one the engine runs local-only.
        """
        store = store or LocalStore(config.database_path)
        if remote is None and config.sync.remote_configured:
            from ..adapters.supabase import SupabaseRemoteStore, get_supabase_client

            remote = SupabaseRemoteStore(
                get_supabase_client(config.sync.supabase_url, config.sync.supabase_key)
            )
        if remote is None:
            logger.warning("⚠️ No remote store configured; running local-only")

        kwargs.setdefault("auto_sync_on_reconnect", config.sync.auto_sync_on_reconnect)
        kwargs.setdefault("retry_base_seconds", config.sync.retry_base_seconds)
        kwargs.setdefault("retry_max_seconds", config.sync.retry_max_seconds)
        return cls(store, remote, **kwargs)

    @property
    def is_syncing(self) -> bool:
        return self._syncing_all

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Subscribe to connectivity and session events."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self.connectivity.changes.subscribe(self._on_connectivity),
            self.session.changes.subscribe(self._on_session),
        ]
        logger.info("Sync coordinator started")

    async def stop(self) -> None:
        """Unsubscribe and wait for any sync the handlers scheduled."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Sync coordinator stopped")

    async def _on_connectivity(self, change: ConnectivityChange) -> None:
        if change.online and self.auto_sync_on_reconnect:
            self._schedule_sync("connectivity regained")

    async def _on_session(self, event: SessionEvent) -> None:
        if event.type == SessionEventType.SIGNED_IN:
            self._schedule_sync(f"signed in as {event.user_id}")

    def _schedule_sync(self, reason: str) -> None:
        if self.reconciler is None:
            return
        if self._syncing_all:
            logger.debug(f"Sync already running, ignoring trigger: {reason}")
            return
        logger.info(f"🔄 Sync triggered: {reason}")
        task = asyncio.create_task(self.sync_all())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"❌ Background sync failed: {task.exception()}")

    # =========================================================================
    # SYNC
    # =========================================================================

    async def sync_all(self, force: bool = False) -> Dict[str, ReconcileReport]:
        """
        Reconcile every kind, referenced kinds first.

        Returns an empty dict when no remote is configured or a full sync is
        already running.
        """
        if self.reconciler is None or self._syncing_all:
            return {}
        self._syncing_all = True
        try:
            reports = {}
            for kind in SYNC_ORDER:
                reports[kind] = await self.sync(kind, force=force)
            return reports
        finally:
            self._syncing_all = False

    async def sync(self, kind: str, force: bool = False) -> ReconcileReport:
        """Reconcile one kind and publish its refreshed list."""
        get_schema(kind)
        if self.reconciler is None:
            return ReconcileReport(entity_kind=kind, skipped_reason="no_remote")

        report = await self.reconciler.reconcile(kind, force=force)
        if not report.skipped:
            self._last_reports[kind] = report
            self._last_sync_at = to_iso(self._clock())
            rows = await self.repositories[kind].list()
            await self.refreshed.publish(RefreshedList(kind, rows))
        return report

    async def conflicts(self) -> List[QueueEntry]:
        return await self.queue.conflicts()

    async def resolve_conflict(self, queue_id: int, decision: ConflictDecision) -> bool:
        if self.reconciler is None:
            raise InitializationError("No remote store configured")
        return await self.reconciler.resolve_conflict(queue_id, decision)

    async def status(self) -> Dict[str, Any]:
        """Snapshot for the UI: connectivity, queue depth per kind, last results."""
        pending = {kind: await self.queue.count(kind) for kind in SYNC_ORDER}
        return {
            "online": self.connectivity.is_online,
            "remote_configured": self.reconciler is not None,
            "syncing": self._syncing_all,
            "pending": pending,
            "pending_total": sum(pending.values()),
            "conflicts": len(await self.queue.conflicts()),
            "last_sync_at": self._last_sync_at,
            "last_reports": {k: r.to_dict() for k, r in self._last_reports.items()},
        }
