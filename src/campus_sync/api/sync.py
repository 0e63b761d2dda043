# src/campus_sync/api/sync.py
"""
Sync endpoints - trigger reconciliation, inspect status, resolve conflicts.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..core.schema import SCHEMAS
from ..errors import CampusSyncError
from ..sync.coordinator import SyncCoordinator
from .deps import get_coordinator, to_http_exception
from .models import (
    APIResponse,
    ConflictListResponse,
    ConflictResolveRequest,
    ConnectivityUpdate,
    SyncStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=APIResponse)
async def sync_all(force: bool = True, coordinator: SyncCoordinator = Depends(get_coordinator)):
    """
    Reconcile every entity kind (offices, levels, students).

    A user-triggered sync ignores retry backoff unless force=false.
    """
    try:
        reports = await coordinator.sync_all(force=force)
    except CampusSyncError as e:
        raise to_http_exception(e) from e
    if not reports:
        return APIResponse(success=False, message="Sync skipped (no remote or already running)", data={})
    return APIResponse(
        success=all(not r.errors and not r.conflicts for r in reports.values()),
        data={kind: r.to_dict() for kind, r in reports.items()},
    )


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Connectivity, queue depth per kind and the last pass results."""
    return SyncStatusResponse(**await coordinator.status())


@router.get("/conflicts", response_model=ConflictListResponse)
async def list_conflicts(coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Queue entries waiting for a discard/abandon decision."""
    entries = await coordinator.conflicts()
    return ConflictListResponse(conflicts=[e.to_dict() for e in entries], count=len(entries))


@router.post("/conflicts/{queue_id}/resolve", response_model=APIResponse)
async def resolve_conflict(
    queue_id: int,
    request: ConflictResolveRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """Apply a human decision to a recorded conflict."""
    try:
        discarded = await coordinator.resolve_conflict(queue_id, request.decision)
    except CampusSyncError as e:
        raise to_http_exception(e) from e
    return APIResponse(
        message="Local duplicate discarded" if discarded else "Entry left queued",
        data={"queue_id": queue_id, "decision": request.decision.value, "discarded": discarded},
    )


@router.post("/connectivity", response_model=APIResponse)
async def set_connectivity(update: ConnectivityUpdate, coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Report a connectivity change; coming online triggers a background sync."""
    changed = await coordinator.connectivity.set_online(update.online)
    return APIResponse(data={"online": coordinator.connectivity.is_online, "changed": changed})


@router.post("/{kind}", response_model=APIResponse)
async def sync_kind(kind: str, force: bool = True, coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Reconcile a single entity kind."""
    if kind not in SCHEMAS:
        raise HTTPException(status_code=404, detail=f"Unknown entity kind: {kind}")
    try:
        report = await coordinator.sync(kind, force=force)
    except CampusSyncError as e:
        raise to_http_exception(e) from e
    return APIResponse(
        success=not report.skipped and not report.errors and not report.conflicts,
        message=f"Sync skipped: {report.skipped_reason}" if report.skipped else None,
        data=report.to_dict(),
    )
