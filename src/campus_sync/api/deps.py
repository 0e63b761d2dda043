# src/campus_sync/api/deps.py
"""Request dependencies and error mapping shared by the routers."""

import logging

from fastapi import HTTPException, Request

from ..core.schema import SCHEMAS
from ..errors import (
    CampusSyncError,
    DuplicateNameError,
    InitializationError,
    NotFoundError,
    ValidationError,
)
from ..repositories import EntityRepository
from ..sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


def get_coordinator(request: Request) -> SyncCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Sync engine not initialized")
    return coordinator


def get_repository(coordinator: SyncCoordinator, kind: str) -> EntityRepository:
    if kind not in SCHEMAS:
        raise HTTPException(status_code=404, detail=f"Unknown entity kind: {kind}")
    return coordinator.repositories[kind]


def to_http_exception(error: CampusSyncError) -> HTTPException:
    """Map engine errors onto HTTP status codes."""
    if isinstance(error, DuplicateNameError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InitializationError):
        return HTTPException(status_code=503, detail=str(error))
    logger.error(f"❌ Request failed: {error}")
    return HTTPException(status_code=500, detail=str(error))
