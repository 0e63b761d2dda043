# src/campus_sync/api/__init__.py
"""
API - HTTP surface for the local-first engine.

- Entity CRUD (offices, levels, students) against the Local Store
- Sync triggers, status, conflict resolution and connectivity reports
"""

from fastapi import APIRouter

from .entities import router as entities_router
from .sync import router as sync_router

router = APIRouter(prefix="/api")

# Sync routes first so /api/sync is not taken for an entity kind
router.include_router(sync_router, prefix="/sync", tags=["sync"])
router.include_router(entities_router, tags=["entities"])
