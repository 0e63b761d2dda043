# src/campus_sync/repositories/__init__.py
"""
Repositories package.

One generic EntityRepository per entity kind, all sharing one mutation queue.

Usage:
    from campus_sync.repositories import build_repositories

    repos = build_repositories(store, queue)
    await repos["offices"].create({"name": "Centre A"})
"""

from typing import Dict

from ..core.schema import SCHEMAS
from ..db import LocalStore
from ..sync.queue import MutationQueue
from .entity_repository import EntityRepository


def build_repositories(store: LocalStore, queue: MutationQueue, **kwargs) -> Dict[str, EntityRepository]:
    """Create one repository per known entity kind."""
    return {
        kind: EntityRepository(store, schema, queue, **kwargs)
        for kind, schema in SCHEMAS.items()
    }


__all__ = [
    "EntityRepository",
    "build_repositories",
]
