# src/campus_sync/core/ports/__init__.py
"""Port interfaces the sync engine depends on."""

from .remote import RemoteStorePort

__all__ = ["RemoteStorePort"]
