# src/campus_sync/sync/__init__.py
"""
Sync engine: mutation queue, reconciler, merge fetcher, connectivity and
session events, and the coordinator that wires them together.

Import from the submodules directly (repositories depend on sync.queue).
"""
