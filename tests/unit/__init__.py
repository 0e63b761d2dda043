# tests/unit/__init__.py
"""
Unit tests for campus-sync.

Each module exercises one component (store, queue, repository, adapter,
reconciler, coordinator) against a temporary SQLite file and the in-memory
Supabase mock.
"""
