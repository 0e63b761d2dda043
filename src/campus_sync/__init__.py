# src/campus_sync/__init__.py
"""
campus-sync - local-first sync engine for offices, levels and students.

Writes land in a local SQLite store immediately and are queued; the sync
engine pushes them to Supabase when connectivity allows and pulls remote
changes back with last-writer-wins.
"""

__version__ = "0.1.0"
