# src/campus_sync/adapters/__init__.py
"""
Adapters package - concrete implementations of port interfaces.

- supabase.py - Supabase remote store adapter
"""

from .supabase import SupabaseRemoteStore, get_supabase_client

__all__ = [
    "SupabaseRemoteStore",
    "get_supabase_client",
]
