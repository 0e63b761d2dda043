# src/campus_sync/adapters/supabase.py
"""
Supabase Remote Store Adapter

Implements RemoteStorePort on top of supabase-py (PostgREST). The client is
synchronous, so each request runs on a worker thread.

Error mapping:
- APIError with code 23505 (unique_violation) -> RemoteConflictError,
  carrying the violated constraint name (e.g. "levels_name_key")
- any other APIError, httpx/network error     -> RemoteTransientError
"""

import asyncio
import logging
import os
import re
from typing import Any, Callable, Dict, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from ..core.ports.remote import RemoteStorePort
from ..errors import InitializationError, RemoteConflictError, RemoteTransientError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
PAGE_SIZE = 1000

_CONSTRAINT_RE = re.compile(r'constraint "([^"]+)"')


def get_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """
    Create a Supabase client.

    Args:
        url: Supabase project URL (defaults to SUPABASE_URL env var)
        key: Supabase anon/service key (defaults to SUPABASE_KEY env var)
    """
    url = url or os.getenv("SUPABASE_URL")
    key = key or os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY")

    if not url or not key:
        raise InitializationError("SUPABASE_URL and SUPABASE_KEY must be set")

    client = create_client(url, key)
    logger.info(f"✅ Connected to Supabase: {url}")
    return client


def constraint_from_error(error: APIError) -> Optional[str]:
    """Pull the violated constraint name out of a Postgres error."""
    for text in (getattr(error, "message", None), getattr(error, "details", None)):
        if text:
            match = _CONSTRAINT_RE.search(str(text))
            if match:
                return match.group(1)
    return None


def translate_error(error: Exception, context: str) -> Exception:
    """Map a client-level exception onto the engine's remote error types."""
    if isinstance(error, APIError):
        if str(getattr(error, "code", "")) == UNIQUE_VIOLATION:
            return RemoteConflictError(
                f"{context}: {error.message}", constraint=constraint_from_error(error)
            )
        return RemoteTransientError(f"{context}: {error.message}")
    return RemoteTransientError(f"{context}: {error}")


class SupabaseRemoteStore(RemoteStorePort):
    """
    Supabase implementation of RemoteStorePort.

    Usage:
        remote = SupabaseRemoteStore(get_supabase_client())
        row = await remote.insert("levels", {"uuid": "...", "name": "Level 1"})
    """

    def __init__(self, client: Client, page_size: int = PAGE_SIZE):
        self._client = client
        self._page_size = page_size

    @property
    def client(self) -> Client:
        """Get the underlying Supabase client."""
        return self._client

    async def _call(self, context: str, fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except (APIError, httpx.HTTPError, OSError) as e:
            raise translate_error(e, context) from e

    async def insert(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        def _insert():
            return self._client.table(table).insert(data).execute()

        result = await self._call(f"insert into {table}", _insert)
        if not result.data:
            raise RemoteTransientError(f"insert into {table} returned no row")
        return result.data[0]

    async def update_by_uuid(self, table: str, uuid: str, data: Dict[str, Any]) -> int:
        clean_data = {k: v for k, v in data.items() if k not in ("id", "uuid")}

        def _update():
            return (
                self._client.table(table)
                .update(clean_data)
                .eq("uuid", uuid)
                .is_("deleted_at", "null")
                .execute()
            )

        result = await self._call(f"update {table} {uuid}", _update)
        return len(result.data or [])

    async def soft_delete_by_uuid(
        self, table: str, uuid: str, deleted_at: str, updated_at: Optional[str] = None
    ) -> int:
        data = {"deleted_at": deleted_at, "updated_at": updated_at or deleted_at, "is_synced": True}
        return await self.update_by_uuid(table, uuid, data)

    async def select_all(self, table: str) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        start = 0
        while True:
            end = start + self._page_size - 1

            def _select(start=start, end=end):
                return (
                    self._client.table(table)
                    .select("*")
                    .order("id")
                    .range(start, end)
                    .execute()
                )

            result = await self._call(f"select from {table}", _select)
            page = result.data or []
            rows.extend(page)
            if len(page) < self._page_size:
                return rows
            start += self._page_size

    async def find_by_uuid(self, table: str, uuid: str) -> Optional[Dict[str, Any]]:
        def _find():
            return self._client.table(table).select("*").eq("uuid", uuid).limit(1).execute()

        result = await self._call(f"find {table} {uuid}", _find)
        return result.data[0] if result.data else None
