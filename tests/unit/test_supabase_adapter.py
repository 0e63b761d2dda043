# tests/unit/test_supabase_adapter.py
"""
Tests for the Supabase remote store adapter.

Runs the adapter against the in-memory MockSupabaseClient and checks the
translation of PostgREST errors into the engine's remote error types.
"""

import pytest
from postgrest.exceptions import APIError

from campus_sync.adapters.supabase import (
    SupabaseRemoteStore,
    constraint_from_error,
    get_supabase_client,
)
from campus_sync.errors import InitializationError, RemoteConflictError, RemoteTransientError


class TestInsert:
    """Test remote inserts."""

    @pytest.mark.asyncio
    async def test_insert_returns_row_with_remote_id(self, remote):
        row = await remote.insert("offices", {"uuid": "u-1", "name": "Centre A", "is_synced": True})
        assert row["id"] == 1
        assert row["uuid"] == "u-1"

    @pytest.mark.asyncio
    async def test_duplicate_name_is_conflict_with_constraint(self, remote):
        await remote.insert("offices", {"uuid": "u-1", "name": "Centre A"})
        with pytest.raises(RemoteConflictError) as exc_info:
            await remote.insert("offices", {"uuid": "u-2", "name": "Centre A"})
        assert exc_info.value.constraint == "offices_name_key"

    @pytest.mark.asyncio
    async def test_duplicate_uuid_is_conflict_on_uuid_key(self, remote):
        await remote.insert("levels", {"uuid": "u-1", "name": "Level 1"})
        with pytest.raises(RemoteConflictError) as exc_info:
            await remote.insert("levels", {"uuid": "u-1", "name": "Level 2"})
        assert exc_info.value.constraint == "levels_uuid_key"

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, remote, mock_supabase):
        mock_supabase.fail_next()
        with pytest.raises(RemoteTransientError):
            await remote.insert("offices", {"uuid": "u-1", "name": "Centre A"})

    @pytest.mark.asyncio
    async def test_other_api_error_is_transient(self, remote, mock_supabase):
        mock_supabase.fail_next(error=APIError({
            "code": "42501", "message": "permission denied for table offices",
            "details": None, "hint": None,
        }))
        with pytest.raises(RemoteTransientError) as exc_info:
            await remote.insert("offices", {"uuid": "u-1", "name": "Centre A"})
        assert not isinstance(exc_info.value, RemoteConflictError)


class TestUpdateAndDelete:
    """Test uuid-filtered updates and soft deletes."""

    @pytest.mark.asyncio
    async def test_update_by_uuid_ignores_id_and_uuid_keys(self, remote, mock_supabase):
        await remote.insert("levels", {"uuid": "u-1", "name": "Level 1"})

        affected = await remote.update_by_uuid("levels", "u-1", {"id": 99, "uuid": "x", "name": "Level One"})

        assert affected == 1
        row = mock_supabase.find("levels", uuid="u-1")
        assert row["name"] == "Level One"
        assert row["id"] == 1

    @pytest.mark.asyncio
    async def test_update_never_touches_deleted_rows(self, remote, mock_supabase):
        await remote.insert("levels", {"uuid": "u-1", "name": "Level 1"})
        await remote.soft_delete_by_uuid("levels", "u-1", "2024-01-15T10:00:00+00:00")

        affected = await remote.update_by_uuid("levels", "u-1", {"name": "Back"})

        assert affected == 0
        assert mock_supabase.find("levels", uuid="u-1")["name"] == "Level 1"

    @pytest.mark.asyncio
    async def test_soft_delete_sets_timestamps_and_is_idempotent(self, remote, mock_supabase):
        await remote.insert("offices", {"uuid": "u-1", "name": "Centre A"})

        first = await remote.soft_delete_by_uuid("offices", "u-1", "2024-01-15T10:00:00+00:00")
        second = await remote.soft_delete_by_uuid("offices", "u-1", "2024-01-15T11:00:00+00:00")
        missing = await remote.soft_delete_by_uuid("offices", "never-pushed", "2024-01-15T11:00:00+00:00")

        assert (first, second, missing) == (1, 0, 0)
        row = mock_supabase.find("offices", uuid="u-1")
        assert row["deleted_at"] == "2024-01-15T10:00:00+00:00"
        assert row["updated_at"] == "2024-01-15T10:00:00+00:00"
        assert row["is_synced"] is True


class TestSelect:
    """Test full-collection reads."""

    @pytest.mark.asyncio
    async def test_select_all_pages_through_everything_in_id_order(self, mock_supabase):
        mock_supabase.seed_data("offices", [
            {"id": i, "uuid": f"u-{i}", "name": f"Centre {i}", "deleted_at": None}
            for i in (5, 3, 1, 4, 2)
        ])
        remote = SupabaseRemoteStore(mock_supabase, page_size=2)

        rows = await remote.select_all("offices")

        assert [r["id"] for r in rows] == [1, 2, 3, 4, 5]
        assert mock_supabase.count_calls("select", "offices") == 3

    @pytest.mark.asyncio
    async def test_select_all_includes_deleted_rows(self, remote, mock_supabase):
        mock_supabase.seed_data("levels", [
            {"id": 1, "uuid": "a", "name": "L1", "deleted_at": "2024-01-15T10:00:00Z"},
            {"id": 2, "uuid": "b", "name": "L2", "deleted_at": None},
        ])
        assert len(await remote.select_all("levels")) == 2

    @pytest.mark.asyncio
    async def test_find_by_uuid(self, remote):
        await remote.insert("levels", {"uuid": "u-1", "name": "Level 1"})
        assert (await remote.find_by_uuid("levels", "u-1"))["name"] == "Level 1"
        assert await remote.find_by_uuid("levels", "nope") is None


class TestHelpers:
    """Test client construction and error parsing."""

    def test_constraint_parsed_from_details_when_message_lacks_it(self):
        error = APIError({
            "code": "23505", "message": "conflict",
            "details": 'Key violates constraint "students_name_key"', "hint": None,
        })
        assert constraint_from_error(error) == "students_name_key"

    def test_constraint_none_when_absent(self):
        error = APIError({"code": "23505", "message": "conflict", "details": None, "hint": None})
        assert constraint_from_error(error) is None

    def test_client_requires_credentials(self, monkeypatch):
        for name in ("SUPABASE_URL", "SUPABASE_KEY", "SUPABASE_ANON_KEY"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(InitializationError):
            get_supabase_client()
