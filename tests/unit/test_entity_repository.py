# tests/unit/test_entity_repository.py
"""
Tests for EntityRepository

Validates local-first CRUD, uniqueness, soft deletes, student references
and the sync metadata hooks used by the reconciler.
"""

import pytest

from campus_sync.core.models import Operation
from campus_sync.errors import DuplicateNameError, NotFoundError, ValidationError


async def make_student(offices, levels, students, name="Ana", **extra):
    office = await offices.create({"name": f"Office for {name}"})
    level = await levels.create({"name": f"Level for {name}"})
    fields = {"name": name, "office_uuid": office["uuid"], "level_uuid": level["uuid"], **extra}
    created = await students.create(fields)
    return created, office, level


class TestCreate:
    """Test row creation and validation."""

    @pytest.mark.asyncio
    async def test_create_returns_ids_and_pending_row(self, offices):
        """Test a new row is unsynced with a pending INSERT."""
        created = await offices.create({"name": "Centre A"})

        row = await offices.get(created["local_id"])
        assert row["uuid"] == created["uuid"]
        assert row["is_synced"] == 0
        assert row["operation_type"] == Operation.INSERT.value
        assert row["supabase_id"] is None
        assert row["deleted_at"] is None

    @pytest.mark.asyncio
    async def test_create_with_remote_id_is_synced_and_not_queued(self, offices, queue):
        created = await offices.create({"name": "Centre A"}, remote_id=42)

        row = await offices.get(created["local_id"])
        assert row["supabase_id"] == 42
        assert row["is_synced"] == 1
        assert row["operation_type"] is None
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_missing_name_rejected(self, offices, queue):
        with pytest.raises(ValidationError) as exc_info:
            await offices.create({})
        assert exc_info.value.field == "name"
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, levels):
        with pytest.raises(ValidationError):
            await levels.create({"name": "   "})

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, levels):
        with pytest.raises(ValidationError) as exc_info:
            await levels.create({"name": "Level 1", "colour": "red"})
        assert exc_info.value.field == "colour"

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, offices, queue):
        """Test local uniqueness on name; nothing is persisted."""
        await offices.create({"name": "Centre A"})
        with pytest.raises(DuplicateNameError):
            await offices.create({"name": "Centre A"})
        assert len(await offices.list()) == 1
        assert await queue.count() == 1

    @pytest.mark.asyncio
    async def test_name_of_deleted_row_can_be_reused(self, offices):
        created = await offices.create({"name": "Centre A"})
        await offices.soft_delete(created["local_id"])

        again = await offices.create({"name": "Centre A"})
        assert again["uuid"] != created["uuid"]

    @pytest.mark.asyncio
    async def test_each_row_gets_a_fresh_uuid(self, levels):
        a = await levels.create({"name": "Level 1"})
        b = await levels.create({"name": "Level 2"})
        assert a["uuid"] != b["uuid"]


class TestUpdate:
    """Test updates of live rows."""

    @pytest.mark.asyncio
    async def test_update_synced_row_marks_update_pending(self, offices, clock):
        created = await offices.create({"name": "Centre A"}, remote_id=42)
        before = await offices.get(created["local_id"])
        clock.advance(60)

        row = await offices.update(created["local_id"], {"name": "Centre A1"})

        assert row["operation_type"] == Operation.UPDATE.value
        stored = await offices.get(created["local_id"])
        assert stored["name"] == "Centre A1"
        assert stored["is_synced"] == 0
        assert stored["updated_at"] > before["updated_at"]
        assert stored["uuid"] == created["uuid"]

    @pytest.mark.asyncio
    async def test_update_of_unpushed_row_keeps_insert_pending(self, offices):
        created = await offices.create({"name": "Centre A"})
        row = await offices.update(created["local_id"], {"name": "Centre B"})
        assert row["operation_type"] == Operation.INSERT.value

    @pytest.mark.asyncio
    async def test_update_missing_row_raises(self, offices):
        with pytest.raises(NotFoundError):
            await offices.update(999, {"name": "x"})

    @pytest.mark.asyncio
    async def test_update_deleted_row_raises(self, offices):
        created = await offices.create({"name": "Centre A"})
        await offices.soft_delete(created["local_id"])
        with pytest.raises(NotFoundError):
            await offices.update(created["local_id"], {"name": "Centre B"})

    @pytest.mark.asyncio
    async def test_uniqueness_excludes_the_row_itself(self, offices):
        created = await offices.create({"name": "Centre A"})
        await offices.update(created["local_id"], {"name": "Centre A"})

    @pytest.mark.asyncio
    async def test_rename_onto_other_row_rejected(self, offices):
        await offices.create({"name": "Centre A"})
        other = await offices.create({"name": "Centre B"})
        with pytest.raises(DuplicateNameError):
            await offices.update(other["local_id"], {"name": "Centre A"})
        assert (await offices.get(other["local_id"]))["name"] == "Centre B"


class TestSoftDelete:
    """Test soft deletes and list visibility."""

    @pytest.mark.asyncio
    async def test_deleted_rows_hidden_from_list(self, levels):
        a = await levels.create({"name": "Level 1"})
        await levels.create({"name": "Level 2"})

        await levels.soft_delete(a["local_id"])

        assert [r["name"] for r in await levels.list()] == ["Level 2"]
        row = await levels.get(a["local_id"])
        assert row["deleted_at"] is not None
        assert row["operation_type"] == Operation.DELETE.value
        assert row["is_synced"] == 0

    @pytest.mark.asyncio
    async def test_delete_twice_raises(self, levels):
        a = await levels.create({"name": "Level 1"})
        await levels.soft_delete(a["local_id"])
        with pytest.raises(NotFoundError):
            await levels.soft_delete(a["local_id"])

    @pytest.mark.asyncio
    async def test_list_is_ordered_by_local_id(self, offices):
        for name in ("C", "A", "B"):
            await offices.create({"name": name})
        assert [r["name"] for r in await offices.list()] == ["C", "A", "B"]


class TestStudents:
    """Test student references to offices and levels."""

    @pytest.mark.asyncio
    async def test_student_requires_office_and_level(self, offices, students):
        office = await offices.create({"name": "Centre A"})
        with pytest.raises(ValidationError) as exc_info:
            await students.create({"name": "Ana", "office_uuid": office["uuid"]})
        assert exc_info.value.field == "level"

    @pytest.mark.asyncio
    async def test_unknown_office_rejected(self, levels, students):
        level = await levels.create({"name": "Level 1"})
        with pytest.raises(ValidationError):
            await students.create({"name": "Ana", "office_uuid": "nope", "level_uuid": level["uuid"]})

    @pytest.mark.asyncio
    async def test_deleted_office_rejected(self, offices, levels, students):
        office = await offices.create({"name": "Centre A"})
        level = await levels.create({"name": "Level 1"})
        await offices.soft_delete(office["local_id"])
        with pytest.raises(ValidationError):
            await students.create({"name": "Ana", "office_uuid": office["uuid"], "level_uuid": level["uuid"]})

    @pytest.mark.asyncio
    async def test_list_resolves_names_before_sync(self, offices, levels, students):
        """Test office_name/level_name resolve through uuids while unpushed."""
        await make_student(offices, levels, students, name="Ana", phone="555-0100")

        rows = await students.list()
        assert len(rows) == 1
        assert rows[0]["office_name"] == "Office for Ana"
        assert rows[0]["level_name"] == "Level for Ana"
        assert rows[0]["phone"] == "555-0100"
        assert rows[0]["office_id"] is None

    @pytest.mark.asyncio
    async def test_references_by_remote_id(self, offices, levels, students):
        office = await offices.create({"name": "Centre A"}, remote_id=10)
        await levels.create({"name": "Level 1"}, remote_id=20)

        created = await students.create({"name": "Ana", "office_id": 10, "level_id": 20})

        row = await students.get(created["local_id"])
        assert row["office_uuid"] == office["uuid"]
        rows = await students.list()
        assert rows[0]["office_name"] == "Centre A"
        assert rows[0]["level_name"] == "Level 1"

    @pytest.mark.asyncio
    async def test_attaching_office_id_fills_student_reference(self, offices, levels, students):
        created, office, _ = await make_student(offices, levels, students)

        assert await offices.attach_remote_id(office["local_id"], office["uuid"], 77)

        row = await students.get(created["local_id"])
        assert row["office_id"] == 77
        assert (await students.list())[0]["office_name"] == "Office for Ana"

    @pytest.mark.asyncio
    async def test_push_references_block_until_targets_synced(self, offices, levels, students, queue):
        created, office, level = await make_student(offices, levels, students)
        entry = (await queue.entries("students"))[0]

        _, unresolved = await students.resolve_push_references(entry.payload)
        assert unresolved == ["office", "level"]

        await offices.attach_remote_id(office["local_id"], office["uuid"], 5)
        await levels.attach_remote_id(level["local_id"], level["uuid"], 6)

        resolved, unresolved = await students.resolve_push_references(entry.payload)
        assert unresolved == []
        assert resolved["office_id"] == 5
        assert resolved["level_id"] == 6


class TestSyncMetadata:
    """Test hooks used by the reconciler and merge fetcher."""

    @pytest.mark.asyncio
    async def test_attach_remote_id_requires_matching_uuid(self, offices):
        created = await offices.create({"name": "Centre A"})

        assert await offices.attach_remote_id(created["local_id"], "other-uuid", 42) is False
        assert (await offices.get(created["local_id"]))["supabase_id"] is None

        assert await offices.attach_remote_id(created["local_id"], created["uuid"], 42) is True
        row = await offices.get(created["local_id"])
        assert row["supabase_id"] == 42
        assert row["is_synced"] == 1
        assert row["operation_type"] is None

    @pytest.mark.asyncio
    async def test_mark_synced(self, offices):
        created = await offices.create({"name": "Centre A"})
        assert await offices.mark_synced(created["local_id"])
        row = await offices.get(created["local_id"])
        assert row["is_synced"] == 1
        assert row["operation_type"] is None

    @pytest.mark.asyncio
    async def test_discard_local_removes_row_and_entry(self, offices, queue):
        created = await offices.create({"name": "Centre A"})

        assert await offices.discard_local(created["local_id"], created["uuid"])

        assert await offices.get(created["local_id"]) is None
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_complete_push_keeps_newer_local_edit(self, offices, queue):
        """Test an edit made while the INSERT was in flight survives as an UPDATE."""
        created = await offices.create({"name": "Centre A"})
        in_flight = (await queue.entries("offices"))[0]
        await offices.update(created["local_id"], {"name": "Centre A1"})

        fully_synced = await offices.complete_push(in_flight, remote_id=42)

        assert fully_synced is False
        entries = await queue.entries("offices")
        assert len(entries) == 1
        assert entries[0].operation == Operation.UPDATE
        assert entries[0].remote_id == 42
        row = await offices.get(created["local_id"])
        assert row["supabase_id"] == 42
        assert row["is_synced"] == 0
        assert row["operation_type"] == Operation.UPDATE.value

    @pytest.mark.asyncio
    async def test_merge_from_remote_inserts_unknown_row(self, levels):
        outcome = await levels.merge_from_remote({
            "id": 9, "uuid": "remote-uuid", "name": "Level 9",
            "created_at": "2024-01-15T09:00:00Z", "updated_at": "2024-01-15T09:00:00Z",
            "deleted_at": None,
        })
        assert outcome == "inserted"
        row = await levels.get_by_uuid("remote-uuid")
        assert row["supabase_id"] == 9
        assert row["is_synced"] == 1
