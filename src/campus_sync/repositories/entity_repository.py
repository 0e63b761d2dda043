# src/campus_sync/repositories/entity_repository.py
"""
Entity Repository - generic CRUD facade over one entity table.

One class serves offices, levels and students; the differences live in
EntitySchema. Every mutation writes the entity row and its mutation queue
entry in the same local transaction.
"""

import logging
import sqlite3
import uuid as uuid_lib
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.models import Operation, QueueEntry
from ..core.schema import SCHEMAS, EntitySchema, get_schema
from ..db import LocalStore, row_to_dict
from ..errors import DuplicateNameError, NotFoundError, ValidationError
from ..sync.queue import MutationQueue
from ..timeutils import last_modified, to_iso, utcnow

logger = logging.getLogger(__name__)


class EntityRepository:
    """
    Local-first repository for one entity kind.

    Example:
        ```python
        offices = EntityRepository(store, OFFICES, queue)
        created = await offices.create({"name": "Centre A"})
        await offices.update(created["local_id"], {"name": "Centre A1"})
        rows = await offices.list()
        ```
    """

    def __init__(
        self,
        store: LocalStore,
        schema: EntitySchema,
        queue: MutationQueue,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self.schema = schema
        self.queue = queue
        self._clock = clock

    @property
    def kind(self) -> str:
        return self.schema.kind

    def _now(self) -> str:
        return to_iso(self._clock())

    # =========================================================================
    # INPUT HANDLING
    # =========================================================================

    def _accepted_keys(self) -> Tuple[str, ...]:
        return self.schema.local_fields

    def _normalize(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Drop surrounding whitespace, map blanks to None, reject unknown keys."""
        accepted = self._accepted_keys()
        data = {}
        for key, value in fields.items():
            if key not in accepted:
                raise ValidationError(f"Unknown {self.schema.display_name} field: {key}", field=key)
            if isinstance(value, str):
                value = value.strip() or None
            data[key] = value
        return data

    def _check_required(self, data: Dict[str, Any], changed: Optional[set] = None) -> None:
        """
        Required fields must be set. On update (changed given) a reference
        is only checked when the edit touches it, so a row whose referenced
        row never reached this device stays editable.
        """
        for required in self.schema.required:
            ref = self.schema.reference(required)
            if ref is not None:
                if changed is not None and not changed & {ref.uuid_column, ref.id_column}:
                    continue
                if data.get(ref.uuid_column) is None and data.get(ref.id_column) is None:
                    article = "an" if ref.name[0] in "aeiou" else "a"
                    raise ValidationError(
                        f"{self.schema.display_name} requires {article} {ref.name}", field=ref.name
                    )
            elif data.get(required) is None:
                raise ValidationError(f"{self.schema.display_name} {required} is required", field=required)

    def _resolve_references(self, conn: sqlite3.Connection, data: Dict[str, Any], changed: set) -> None:
        """
        Fill in the counterpart of each reference column.

        Callers may name the referenced row by uuid or by remote id; the row
        must exist locally and not be soft-deleted. The remote id stays NULL
        while the referenced row has not been pushed yet.
        """
        for ref in self.schema.references:
            target = get_schema(ref.target)
            if ref.uuid_column in changed and data.get(ref.uuid_column) is not None:
                row = conn.execute(
                    f"SELECT uuid, supabase_id, deleted_at FROM {target.table} WHERE uuid = ?",
                    (data[ref.uuid_column],),
                ).fetchone()
                if row is None or row["deleted_at"]:
                    raise ValidationError(f"Unknown {ref.name}: {data[ref.uuid_column]}", field=ref.name)
                data[ref.id_column] = row["supabase_id"]
            elif ref.id_column in changed and data.get(ref.id_column) is not None:
                row = conn.execute(
                    f"SELECT uuid, supabase_id, deleted_at FROM {target.table} WHERE supabase_id = ?",
                    (data[ref.id_column],),
                ).fetchone()
                if row is None or row["deleted_at"]:
                    raise ValidationError(f"Unknown {ref.name}: {data[ref.id_column]}", field=ref.name)
                data[ref.uuid_column] = row["uuid"]

    def _check_unique(self, conn: sqlite3.Connection, value: Any, exclude_id: Optional[int] = None) -> None:
        column = self.schema.unique_field
        sql = f"SELECT id FROM {self.schema.table} WHERE {column} = ? AND deleted_at IS NULL"
        params: List[Any] = [value]
        if exclude_id is not None:
            sql += " AND id != ?"
            params.append(exclude_id)
        if conn.execute(sql, params).fetchone():
            raise DuplicateNameError(
                f"A {self.schema.display_name} named '{value}' already exists", field=column
            )

    def _snapshot(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Queue payload: the row's business state at enqueue time."""
        payload = {key: row.get(key) for key in self.schema.local_fields}
        payload.update(
            uuid=row["uuid"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            deleted_at=row.get("deleted_at"),
        )
        return payload

    def _get_row(self, conn: sqlite3.Connection, local_id: int) -> Optional[Dict[str, Any]]:
        return row_to_dict(
            conn.execute(f"SELECT * FROM {self.schema.table} WHERE id = ?", (local_id,)).fetchone()
        )

    def _get_live_row(self, conn: sqlite3.Connection, local_id: int) -> Dict[str, Any]:
        row = self._get_row(conn, local_id)
        if row is None or row["deleted_at"]:
            raise NotFoundError(f"{self.schema.display_name} {local_id} not found")
        return row

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create(self, fields: Dict[str, Any], remote_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Insert a new row and queue its INSERT.

        When remote_id is supplied the row already exists remotely (merge
        path): it is stored as synced and nothing is queued.

        Returns:
            {"local_id": int, "uuid": str}
        """
        data = self._normalize(fields)
        self._check_required(data)

        def _create(conn: sqlite3.Connection) -> Dict[str, Any]:
            self._resolve_references(conn, data, set(data))
            self._check_unique(conn, data.get(self.schema.unique_field))

            now = self._now()
            row = {key: data.get(key) for key in self.schema.local_fields}
            row.update(
                uuid=str(uuid_lib.uuid4()),
                supabase_id=remote_id,
                is_synced=1 if remote_id is not None else 0,
                operation_type=None if remote_id is not None else Operation.INSERT.value,
                created_at=now,
                updated_at=now,
            )
            columns = list(row)
            cursor = conn.execute(
                f"INSERT INTO {self.schema.table} ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                [row[c] for c in columns],
            )
            local_id = cursor.lastrowid

            if remote_id is None:
                self.queue.replace(
                    conn, self.kind, local_id, row["uuid"], None,
                    Operation.INSERT, self._snapshot(row),
                )
            return {"local_id": local_id, "uuid": row["uuid"]}

        result = await self._store.run(_create)
        logger.info(f"➕ Created {self.schema.display_name} {result['local_id']} ({result['uuid']})")
        return result

    async def update(self, local_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Change business fields of a live row and queue an UPDATE."""
        changes = self._normalize(fields)

        def _update(conn: sqlite3.Connection) -> Dict[str, Any]:
            row = self._get_live_row(conn, local_id)
            # A reference given one way invalidates the stored other half
            for ref in self.schema.references:
                if ref.uuid_column in changes and ref.id_column not in changes:
                    row[ref.id_column] = None
                elif ref.id_column in changes and ref.uuid_column not in changes:
                    row[ref.uuid_column] = None
            row.update(changes)
            self._resolve_references(conn, row, set(changes))
            self._check_required(row, changed=set(changes))
            if self.schema.unique_field in changes:
                self._check_unique(conn, row[self.schema.unique_field], exclude_id=local_id)

            row["updated_at"] = self._now()
            _, operation = self.queue.replace(
                conn, self.kind, local_id, row["uuid"], row["supabase_id"],
                Operation.UPDATE, self._snapshot(row),
            )
            row["is_synced"] = 0
            row["operation_type"] = operation.value

            columns = list(self.schema.local_fields) + ["is_synced", "operation_type", "updated_at"]
            conn.execute(
                f"UPDATE {self.schema.table} SET {', '.join(f'{c} = ?' for c in columns)} WHERE id = ?",
                [row[c] for c in columns] + [local_id],
            )
            return row

        row = await self._store.run(_update)
        logger.info(f"Updated {self.schema.display_name} {local_id} (pending {row['operation_type']})")
        return row

    async def soft_delete(self, local_id: int) -> None:
        """Mark a row deleted and queue a DELETE superseding any pending entry."""

        def _delete(conn: sqlite3.Connection) -> None:
            row = self._get_live_row(conn, local_id)
            now = self._now()
            row.update(deleted_at=now, updated_at=now)
            conn.execute(
                f"""
                UPDATE {self.schema.table}
                SET deleted_at = ?, updated_at = ?, is_synced = 0, operation_type = ?
                WHERE id = ?
                """,
                (now, now, Operation.DELETE.value, local_id),
            )
            self.queue.replace(
                conn, self.kind, local_id, row["uuid"], row["supabase_id"],
                Operation.DELETE, self._snapshot(row),
            )

        await self._store.run(_delete)
        logger.info(f"🗑️ Soft-deleted {self.schema.display_name} {local_id}")

    # =========================================================================
    # READS
    # =========================================================================

    async def list(self) -> List[Dict[str, Any]]:
        """
        All live rows ordered by local id.

        Rows with references carry "<ref>_name" resolved through the
        referenced table (by remote id, or by uuid while unpushed).
        """
        table = self.schema.table
        select = ["t.*"]
        joins = []
        for i, ref in enumerate(self.schema.references):
            alias = f"r{i}"
            target = get_schema(ref.target).table
            select.append(f"{alias}.name AS {ref.name}_name")
            joins.append(
                f"LEFT JOIN {target} {alias} ON ({alias}.supabase_id = t.{ref.id_column} "
                f"OR (t.{ref.id_column} IS NULL AND {alias}.uuid = t.{ref.uuid_column}))"
            )
        sql = (
            f"SELECT {', '.join(select)} FROM {table} t {' '.join(joins)} "
            f"WHERE t.deleted_at IS NULL ORDER BY t.id ASC"
        )
        return await self._store.fetch_all(sql)

    async def get(self, local_id: int) -> Optional[Dict[str, Any]]:
        """Row by local id, including soft-deleted rows."""
        return await self._store.fetch_one(
            f"SELECT * FROM {self.schema.table} WHERE id = ?", (local_id,)
        )

    async def get_by_uuid(self, uuid: str) -> Optional[Dict[str, Any]]:
        return await self._store.fetch_one(
            f"SELECT * FROM {self.schema.table} WHERE uuid = ?", (uuid,)
        )

    # =========================================================================
    # SYNC METADATA (called by the reconciler and the merge fetcher)
    # =========================================================================

    async def mark_synced(self, local_id: int) -> bool:
        changed = await self._store.execute(
            f"UPDATE {self.schema.table} SET is_synced = 1, operation_type = NULL WHERE id = ?",
            (local_id,),
        )
        return changed > 0

    async def attach_remote_id(self, local_id: int, uuid: str, remote_id: int) -> bool:
        """
        Record the remote id assigned to a pushed row.

        Matching on both local id and uuid keeps a stale acknowledgement from
        landing on a different row that reused the local id.
        """
        def _attach(conn: sqlite3.Connection) -> bool:
            return self._attach_remote_id(conn, local_id, uuid, remote_id)
        return await self._store.run(_attach)

    def _attach_remote_id(self, conn: sqlite3.Connection, local_id: int, uuid: str, remote_id: int) -> bool:
        changed = conn.execute(
            f"""
            UPDATE {self.schema.table}
            SET supabase_id = ?, is_synced = 1, operation_type = NULL
            WHERE id = ? AND uuid = ?
            """,
            (remote_id, local_id, uuid),
        ).rowcount
        if changed:
            self._propagate_remote_id(conn, uuid, remote_id)
        return changed > 0

    def _propagate_remote_id(self, conn: sqlite3.Connection, uuid: str, remote_id: int) -> None:
        """Fill in the remote id on rows that reference this one by uuid."""
        for schema in SCHEMAS.values():
            for ref in schema.references:
                if ref.target != self.kind:
                    continue
                conn.execute(
                    f"UPDATE {schema.table} SET {ref.id_column} = ? "
                    f"WHERE {ref.uuid_column} = ? AND {ref.id_column} IS NULL",
                    (remote_id, uuid),
                )

    async def complete_push(self, entry: QueueEntry, remote_id: Optional[int] = None) -> bool:
        """
        Acknowledge a pushed queue entry.

        Removes the entry and records the remote id (INSERT). If the row was
        mutated again while the push was in flight, the newer entry stays
        queued and the row stays pending; a newer INSERT becomes an UPDATE
        now that the row exists remotely.

        Returns:
            True if the row is now fully synced.
        """
        def _complete(conn: sqlite3.Connection) -> bool:
            self.queue.remove(conn, entry.queue_id)
            newer = self.queue.entry_for(conn, self.kind, entry.local_id)

            if remote_id is not None:
                conn.execute(
                    f"UPDATE {self.schema.table} SET supabase_id = ? WHERE id = ? AND uuid = ?",
                    (remote_id, entry.local_id, entry.uuid),
                )
                self._propagate_remote_id(conn, entry.uuid, remote_id)

            if newer is not None:
                if remote_id is not None and newer.operation == Operation.INSERT:
                    self.queue.requeue_as_update(conn, newer.queue_id, remote_id)
                    conn.execute(
                        f"UPDATE {self.schema.table} SET operation_type = ? WHERE id = ? AND uuid = ?",
                        (Operation.UPDATE.value, entry.local_id, entry.uuid),
                    )
                return False

            conn.execute(
                f"UPDATE {self.schema.table} SET is_synced = 1, operation_type = NULL "
                f"WHERE id = ? AND uuid = ?",
                (entry.local_id, entry.uuid),
            )
            return True

        return await self._store.run(_complete)

    async def discard_local(self, local_id: int, uuid: str) -> bool:
        """
        Physically remove a local row and its queue entry.

        Used when the user resolves a remote duplicate-key conflict by
        dropping the local copy.
        """
        def _discard(conn: sqlite3.Connection) -> bool:
            self._warn_dependents(conn, uuid)
            self.queue.remove_for_row(conn, self.kind, local_id)
            return conn.execute(
                f"DELETE FROM {self.schema.table} WHERE id = ? AND uuid = ?",
                (local_id, uuid),
            ).rowcount > 0

        removed = await self._store.run(_discard)
        if removed:
            logger.info(f"🗑️ Discarded local {self.schema.display_name} {local_id} ({uuid})")
        return removed

    def _warn_dependents(self, conn: sqlite3.Connection, uuid: str) -> None:
        for schema in SCHEMAS.values():
            for ref in schema.references:
                if ref.target != self.kind:
                    continue
                count = conn.execute(
                    f"SELECT COUNT(*) AS n FROM {schema.table} "
                    f"WHERE {ref.uuid_column} = ? AND deleted_at IS NULL",
                    (uuid,),
                ).fetchone()["n"]
                if count:
                    logger.warning(
                        f"⚠️ {count} {schema.table} still reference discarded "
                        f"{self.schema.display_name} {uuid}; they stay queued until reassigned"
                    )

    async def resolve_push_references(
        self, payload: Dict[str, Any], operation: Operation = Operation.INSERT
    ) -> Tuple[Dict[str, Any], List[str]]:
        """
        Map reference uuids in a queued payload to current remote ids.

        An UPDATE whose reference was dropped during merge (its target never
        reached this device) leaves that column out, so the remote keeps its
        value.

        Returns the resolved payload and the names of references whose target
        has no remote id yet.
        """
        if not self.schema.references:
            return dict(payload), []

        def _resolve(conn: sqlite3.Connection) -> Tuple[Dict[str, Any], List[str]]:
            resolved = dict(payload)
            unresolved = []
            for ref in self.schema.references:
                ref_uuid = resolved.get(ref.uuid_column)
                if ref_uuid is None:
                    # Legacy rows only know the remote id
                    if resolved.get(ref.id_column) is not None:
                        continue
                    if operation == Operation.INSERT:
                        unresolved.append(ref.name)
                    else:
                        resolved.pop(ref.id_column, None)
                    continue
                row = conn.execute(
                    f"SELECT supabase_id FROM {get_schema(ref.target).table} WHERE uuid = ?",
                    (ref_uuid,),
                ).fetchone()
                if row is None or row["supabase_id"] is None:
                    unresolved.append(ref.name)
                else:
                    resolved[ref.id_column] = row["supabase_id"]
            return resolved, unresolved

        return await self._store.run(_resolve)

    # =========================================================================
    # MERGE FROM REMOTE
    # =========================================================================

    async def merge_from_remote(self, remote_row: Dict[str, Any]) -> str:
        """Fold one remote row into the local table. Returns the outcome."""
        def _merge(conn: sqlite3.Connection) -> str:
            return self.apply_remote_row(conn, remote_row)
        return await self._store.run(_merge)

    def apply_remote_row(self, conn: sqlite3.Connection, remote: Dict[str, Any]) -> str:
        """
        Last-writer-wins merge of one remote row, keyed by uuid.

        Returns one of "inserted", "updated", "deleted", "unchanged".
        """
        table = self.schema.table
        local = row_to_dict(
            conn.execute(f"SELECT * FROM {table} WHERE uuid = ?", (remote["uuid"],)).fetchone()
        )

        if remote.get("deleted_at"):
            if local is None or local["deleted_at"]:
                return "unchanged"
            conn.execute(
                f"""
                UPDATE {table}
                SET deleted_at = ?, supabase_id = ?, is_synced = 1, operation_type = NULL
                WHERE id = ?
                """,
                (remote["deleted_at"], remote["id"], local["id"]),
            )
            self.queue.remove_for_row(conn, self.kind, local["id"])
            logger.info(f"🗑️ Marked remote-deleted {self.schema.display_name} locally: {remote.get('name')}")
            return "deleted"

        fields = self._fields_from_remote(conn, remote)

        if local is None:
            row = dict(fields)
            row.update(
                uuid=remote["uuid"],
                supabase_id=remote["id"],
                is_synced=1,
                operation_type=None,
                created_at=remote.get("created_at") or self._now(),
                updated_at=remote.get("updated_at") or remote.get("created_at") or self._now(),
            )
            columns = list(row)
            conn.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                [row[c] for c in columns],
            )
            self._propagate_remote_id(conn, remote["uuid"], remote["id"])
            logger.info(f"➕ Inserted {self.schema.display_name} from remote: {remote.get('name')}")
            return "inserted"

        if last_modified(remote) <= last_modified(local):
            return "unchanged"

        row = dict(fields)
        row.update(
            supabase_id=remote["id"],
            updated_at=remote.get("updated_at") or remote.get("created_at"),
            deleted_at=None,
            is_synced=1,
            operation_type=None,
        )
        columns = list(row)
        conn.execute(
            f"UPDATE {table} SET {', '.join(f'{c} = ?' for c in columns)} WHERE id = ?",
            [row[c] for c in columns] + [local["id"]],
        )
        # The remote version is newer than any local edit still queued
        self.queue.remove_for_row(conn, self.kind, local["id"])
        self._propagate_remote_id(conn, remote["uuid"], remote["id"])
        logger.info(f"🔄 Updated local {self.schema.display_name} from remote: {remote.get('name')}")
        return "updated"

    def _fields_from_remote(self, conn: sqlite3.Connection, remote: Dict[str, Any]) -> Dict[str, Any]:
        """Business fields of a remote row, with references mapped to local uuids."""
        fields = {key: remote.get(key) for key in self.schema.fields}
        for ref in self.schema.references:
            remote_ref = remote.get(ref.id_column)
            fields[ref.uuid_column] = None
            if remote_ref is None:
                continue
            target = conn.execute(
                f"SELECT uuid FROM {get_schema(ref.target).table} WHERE supabase_id = ?",
                (remote_ref,),
            ).fetchone()
            if target is None:
                logger.warning(
                    f"⚠️ {self.schema.display_name} {remote.get('uuid')} references unknown "
                    f"{ref.name} {remote_ref}; reference dropped"
                )
                fields[ref.id_column] = None
            else:
                fields[ref.uuid_column] = target["uuid"]
        return fields
