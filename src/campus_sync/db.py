# src/campus_sync/db.py
"""
Local Store - embedded SQLite database holding entity rows, sync metadata
and the mutation queue.

The store is an explicitly constructed resource with an init()/close()
lifecycle. All access goes through run(), which executes a function against
the connection inside one transaction on a worker thread so callers on the
event loop never block.
"""

import asyncio
import logging
import sqlite3
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .errors import CampusSyncError, InitializationError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
-- Centers / offices
CREATE TABLE IF NOT EXISTS offices (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  uuid TEXT UNIQUE NOT NULL,
  name TEXT NOT NULL,
  supabase_id INTEGER UNIQUE,        -- remote id, NULL until first push
  is_synced INTEGER DEFAULT 0,
  operation_type TEXT,               -- INSERT | UPDATE | DELETE | NULL
  created_at TEXT NOT NULL,
  updated_at TEXT,
  deleted_at TEXT                    -- soft delete marker
);

CREATE TABLE IF NOT EXISTS levels (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  uuid TEXT UNIQUE NOT NULL,
  name TEXT NOT NULL,
  supabase_id INTEGER UNIQUE,
  is_synced INTEGER DEFAULT 0,
  operation_type TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT,
  deleted_at TEXT
);

-- Students reference offices/levels by remote id (what the remote store
-- understands) and by uuid (known even before the referenced row is pushed).
CREATE TABLE IF NOT EXISTS students (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  uuid TEXT UNIQUE NOT NULL,
  name TEXT NOT NULL,
  birth_date TEXT,
  phone TEXT,
  address TEXT,
  office_id INTEGER,
  level_id INTEGER,
  office_uuid TEXT,
  level_uuid TEXT,
  supabase_id INTEGER UNIQUE,
  is_synced INTEGER DEFAULT 0,
  operation_type TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT,
  deleted_at TEXT,
  FOREIGN KEY (office_id) REFERENCES offices(supabase_id),
  FOREIGN KEY (level_id) REFERENCES levels(supabase_id)
);

CREATE INDEX IF NOT EXISTS idx_offices_name ON offices(name);
CREATE INDEX IF NOT EXISTS idx_levels_name ON levels(name);
CREATE INDEX IF NOT EXISTS idx_students_name ON students(name);
CREATE INDEX IF NOT EXISTS idx_students_office_uuid ON students(office_uuid);
CREATE INDEX IF NOT EXISTS idx_students_level_uuid ON students(level_uuid);

-- Outbox shared by all entity kinds; at most one entry per local row
CREATE TABLE IF NOT EXISTS sync_queue (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  entity TEXT NOT NULL,
  entity_local_id INTEGER NOT NULL,
  entity_uuid TEXT,
  entity_supabase_id INTEGER,
  operation TEXT NOT NULL,
  payload TEXT,                      -- JSON snapshot taken at enqueue time
  timestamp TEXT NOT NULL,
  attempts INTEGER DEFAULT 0,
  last_error TEXT,
  next_attempt_at TEXT,
  status TEXT DEFAULT 'pending',     -- pending | conflict
  UNIQUE(entity, entity_local_id)
);

CREATE INDEX IF NOT EXISTS idx_sync_queue_entity ON sync_queue(entity, id);

-- Authentication cache, owned by the sign-in screens
CREATE TABLE IF NOT EXISTS local_profiles (
  supabase_id TEXT PRIMARY KEY,
  email TEXT,
  role TEXT,
  full_name TEXT,
  avatar_url TEXT,
  password_hash TEXT,
  last_login_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

# Columns added after the first release; applied to older databases on init.
MIGRATIONS = [
    "ALTER TABLE sync_queue ADD COLUMN attempts INTEGER DEFAULT 0",
    "ALTER TABLE sync_queue ADD COLUMN last_error TEXT",
    "ALTER TABLE sync_queue ADD COLUMN next_attempt_at TEXT",
    "ALTER TABLE sync_queue ADD COLUMN status TEXT DEFAULT 'pending'",
    "ALTER TABLE students ADD COLUMN office_uuid TEXT",
    "ALTER TABLE students ADD COLUMN level_uuid TEXT",
]


def row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    """Convert a sqlite3.Row to a dictionary."""
    return dict(row) if row is not None else None


class LocalStore:
    """
    Owned handle on the local SQLite database.

    Usage:
        store = LocalStore("campus.db")
        await store.init()
        rows = await store.fetch_all("SELECT * FROM offices")
        await store.close()
    """

    def __init__(self, db_path: str = "campus.db"):
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    async def init(self) -> None:
        """Open the connection and create tables. Safe to call twice."""
        if self._conn is not None:
            return
        async with self._lock:
            if self._conn is not None:
                return
            try:
                self._conn = await asyncio.to_thread(self._open)
            except sqlite3.Error as e:
                logger.error(f"❌ Failed to initialize local store {self._db_path}: {e}")
                raise StorageError(f"Failed to initialize local store: {e}") from e
        logger.info(f"✅ Local store initialized ({self._db_path})")

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        if self._db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        conn.executescript(SCHEMA)
        for statement in MIGRATIONS:
            try:
                conn.execute(statement)
            except sqlite3.OperationalError:
                pass  # Column already exists
        conn.commit()
        return conn

    async def close(self) -> None:
        async with self._lock:
            if self._conn is None:
                return
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)
        logger.info(f"Local store closed ({self._db_path})")

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise InitializationError(
                "Local store not initialized. Call and await LocalStore.init() first."
            )
        return self._conn

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """
        Run fn(conn, *args) inside one transaction.

        Commits when fn returns, rolls back when it raises. Engine errors
        raised by fn (validation, not found) propagate unchanged; sqlite3
        errors are wrapped in StorageError.
        """
        self._require_conn()
        async with self._lock:
            conn = self._require_conn()
            return await asyncio.to_thread(self._run_in_transaction, conn, fn, args)

    @staticmethod
    def _run_in_transaction(conn: sqlite3.Connection, fn: Callable[..., T], args) -> T:
        try:
            with conn:
                return fn(conn, *args)
        except CampusSyncError:
            raise
        except sqlite3.Error as e:
            logger.error(f"❌ Local transaction rolled back: {e}")
            raise StorageError(str(e)) from e

    async def fetch_all(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        def _query(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
            return [dict(r) for r in conn.execute(sql, params).fetchall()]
        return await self.run(_query)

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        def _query(conn: sqlite3.Connection) -> Optional[Dict[str, Any]]:
            return row_to_dict(conn.execute(sql, params).fetchone())
        return await self.run(_query)

    async def execute(self, sql: str, params: tuple = ()) -> int:
        """Execute a single write statement; returns affected row count."""
        def _write(conn: sqlite3.Connection) -> int:
            return conn.execute(sql, params).rowcount
        return await self.run(_write)
