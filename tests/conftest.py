# tests/conftest.py
"""
Pytest configuration and fixtures for the campus-sync test suite.

Provides:
- In-memory Supabase mock with chainable table queries that enforces the
  remote unique constraints (uuid, name) the way Postgres reports them
- A controllable clock
- Local stores, repositories, queue, reconciler and coordinator wired to
  the mock

Note: Tests never hit a real Supabase project; the SupabaseRemoteStore
adapter runs unchanged on top of the mock client.
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest
from postgrest.exceptions import APIError

from campus_sync.adapters.supabase import SupabaseRemoteStore
from campus_sync.db import LocalStore
from campus_sync.sync.connectivity import ConnectivityMonitor
from campus_sync.sync.coordinator import SyncCoordinator

UNIQUE_COLUMNS = ("uuid", "name")


# ============== Clock ==============

class FakeClock:
    """Deterministic clock; advance() moves it forward."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    def iso(self, offset_seconds: float = 0.0) -> str:
        return (self.now + timedelta(seconds=offset_seconds)).isoformat()


# ============== Supabase Mock Fixtures ==============

class MockSupabaseResponse:
    """Mock response from Supabase operations."""
    def __init__(self, data: List[Dict] = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseTable:
    """Mock Supabase table with chainable methods; work happens in execute()."""

    def __init__(self, table_name: str, client: "MockSupabaseClient"):
        self.table_name = table_name
        self._client = client
        self._action = "select"
        self._payload: Optional[Dict[str, Any]] = None
        self._filters: List[tuple] = []
        self._order_by = None
        self._limit = None
        self._range = None

    def select(self, columns: str = "*"):
        self._action = "select"
        return self

    def insert(self, data: Dict):
        self._action = "insert"
        self._payload = dict(data)
        return self

    def update(self, data: Dict):
        self._action = "update"
        self._payload = dict(data)
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def is_(self, column: str, value: Any):
        self._filters.append(("is", column, value))
        return self

    def order(self, column: str, desc: bool = False):
        self._order_by = (column, desc)
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    def _matches(self, row: Dict[str, Any]) -> bool:
        for kind, column, value in self._filters:
            if kind == "eq" and row.get(column) != value:
                return False
            if kind == "is" and value == "null" and row.get(column) is not None:
                return False
        return True

    def _check_unique(self, candidate: Dict[str, Any], skip_id: Any = None) -> None:
        for column in UNIQUE_COLUMNS:
            if candidate.get(column) is None:
                continue
            for row in self._client.rows(self.table_name):
                if row["id"] != skip_id and row.get(column) == candidate[column]:
                    constraint = f"{self.table_name}_{column}_key"
                    raise APIError({
                        "code": "23505",
                        "message": f'duplicate key value violates unique constraint "{constraint}"',
                        "details": f"Key ({column})=({candidate[column]}) already exists.",
                        "hint": None,
                    })

    def execute(self) -> MockSupabaseResponse:
        """Execute the query and return results."""
        self._client.calls.append((self._action, self.table_name))
        self._client.maybe_fail(self._action, self.table_name)
        rows = self._client.rows(self.table_name)

        if self._action == "insert":
            row = dict(self._payload)
            self._check_unique(row)
            row["id"] = self._client.next_id(self.table_name)
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            row.setdefault("updated_at", row["created_at"])
            row.setdefault("deleted_at", None)
            rows.append(row)
            self._client.maybe_lose_ack(self.table_name)
            return MockSupabaseResponse(data=[copy.deepcopy(row)])

        matched = [r for r in rows if self._matches(r)]

        if self._action == "update":
            for row in matched:
                self._check_unique({**row, **self._payload}, skip_id=row["id"])
            for row in matched:
                row.update(self._payload)
            return MockSupabaseResponse(data=copy.deepcopy(matched))

        if self._order_by:
            column, desc = self._order_by
            matched = sorted(matched, key=lambda r: r.get(column), reverse=desc)
        if self._range:
            start, end = self._range
            matched = matched[start:end + 1]
        if self._limit:
            matched = matched[:self._limit]
        return MockSupabaseResponse(data=copy.deepcopy(matched))


class MockSupabaseClient:
    """Mock Supabase client for testing."""

    def __init__(self):
        self._data_store: Dict[str, List[Dict]] = {}
        self._ids: Dict[str, int] = {}
        self._failures: List[tuple] = []
        self._lost_acks: Dict[str, int] = {}
        self.calls: List[tuple] = []

    def table(self, name: str) -> MockSupabaseTable:
        return MockSupabaseTable(name, self)

    def rows(self, table_name: str) -> List[Dict]:
        return self._data_store.setdefault(table_name, [])

    def next_id(self, table_name: str) -> int:
        self._ids[table_name] = self._ids.get(table_name, 0) + 1
        return self._ids[table_name]

    def seed_data(self, table_name: str, data: List[Dict]):
        """Seed test data into a table (ids are taken as given)."""
        self._data_store[table_name] = [dict(row) for row in data]
        if data:
            self._ids[table_name] = max(row["id"] for row in data)

    def set_next_id(self, table_name: str, next_id: int):
        self._ids[table_name] = next_id - 1

    def find(self, table_name: str, **criteria) -> Optional[Dict]:
        for row in self.rows(table_name):
            if all(row.get(k) == v for k, v in criteria.items()):
                return row
        return None

    def fail_next(self, count: int = 1, action: Optional[str] = None,
                  table: Optional[str] = None, error: Optional[Exception] = None):
        """Make the next matching request(s) raise (default: a connection error)."""
        for _ in range(count):
            self._failures.append((action, table, error))

    def maybe_fail(self, action: str, table_name: str):
        for i, (want_action, want_table, error) in enumerate(self._failures):
            if want_action in (None, action) and want_table in (None, table_name):
                del self._failures[i]
                raise error or httpx.ConnectError("connection refused")

    def lose_next_ack(self, table_name: str):
        """The next insert into table_name lands, but the response never arrives."""
        self._lost_acks[table_name] = self._lost_acks.get(table_name, 0) + 1

    def maybe_lose_ack(self, table_name: str):
        if self._lost_acks.get(table_name):
            self._lost_acks[table_name] -= 1
            raise httpx.ReadTimeout("response lost")

    def count_calls(self, action: str, table_name: Optional[str] = None) -> int:
        return sum(1 for a, t in self.calls if a == action and table_name in (None, t))

    def clear(self):
        """Clear all test data."""
        self._data_store.clear()
        self._ids.clear()
        self._failures.clear()
        self.calls.clear()


@pytest.fixture(scope="function")
def mock_supabase() -> MockSupabaseClient:
    """
    Mock Supabase client for testing.

    Stores rows in memory and enforces uuid/name uniqueness per table.
    """
    return MockSupabaseClient()


@pytest.fixture
def remote(mock_supabase) -> SupabaseRemoteStore:
    return SupabaseRemoteStore(mock_supabase)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============== Local Store Fixtures ==============

@pytest.fixture
async def store(tmp_path):
    local = LocalStore(str(tmp_path / "campus.db"))
    await local.init()
    yield local
    await local.close()


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(initially_online=True)


@pytest.fixture
def coordinator(store, remote, connectivity, clock) -> SyncCoordinator:
    return SyncCoordinator(store, remote, connectivity=connectivity, clock=clock)


@pytest.fixture
def queue(coordinator):
    return coordinator.queue


@pytest.fixture
def repos(coordinator):
    return coordinator.repositories


@pytest.fixture
def offices(repos):
    return repos["offices"]


@pytest.fixture
def levels(repos):
    return repos["levels"]


@pytest.fixture
def students(repos):
    return repos["students"]


@pytest.fixture
def reconciler(coordinator):
    return coordinator.reconciler


@pytest.fixture
async def make_device(tmp_path, remote, clock):
    """
    Factory for extra devices sharing the same remote store.

    Each device has its own Local Store and coordinator.
    """
    created: List[SyncCoordinator] = []

    async def _make(name: str, online: bool = True, **kwargs) -> SyncCoordinator:
        local = LocalStore(str(tmp_path / f"{name}.db"))
        await local.init()
        device = SyncCoordinator(
            local, remote,
            connectivity=ConnectivityMonitor(initially_online=online),
            clock=clock,
            **kwargs,
        )
        created.append(device)
        return device

    yield _make

    for device in created:
        await device.store.close()
