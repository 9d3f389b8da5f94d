"""Tests for the SQLite client against a temporary database file."""

import asyncio
from datetime import date

import pytest

from src.core import db_client
from src.core.config import settings
from src.core.db_client import DatabaseError, RecordNotFoundError, parse_filter
from src.domain.task import DayOfWeek, EdgeKind, IntervalUnit, RecurrenceRule, Task, TaskEdge
from src.modules.tasks import service, store


@pytest.fixture
async def sqlite_db(tmp_path, monkeypatch):
    """Point db_client at a fresh database file with the schema applied."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "test.db"))
    await db_client.init_db()
    yield
    await db_client.close_connection()


def _task_record(task_id: str, **overrides) -> dict:
    return {
        "id": task_id,
        "name": "Sweep",
        "category": "Home",
        "interval_unit": "DAY",
        "interval_qty": 1,
        "overdue_behavior": "POSTPONE",
        **overrides,
    }


@pytest.mark.unit
class TestParseFilter:
    """Tests for filter parsing."""

    def test_and_with_or_group(self):
        """Test && joins conditions and parenthesized || becomes OR."""
        where, params = parse_filter('active = "true" && (next_due <= "2025-11-03" || last_completed = "2025-11-03")')

        assert where == "active = ? AND (next_due <= ? OR last_completed = ?)"
        assert params == [True, "2025-11-03", "2025-11-03"]

    def test_like_escapes_wildcards(self):
        """Test ~ becomes an escaped LIKE."""
        where, params = parse_filter('name ~ "50%_off"')

        assert "LIKE ? ESCAPE" in where
        assert params == [r"%50\%\_off%"]

    def test_invalid_syntax(self):
        """Test malformed comparisons are rejected."""
        with pytest.raises(ValueError, match="Invalid filter syntax"):
            parse_filter("name equals Sweep")


@pytest.mark.unit
class TestSQLiteCrud:
    """Tests for CRUD operations on a real SQLite file."""

    async def test_create_get_update_delete(self, sqlite_db):
        """Test the basic record lifecycle."""
        created = await db_client.create_record(collection="tasks", data=_task_record("t1"))
        assert created["name"] == "Sweep"

        updated = await db_client.update_record(collection="tasks", record_id="t1", data={"name": "Mop"})
        assert updated["name"] == "Mop"

        await db_client.delete_record(collection="tasks", record_id="t1")
        with pytest.raises(RecordNotFoundError):
            await db_client.get_record(collection="tasks", record_id="t1")

    async def test_update_missing_record(self, sqlite_db):
        """Test updating an unknown id raises RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            await db_client.update_record(collection="tasks", record_id="nope", data={"name": "x"})

    async def test_check_constraint_wrapped(self, sqlite_db):
        """Test constraint violations surface as DatabaseError."""
        with pytest.raises(DatabaseError):
            await db_client.create_record(collection="tasks", data=_task_record("t1", interval_unit="YEAR"))

    async def test_filtered_listing(self, sqlite_db):
        """Test boolean and date comparisons against stored values."""
        await db_client.create_record(collection="tasks", data=_task_record("a", next_due="2025-11-01"))
        await db_client.create_record(collection="tasks", data=_task_record("b", next_due="2025-11-05"))
        await db_client.create_record(collection="tasks", data=_task_record("c", next_due="2025-11-01", active=False))

        records = await db_client.list_all_records(
            collection="tasks",
            filter_query='active = "true" && next_due < "2025-11-03"',
        )

        assert [r["id"] for r in records] == ["a"]

    async def test_transaction_rollback(self, sqlite_db):
        """Test an exception inside a transaction discards its writes."""
        with pytest.raises(RuntimeError):
            async with db_client.transaction():
                await db_client.create_record(collection="tasks", data=_task_record("t1"))
                raise RuntimeError("boom")

        with pytest.raises(RecordNotFoundError):
            await db_client.get_record(collection="tasks", record_id="t1")

    async def test_nested_transaction_joins_outer(self, sqlite_db):
        """Test a nested transaction commits with its outer block."""
        async with db_client.transaction():
            await db_client.create_record(collection="tasks", data=_task_record("t1"))
            async with db_client.transaction():
                await db_client.create_record(collection="tasks", data=_task_record("t2"))

        records = await db_client.list_all_records(collection="tasks")
        assert {r["id"] for r in records} == {"t1", "t2"}

    async def test_write_outside_transaction_survives_concurrent_rollback(self, sqlite_db):
        """Test an archive racing a failing transaction waits for it and stays committed."""
        await db_client.create_record(collection="tasks", data=_task_record("x"))
        await db_client.create_record(collection="tasks", data=_task_record("y"))
        opened = asyncio.Event()

        async def _failing_unit_of_work():
            async with db_client.transaction():
                await db_client.update_record(collection="tasks", record_id="x", data={"name": "Mop"})
                opened.set()
                await asyncio.sleep(0.05)
                raise RuntimeError("boom")

        async def _archive():
            await opened.wait()
            return await service.archive_task(task_id="y")

        results = await asyncio.gather(_failing_unit_of_work(), _archive(), return_exceptions=True)

        assert isinstance(results[0], RuntimeError)
        assert results[1].active is False
        assert (await store.get_by_id("y")).active is False
        assert (await store.get_by_id("x")).name == "Sweep"

    async def test_read_outside_transaction_sees_only_committed_rows(self, sqlite_db):
        """Test a plain read waits out an open transaction instead of seeing its writes."""
        await db_client.create_record(collection="tasks", data=_task_record("x"))
        opened = asyncio.Event()

        async def _failing_unit_of_work():
            async with db_client.transaction():
                await db_client.update_record(collection="tasks", record_id="x", data={"name": "Mop"})
                opened.set()
                await asyncio.sleep(0.05)
                raise RuntimeError("boom")

        async def _read():
            await opened.wait()
            return await db_client.get_record(collection="tasks", record_id="x")

        results = await asyncio.gather(_failing_unit_of_work(), _read(), return_exceptions=True)

        assert isinstance(results[0], RuntimeError)
        assert results[1]["name"] == "Sweep"


@pytest.mark.unit
class TestStoreOnSQLite:
    """Tests for the task store on a real SQLite file."""

    async def test_task_round_trip(self, sqlite_db):
        """Test every rule field and relationship survives storage."""
        rule = RecurrenceRule(
            interval_unit=IntervalUnit.WEEK,
            interval_qty=2,
            specific_days_of_week=frozenset({DayOfWeek.MONDAY, DayOfWeek.FRIDAY}),
            excluded_dates=frozenset({date(2025, 12, 25)}),
        )
        parent = await store.insert(Task(id="p", name="Parent", category="Home"))
        task = await store.insert(
            Task(id="t", name="Child", category="Home", tags=frozenset({"weekly"}), rule=rule, next_due=date(2025, 11, 3))
        )
        await store.add_edge(TaskEdge(kind=EdgeKind.PARENT, source_id=parent.id, target_id=task.id))

        loaded = await store.get_by_id("t")

        assert loaded.rule == rule
        assert loaded.tags == {"weekly"}
        assert loaded.next_due == date(2025, 11, 3)
        assert loaded.active is True
        assert loaded.parent_task_ids == {"p"}

    async def test_deleting_task_row_cascades_edges(self, sqlite_db):
        """Test foreign keys remove edges when a task row goes away."""
        await store.insert(Task(id="a", name="A", category="Home"))
        await store.insert(Task(id="b", name="B", category="Home"))
        await store.add_edge(TaskEdge(kind=EdgeKind.TRIGGER, source_id="a", target_id="b"))

        await db_client.delete_record(collection="tasks", record_id="a")

        assert await store.list_edges() == []
        assert (await store.get_by_id("b")).triggered_by_task_ids == frozenset()
