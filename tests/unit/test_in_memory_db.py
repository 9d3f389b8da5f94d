"""Tests for InMemoryDBClient implementation."""

import asyncio

import pytest

from src.core.db_client import DatabaseError, RecordNotFoundError


@pytest.mark.unit
class TestInMemoryDBClient:
    """Test suite for InMemoryDBClient."""

    async def test_create_record_uses_given_id(self, in_memory_db):
        """Test creating a record keyed by the caller's id."""
        record = await in_memory_db.create_record("tasks", {"id": "t1", "name": "Test"})

        assert record["id"] == "t1"
        assert record["name"] == "Test"
        assert "created" in record

    async def test_create_record_generates_unique_ids(self, in_memory_db):
        """Test that records without an id get unique generated ids."""
        record1 = await in_memory_db.create_record("tasks", {"name": "Task 1"})
        record2 = await in_memory_db.create_record("tasks", {"name": "Task 2"})

        assert record1["id"] != record2["id"]

    async def test_create_duplicate_id_fails(self, in_memory_db):
        """Test inserting the same id twice fails like a primary key."""
        await in_memory_db.create_record("tasks", {"id": "t1"})

        with pytest.raises(DatabaseError, match="UNIQUE"):
            await in_memory_db.create_record("tasks", {"id": "t1"})

    async def test_create_record_invalid_data(self, in_memory_db):
        """Test creating a record with invalid data raises error."""
        with pytest.raises(DatabaseError, match="Data must be a dictionary"):
            await in_memory_db.create_record("tasks", "invalid")

    async def test_get_record_not_found(self, in_memory_db):
        """Test getting a non-existent record raises error."""
        with pytest.raises(RecordNotFoundError, match="Record not found"):
            await in_memory_db.get_record("tasks", "nonexistent")

    async def test_update_record(self, in_memory_db):
        """Test updating a record."""
        await in_memory_db.create_record("tasks", {"id": "t1", "name": "Original"})
        updated = await in_memory_db.update_record("tasks", "t1", {"name": "Updated"})

        assert updated["name"] == "Updated"

    async def test_delete_record(self, in_memory_db):
        """Test deleting a record."""
        await in_memory_db.create_record("tasks", {"id": "t1"})
        await in_memory_db.delete_record("tasks", "t1")

        with pytest.raises(RecordNotFoundError):
            await in_memory_db.get_record("tasks", "t1")

    async def test_comparison_filters(self, in_memory_db):
        """Test ordered comparisons on ISO dates skip NULL values."""
        await in_memory_db.create_record("tasks", {"id": "a", "next_due": "2025-11-01"})
        await in_memory_db.create_record("tasks", {"id": "b", "next_due": "2025-11-03"})
        await in_memory_db.create_record("tasks", {"id": "c", "next_due": None})

        before = await in_memory_db.list_records("tasks", filter_query='next_due < "2025-11-03"')
        on_or_before = await in_memory_db.list_records("tasks", filter_query='next_due <= "2025-11-03"')

        assert [r["id"] for r in before] == ["a"]
        assert [r["id"] for r in on_or_before] == ["a", "b"]

    async def test_boolean_and_or_filters(self, in_memory_db):
        """Test booleans, && and parenthesized || groups."""
        await in_memory_db.create_record("tasks", {"id": "a", "active": True, "next_due": "2025-11-01"})
        await in_memory_db.create_record("tasks", {"id": "b", "active": True, "last_completed": "2025-11-03"})
        await in_memory_db.create_record("tasks", {"id": "c", "active": False, "next_due": "2025-11-01"})

        records = await in_memory_db.list_records(
            "tasks",
            filter_query='active = "true" && (next_due <= "2025-11-03" || last_completed = "2025-11-03")',
        )

        assert [r["id"] for r in records] == ["a", "b"]

    async def test_invalid_filter(self, in_memory_db):
        """Test invalid filter syntax raises DatabaseError."""
        await in_memory_db.create_record("tasks", {"id": "a"})

        with pytest.raises(DatabaseError, match="Invalid filter syntax"):
            await in_memory_db.list_records("tasks", filter_query="not a filter")

    async def test_sort(self, in_memory_db):
        """Test ascending and descending sort."""
        await in_memory_db.create_record("tasks", {"id": "a", "name": "Beta"})
        await in_memory_db.create_record("tasks", {"id": "b", "name": "Alpha"})

        ascending = await in_memory_db.list_records("tasks", sort="name")
        descending = await in_memory_db.list_records("tasks", sort="-name")

        assert [r["name"] for r in ascending] == ["Alpha", "Beta"]
        assert [r["name"] for r in descending] == ["Beta", "Alpha"]

    async def test_transaction_rolls_back_on_error(self, in_memory_db):
        """Test an exception inside a transaction restores the previous state."""
        await in_memory_db.create_record("tasks", {"id": "a", "name": "Kept"})

        with pytest.raises(RuntimeError):
            async with in_memory_db.transaction():
                await in_memory_db.update_record("tasks", "a", {"name": "Changed"})
                async with in_memory_db.transaction():
                    await in_memory_db.create_record("tasks", {"id": "b"})
                raise RuntimeError("boom")

        assert (await in_memory_db.get_record("tasks", "a"))["name"] == "Kept"
        with pytest.raises(RecordNotFoundError):
            await in_memory_db.get_record("tasks", "b")
        assert in_memory_db.rollbacks == 1

    async def test_write_outside_transaction_waits_for_rollback(self, in_memory_db):
        """Test a concurrent write is not lost when an open transaction rolls back."""
        await in_memory_db.create_record("tasks", {"id": "x", "name": "Kept"})
        await in_memory_db.create_record("tasks", {"id": "y", "active": True})
        opened = asyncio.Event()

        async def _failing_unit_of_work():
            async with in_memory_db.transaction():
                await in_memory_db.update_record("tasks", "x", {"name": "Changed"})
                opened.set()
                await asyncio.sleep(0)
                raise RuntimeError("boom")

        async def _archive():
            await opened.wait()
            await in_memory_db.update_record("tasks", "y", {"active": False})

        results = await asyncio.gather(_failing_unit_of_work(), _archive(), return_exceptions=True)

        assert isinstance(results[0], RuntimeError)
        assert (await in_memory_db.get_record("tasks", "y"))["active"] is False
        assert (await in_memory_db.get_record("tasks", "x"))["name"] == "Kept"
