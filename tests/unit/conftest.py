"""Pytest configuration and fixtures for unit tests."""

import uuid
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any

import pytest

from src.domain.task import EdgeKind, RecurrenceRule, Task, TaskEdge
from src.modules.tasks import store
from tests.unit.mocks import InMemoryDBClient


@pytest.fixture
def in_memory_db():
    """Provides a fresh InMemoryDBClient for each test."""
    return InMemoryDBClient()


@pytest.fixture
def patched_db(monkeypatch, in_memory_db):
    """Patches src.core.db_client functions to use InMemoryDBClient."""
    monkeypatch.setattr("src.core.db_client.create_record", in_memory_db.create_record)
    monkeypatch.setattr("src.core.db_client.get_record", in_memory_db.get_record)
    monkeypatch.setattr("src.core.db_client.update_record", in_memory_db.update_record)
    monkeypatch.setattr("src.core.db_client.delete_record", in_memory_db.delete_record)
    monkeypatch.setattr("src.core.db_client.list_records", in_memory_db.list_records)
    monkeypatch.setattr("src.core.db_client.list_all_records", in_memory_db.list_all_records)
    monkeypatch.setattr("src.core.db_client.transaction", in_memory_db.transaction)

    return in_memory_db


TaskFactory = Callable[..., Awaitable[Task]]


@pytest.fixture
def make_task(patched_db) -> TaskFactory:
    """Insert a task with sensible defaults and return it.

    Keyword arguments override Task fields; ``rule`` may be passed as a dict.
    """

    async def _make(**overrides: Any) -> Task:
        rule = overrides.pop("rule", RecurrenceRule())
        if isinstance(rule, dict):
            rule = RecurrenceRule(**rule)
        fields: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "name": "Test Task",
            "category": "Home",
            "rule": rule,
            "next_due": date(2025, 11, 3),
            **overrides,
        }
        return await store.insert(Task(**fields))

    return _make


@pytest.fixture
def link(patched_db) -> Callable[[EdgeKind, str, str], Awaitable[None]]:
    """Add a relationship edge directly in the store."""

    async def _link(kind: EdgeKind, source_id: str, target_id: str) -> None:
        await store.add_edge(TaskEdge(kind=kind, source_id=source_id, target_id=target_id))

    return _link
