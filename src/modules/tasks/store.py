"""Task store: task records and their relationship edges over db_client."""

import json
import logging
import re
from collections.abc import Iterable
from datetime import UTC, date, datetime
from typing import Any

from src.core import db_client
from src.core.config import constants
from src.core.db_client import RecordNotFoundError, sanitize_param
from src.core.errors import TaskNotFoundError
from src.domain.create_models import InventoryAssociation
from src.domain.task import CompletionSnapshot, EdgeKind, RecurrenceRule, Task, TaskEdge


logger = logging.getLogger(__name__)


def _dumps(values: Iterable[Any]) -> str:
    return json.dumps(sorted(str(v) for v in values))


def _loads(raw: Any) -> list[Any]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        return raw
    return json.loads(raw)


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _parse_date(raw: Any) -> date | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


def _parse_snapshot(raw: Any) -> CompletionSnapshot | None:
    if not raw:
        return None
    return CompletionSnapshot.model_validate_json(raw)


def task_to_record(task: Task) -> dict[str, Any]:
    """Flatten a task into a tasks row. Relationship sets live in task_edges and are not written."""
    return {
        "id": task.id,
        "name": task.name,
        "category": task.category,
        "tags": _dumps(task.tags),
        "description": task.description,
        "active": task.active,
        "interval_unit": task.rule.interval_unit,
        "interval_qty": task.rule.interval_qty,
        "specific_days_of_week": _dumps(task.rule.specific_days_of_week),
        "excluded_days_of_week": _dumps(task.rule.excluded_days_of_week),
        "excluded_dates": _dumps(d.isoformat() for d in task.rule.excluded_dates),
        "overdue_behavior": task.overdue_behavior,
        "delete_after_completion": task.delete_after_completion,
        "next_due": _iso(task.next_due),
        "last_completed": _iso(task.last_completed),
        "completion_streak": task.completion_streak,
        "undo_snapshot": task.undo_snapshot.model_dump_json() if task.undo_snapshot else None,
        "time_estimate": task.time_estimate,
        "difficulty": task.difficulty,
        "child_order": task.child_order,
        "inherit_parent_schedule": task.inherit_parent_schedule,
        "requires_manual_completion": task.requires_manual_completion,
        "requires_inventory": task.requires_inventory,
    }


def task_from_record(record: dict[str, Any], edges: Iterable[TaskEdge] = ()) -> Task:
    """Build a Task from a tasks row, deriving relationship sets from the given edges."""
    task_id = str(record["id"])
    parents: set[str] = set()
    children: set[str] = set()
    triggered_by: set[str] = set()
    triggers: set[str] = set()

    for edge in edges:
        if edge.kind == EdgeKind.PARENT:
            if edge.target_id == task_id:
                parents.add(edge.source_id)
            if edge.source_id == task_id:
                children.add(edge.target_id)
        else:
            if edge.target_id == task_id:
                triggered_by.add(edge.source_id)
            if edge.source_id == task_id:
                triggers.add(edge.target_id)

    rule = RecurrenceRule(
        interval_unit=record["interval_unit"],
        interval_qty=record["interval_qty"],
        specific_days_of_week=frozenset(_loads(record.get("specific_days_of_week"))),
        excluded_days_of_week=frozenset(_loads(record.get("excluded_days_of_week"))),
        excluded_dates=frozenset(date.fromisoformat(d) for d in _loads(record.get("excluded_dates"))),
    )

    return Task(
        id=task_id,
        name=record["name"],
        category=record["category"],
        tags=frozenset(_loads(record.get("tags"))),
        description=record.get("description") or "",
        active=bool(record.get("active", True)),
        rule=rule,
        overdue_behavior=record["overdue_behavior"],
        delete_after_completion=bool(record.get("delete_after_completion")),
        next_due=_parse_date(record.get("next_due")),
        last_completed=_parse_date(record.get("last_completed")),
        completion_streak=record.get("completion_streak") or 0,
        undo_snapshot=_parse_snapshot(record.get("undo_snapshot")),
        time_estimate=record.get("time_estimate"),
        difficulty=record.get("difficulty"),
        parent_task_ids=frozenset(parents),
        child_task_ids=frozenset(children),
        child_order=record.get("child_order"),
        inherit_parent_schedule=bool(record.get("inherit_parent_schedule")),
        requires_manual_completion=bool(record.get("requires_manual_completion")),
        triggered_by_task_ids=frozenset(triggered_by),
        triggers_task_ids=frozenset(triggers),
        requires_inventory=bool(record.get("requires_inventory")),
    )


def _edge_from_record(record: dict[str, Any]) -> TaskEdge:
    return TaskEdge(kind=record["kind"], source_id=record["source_id"], target_id=record["target_id"])


async def list_edges(
    *,
    kind: EdgeKind | None = None,
    source_id: str | None = None,
    target_id: str | None = None,
) -> list[TaskEdge]:
    """List edges, optionally narrowed by kind and endpoints."""
    clauses = []
    if kind is not None:
        clauses.append(f'kind = "{kind}"')
    if source_id is not None:
        clauses.append(f'source_id = "{sanitize_param(source_id)}"')
    if target_id is not None:
        clauses.append(f'target_id = "{sanitize_param(target_id)}"')

    records = await db_client.list_all_records(
        collection=constants.EDGES_COLLECTION,
        filter_query=" && ".join(clauses),
    )
    return [_edge_from_record(r) for r in records]


async def _edges_touching(task_id: str) -> list[TaskEdge]:
    safe_id = sanitize_param(task_id)
    records = await db_client.list_all_records(
        collection=constants.EDGES_COLLECTION,
        filter_query=f'(source_id = "{safe_id}" || target_id = "{safe_id}")',
    )
    return [_edge_from_record(r) for r in records]


async def load_graph() -> list[TaskEdge]:
    """Every edge in the store."""
    return await list_edges()


async def _hydrate(records: list[dict[str, Any]]) -> list[Task]:
    if not records:
        return []
    edges = await load_graph()
    return [task_from_record(r, edges) for r in records]


async def get_by_id(task_id: str) -> Task | None:
    """Fetch one task with its relationship sets, or None if it does not exist."""
    try:
        record = await db_client.get_record(collection=constants.TASKS_COLLECTION, record_id=task_id)
    except RecordNotFoundError:
        return None
    return task_from_record(record, await _edges_touching(task_id))


async def get_many(task_ids: Iterable[str], *, active_only: bool = False) -> list[Task]:
    """Fetch several tasks by id, skipping ids that no longer exist (and archived ones if asked)."""
    tasks = []
    for task_id in task_ids:
        task = await get_by_id(task_id)
        if task is None:
            logger.debug("Skipping missing task", extra={"task_id": task_id})
            continue
        if active_only and not task.active:
            continue
        tasks.append(task)
    return tasks


async def list_tasks(*, include_inactive: bool = False) -> list[Task]:
    """Every task, archived ones only on request."""
    filter_query = "" if include_inactive else 'active = "true"'
    records = await db_client.list_all_records(
        collection=constants.TASKS_COLLECTION,
        filter_query=filter_query,
        sort="name",
    )
    return await _hydrate(records)


_FILTER_SYNTAX = re.compile(r"""['"()&|\\]""")


async def search_tasks(query: str) -> list[Task]:
    """Active tasks whose name, category or tags contain ``query``.

    Ordered by category, then name.
    """
    term = _FILTER_SYNTAX.sub("", query).strip()
    filter_query = 'active = "true"'
    if term:
        filter_query += f' && (name ~ "{term}" || category ~ "{term}" || tags ~ "{term}")'
    records = await db_client.list_all_records(collection=constants.TASKS_COLLECTION, filter_query=filter_query)
    tasks = await _hydrate(records)
    return sorted(tasks, key=lambda t: (t.category, t.name))


async def list_categories() -> list[str]:
    """Distinct categories of active tasks, sorted."""
    return sorted({task.category for task in await list_tasks()})


async def list_by_category(category: str) -> list[Task]:
    """Active tasks in ``category`` ordered by name."""
    return [task for task in await list_tasks() if task.category == category]


async def list_by_next_due() -> list[Task]:
    """Active tasks ordered by next_due (unscheduled last), category, then name."""
    tasks = await list_tasks()
    return sorted(tasks, key=lambda t: (t.next_due is None, t.next_due or date.max, t.category, t.name))


async def insert(task: Task) -> Task:
    """Insert a new task row. Relationship sets on ``task`` are ignored."""
    record = await db_client.create_record(collection=constants.TASKS_COLLECTION, data=task_to_record(task))
    return task_from_record(record)


async def update(task: Task) -> Task:
    """Overwrite a task row and return it with fresh relationship sets."""
    data = task_to_record(task)
    data.pop("id")
    data["updated"] = datetime.now(UTC).isoformat()
    try:
        record = await db_client.update_record(collection=constants.TASKS_COLLECTION, record_id=task.id, data=data)
    except RecordNotFoundError as e:
        raise TaskNotFoundError(task.id) from e
    return task_from_record(record, await _edges_touching(task.id))


async def set_active(task_id: str, *, active: bool) -> Task:
    """Archive or restore a task."""
    async with db_client.transaction():
        try:
            await db_client.update_record(
                collection=constants.TASKS_COLLECTION,
                record_id=task_id,
                data={"active": active, "updated": datetime.now(UTC).isoformat()},
            )
        except RecordNotFoundError as e:
            raise TaskNotFoundError(task_id) from e

        task = await get_by_id(task_id)
    if task is None:
        raise TaskNotFoundError(task_id)
    return task


async def delete(task_id: str) -> None:
    """Hard-delete a task together with every edge and supply link touching it."""
    async with db_client.transaction():
        for edge in await _edges_touching(task_id):
            await remove_edge(edge)
        for record in await _supply_records(task_id):
            await db_client.delete_record(collection=constants.TASK_SUPPLIES_COLLECTION, record_id=record["id"])
        try:
            await db_client.delete_record(collection=constants.TASKS_COLLECTION, record_id=task_id)
        except RecordNotFoundError as e:
            raise TaskNotFoundError(task_id) from e

    logger.info("Deleted task", extra={"task_id": task_id})


async def get_children(parent_id: str) -> list[Task]:
    """Active children of a task, ordered by child_order then name."""
    edges = await list_edges(kind=EdgeKind.PARENT, source_id=parent_id)
    children = await get_many((edge.target_id for edge in edges), active_only=True)
    return sorted(children, key=lambda t: (t.child_order is None, t.child_order or 0, t.name))


async def get_tasks_triggered_by(task_id: str) -> list[Task]:
    """Active tasks that completing ``task_id`` activates."""
    edges = await list_edges(kind=EdgeKind.TRIGGER, source_id=task_id)
    return await get_many((edge.target_id for edge in edges), active_only=True)


async def get_tasks_that_trigger(task_id: str) -> list[Task]:
    """Active tasks whose completion activates ``task_id``."""
    edges = await list_edges(kind=EdgeKind.TRIGGER, target_id=task_id)
    return await get_many((edge.source_id for edge in edges), active_only=True)


async def query_overdue(current_date: date) -> list[Task]:
    """Active tasks whose next_due is strictly before ``current_date``."""
    records = await db_client.list_all_records(
        collection=constants.TASKS_COLLECTION,
        filter_query=f'active = "true" && next_due < "{current_date.isoformat()}"',
        sort="next_due",
    )
    return await _hydrate(records)


async def query_due_on_or_before(day: date) -> list[Task]:
    """Active tasks due on or before ``day``, or completed on it.

    Ordered by next_due, category, then name.
    """
    iso = day.isoformat()
    records = await db_client.list_all_records(
        collection=constants.TASKS_COLLECTION,
        filter_query=f'active = "true" && (next_due <= "{iso}" || last_completed = "{iso}")',
    )
    tasks = await _hydrate(records)
    return sorted(tasks, key=lambda t: (t.next_due or date.max, t.category, t.name))


async def query_ephemeral_completed_before(day: date) -> list[Task]:
    """Active delete-after-completion tasks last completed before ``day``."""
    records = await db_client.list_all_records(
        collection=constants.TASKS_COLLECTION,
        filter_query=f'active = "true" && delete_after_completion = "true" && last_completed < "{day.isoformat()}"',
    )
    return await _hydrate(records)


async def add_edge(edge: TaskEdge) -> None:
    """Persist one relationship edge."""
    await db_client.create_record(
        collection=constants.EDGES_COLLECTION,
        data={
            "id": edge.edge_id,
            "kind": edge.kind,
            "source_id": edge.source_id,
            "target_id": edge.target_id,
        },
    )


async def remove_edge(edge: TaskEdge) -> None:
    """Delete one relationship edge."""
    await db_client.delete_record(collection=constants.EDGES_COLLECTION, record_id=edge.edge_id)


async def _supply_records(task_id: str) -> list[dict[str, Any]]:
    return await db_client.list_all_records(
        collection=constants.TASK_SUPPLIES_COLLECTION,
        filter_query=f'task_id = "{sanitize_param(task_id)}"',
    )


async def list_inventory_links(task_id: str) -> list[InventoryAssociation]:
    """Supply links stored for a task."""
    return [
        InventoryAssociation(
            supply_id=r["supply_id"],
            consumption_mode=r["consumption_mode"],
            fixed_quantity=r.get("fixed_quantity"),
            prompted_default_value=r.get("prompted_default_value"),
        )
        for r in await _supply_records(task_id)
    ]


async def replace_inventory_links(task_id: str, associations: list[InventoryAssociation]) -> None:
    """Replace every supply link of a task with ``associations``."""
    async with db_client.transaction():
        for record in await _supply_records(task_id):
            await db_client.delete_record(collection=constants.TASK_SUPPLIES_COLLECTION, record_id=record["id"])
        for association in associations:
            await db_client.create_record(
                collection=constants.TASK_SUPPLIES_COLLECTION,
                data={
                    "id": f"{task_id}:{association.supply_id}",
                    "task_id": task_id,
                    "supply_id": association.supply_id,
                    "consumption_mode": association.consumption_mode,
                    "fixed_quantity": association.fixed_quantity,
                    "prompted_default_value": association.prompted_default_value,
                },
            )
