"""Task service for saving, archiving, deleting and listing tasks."""

import logging
import uuid
from collections import defaultdict
from datetime import date

from src.core import date_provider, db_client
from src.core.config import constants
from src.core.errors import TaskNotFoundError, TaskValidationError
from src.core.logging import span
from src.domain.create_models import ConsumptionMode, SaveTaskRequest
from src.domain.task import RecurrenceRule, Task
from src.models.service_models import TaskItem
from src.modules.tasks import graph, store


logger = logging.getLogger(__name__)


def validate_request(request: SaveTaskRequest) -> RecurrenceRule:
    """Check a save request and return its normalized recurrence rule.

    Raises:
        TaskValidationError: On the first rule the request breaks
    """
    if not request.name:
        msg = "Task name is required"
        raise TaskValidationError(msg, field="name")
    if len(request.name) > constants.TASK_NAME_MAX_LENGTH:
        msg = f"Task name must be {constants.TASK_NAME_MAX_LENGTH} characters or less"
        raise TaskValidationError(msg, field="name")
    if not request.category:
        msg = "Category is required"
        raise TaskValidationError(msg, field="category")

    rule = request.rule
    if rule.is_adhoc:
        # ADHOC tasks have no interval
        rule = rule.model_copy(update={"interval_qty": 0})
    elif rule.interval_qty < 1:
        msg = "Interval quantity must be at least 1"
        raise TaskValidationError(msg, field="interval_qty")

    seen_supplies: set[str] = set()
    for association in request.inventory_associations:
        if association.consumption_mode == ConsumptionMode.FIXED and (
            association.fixed_quantity is None or association.fixed_quantity <= 0
        ):
            msg = "Fixed consumption mode requires a positive quantity"
            raise TaskValidationError(msg, field="inventory_associations")
        if association.supply_id in seen_supplies:
            msg = f"Supply {association.supply_id} is linked more than once"
            raise TaskValidationError(msg, field="inventory_associations")
        seen_supplies.add(association.supply_id)

    return rule


def _initial_next_due(request: SaveTaskRequest, rule: RecurrenceRule) -> date | None:
    if request.next_due is not None:
        return request.next_due
    if rule.is_adhoc:
        return None
    return date_provider.today()


async def save_task(*, request: SaveTaskRequest) -> Task:
    """Create or update a task with its relationships and supply links.

    Every check, including the relationship cycle check, runs before the
    first write; the writes themselves share one transaction.

    Args:
        request: Full task definition; ``task_id`` None creates a new task

    Returns:
        The saved task with its relationship sets

    Raises:
        TaskValidationError: If the request breaks a task rule or forms a cycle
        TaskNotFoundError: If ``task_id`` names a task that does not exist
        PersistenceError: If the store rejects a write
    """
    with span("task_service.save_task", task_id=request.task_id):
        rule = validate_request(request)
        graph.check_request(request.task_id, request.relationships)

        async with db_client.transaction():
            if request.task_id is None:
                task_id = str(uuid.uuid4())
                existing = None
            else:
                task_id = request.task_id
                existing = await store.get_by_id(task_id)
                if existing is None:
                    raise TaskNotFoundError(task_id)

            graph.validate_relationships(task_id, request.relationships, await graph.load_relationship_graph())

            fields = {
                "name": request.name,
                "category": request.category,
                "tags": request.tags,
                "description": request.description,
                "rule": rule,
                "overdue_behavior": request.overdue_behavior,
                "delete_after_completion": request.delete_after_completion,
                "time_estimate": request.time_estimate,
                "difficulty": request.difficulty,
                "child_order": request.child_order,
                "inherit_parent_schedule": request.inherit_parent_schedule,
                "requires_manual_completion": request.requires_manual_completion,
                "requires_inventory": bool(request.inventory_associations),
            }

            if existing is None:
                task = Task(id=task_id, next_due=_initial_next_due(request, rule), **fields)
                await store.insert(task)
                logger.info("Created task", extra={"task_id": task_id, "task_name": task.name})
            else:
                next_due = request.next_due or existing.next_due
                if next_due is None and not rule.is_adhoc:
                    next_due = date_provider.today()
                await store.update(existing.model_copy(update={**fields, "next_due": next_due}))
                logger.info("Updated task", extra={"task_id": task_id, "task_name": request.name})

            report = await graph.reconcile_relationships(task_id=task_id, request=request.relationships)
            if report.missing_task_ids:
                logger.warning(
                    "Saved task references missing tasks",
                    extra={"task_id": task_id, "missing": report.missing_task_ids},
                )

            await store.replace_inventory_links(task_id, request.inventory_associations)

            saved = await store.get_by_id(task_id)
            if saved is None:
                raise TaskNotFoundError(task_id)
            return saved


async def get_task(*, task_id: str) -> Task:
    """Get a task by ID.

    Raises:
        TaskNotFoundError: If the task does not exist
    """
    with span("task_service.get_task"):
        task = await store.get_by_id(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task


async def list_tasks(*, include_archived: bool = False) -> list[Task]:
    """All tasks ordered by name."""
    with span("task_service.list_tasks"):
        return await store.list_tasks(include_inactive=include_archived)


async def list_tasks_by_next_due() -> list[Task]:
    """Active tasks soonest due first, unscheduled ones last."""
    with span("task_service.list_tasks_by_next_due"):
        return await store.list_by_next_due()


async def search_tasks(*, query: str) -> list[Task]:
    """Active tasks matching ``query`` in name, category or tags."""
    with span("task_service.search_tasks"):
        tasks = await store.search_tasks(query)
        logger.debug("Searched tasks", extra={"query": query, "matches": len(tasks)})
        return tasks


async def list_categories() -> list[str]:
    """Categories in use by active tasks."""
    with span("task_service.list_categories"):
        return await store.list_categories()


async def get_tasks_by_category(*, category: str) -> list[Task]:
    """Active tasks in one category ordered by name."""
    with span("task_service.get_tasks_by_category"):
        return await store.list_by_category(category)


async def archive_task(*, task_id: str) -> Task:
    """Soft-delete a task. Its relationships stay in place."""
    with span("task_service.archive_task"):
        task = await store.set_active(task_id, active=False)
        logger.info("Archived task", extra={"task_id": task_id})
        return task


async def restore_task(*, task_id: str) -> Task:
    """Bring an archived task back."""
    with span("task_service.restore_task"):
        task = await store.set_active(task_id, active=True)
        logger.info("Restored task", extra={"task_id": task_id})
        return task


async def delete_task(*, task_id: str) -> None:
    """Hard-delete a task, pruning every relationship and supply link that touches it."""
    with span("task_service.delete_task"):
        await store.delete(task_id)


async def get_tasks_due(*, day: date | None = None) -> list[Task]:
    """Tasks shown in the Today view: due on or before ``day``, or completed on it."""
    with span("task_service.get_tasks_due"):
        return await store.query_due_on_or_before(day or date_provider.today())


def group_due_tasks(tasks: list[Task]) -> dict[str, list[TaskItem]]:
    """Group tasks by category with children nested under their parent.

    A child with several parents in the list goes under the first of them.
    Children whose parents are not in the list are shown on their own.
    """
    position = {task.id: i for i, task in enumerate(tasks)}
    top_level = [t for t in tasks if not any(p in position for p in t.parent_task_ids)]
    top_level_ids = {t.id for t in top_level}

    children: defaultdict[str, list[Task]] = defaultdict(list)
    for task in tasks:
        if task.id in top_level_ids:
            continue
        homes = sorted((p for p in task.parent_task_ids if p in top_level_ids), key=position.__getitem__)
        if homes:
            children[homes[0]].append(task)
        else:
            # Nested deeper than one level; show it standalone
            top_level.append(task)

    grouped: defaultdict[str, list[TaskItem]] = defaultdict(list)
    for task in sorted(top_level, key=position.__getitem__):
        nested = sorted(children[task.id], key=lambda c: (c.child_order is None, c.child_order or 0, c.name))
        grouped[task.category].append(TaskItem(task=task, children=nested))

    return dict(sorted(grouped.items()))
