"""Completion toggling with parent and trigger cascades."""

import logging
from datetime import date, timedelta

from src.core import db_client
from src.core.errors import PersistenceError, TaskNotFoundError
from src.core.logging import log_with_task_context, span
from src.domain.task import CompletionSnapshot, Task
from src.models.service_models import CascadeWarning, ScheduleResolution, ToggleAction, ToggleResult
from src.modules.tasks import recurrence, store


logger = logging.getLogger(__name__)


def completed(task: Task, on_date: date) -> tuple[Task, ScheduleResolution]:
    """Return ``task`` marked complete on ``on_date`` with its next occurrence scheduled.

    The streak continues only when the previous completion was the day before.
    The prior schedule state is kept so an undo on the same day restores it.
    """
    if task.last_completed == on_date - timedelta(days=1):
        streak = task.completion_streak + 1
    else:
        streak = 1

    resolution = recurrence.resolve(task.rule, on_date)
    snapshot = CompletionSnapshot(
        on_date=on_date,
        next_due=task.next_due,
        last_completed=task.last_completed,
        completion_streak=task.completion_streak,
    )
    updated = task.model_copy(
        update={
            "last_completed": on_date,
            "completion_streak": streak,
            "next_due": resolution.due,
            "undo_snapshot": snapshot,
        }
    )
    return updated, resolution


def undone(task: Task, on_date: date) -> Task:
    """Return ``task`` with its completion on ``on_date`` reversed.

    A snapshot taken by the matching completion is restored exactly. Without
    one the task becomes due that day and its streak drops by one.
    """
    snapshot = task.undo_snapshot
    if snapshot is not None and snapshot.on_date == on_date:
        return task.model_copy(
            update={
                "last_completed": snapshot.last_completed,
                "next_due": snapshot.next_due,
                "completion_streak": snapshot.completion_streak,
                "undo_snapshot": None,
            }
        )
    return task.model_copy(
        update={
            "last_completed": None,
            "next_due": on_date,
            "completion_streak": max(0, task.completion_streak - 1),
            "undo_snapshot": None,
        }
    )


async def toggle_complete(*, task_id: str, on_date: date) -> ToggleResult:
    """Complete a task on ``on_date``, or undo it if it was already completed that day.

    The task's own write lands before any parent is re-read. Completing also
    auto-completes parents whose children are now all done, and activates
    trigger targets (one level). Undoing reverses auto-completed parents.

    Args:
        task_id: Task being checked or unchecked
        on_date: The day the toggle applies to (usually today)

    Returns:
        ToggleResult describing every change. NOT_FOUND if the task is gone.

    Raises:
        PersistenceError: If the task's own write fails (nothing is committed)
    """
    with span("completion.toggle_complete", task_id=task_id, on_date=on_date.isoformat()):
        async with db_client.transaction():
            task = await store.get_by_id(task_id)
            if task is None:
                logger.info("Toggle ignored, task not found", extra={"task_id": task_id})
                return ToggleResult(task_id=task_id, on_date=on_date, action=ToggleAction.NOT_FOUND)

            if task.is_completed_on(on_date):
                result = ToggleResult(task_id=task_id, on_date=on_date, action=ToggleAction.UNDONE)
                result.task = await store.update(undone(task, on_date))
                await _undo_parents(result.task, on_date, result)
            else:
                result = ToggleResult(task_id=task_id, on_date=on_date, action=ToggleAction.COMPLETED)
                updated, resolution = completed(task, on_date)
                result.task = await store.update(updated)
                result.conflicts.extend(resolution.conflicts)
                await _complete_parents(result.task, on_date, result, seen={task_id})
                await _activate_triggered(result.task, on_date, result)

        logger.info(
            "Toggled task completion",
            extra={
                "task_id": task_id,
                "on_date": on_date.isoformat(),
                "action": result.action,
                "streak": result.task.completion_streak,
                "auto_completed": result.auto_completed_parent_ids,
                "auto_undone": result.auto_undone_parent_ids,
                "activated": result.activated_task_ids,
            },
        )
        return result


def _warn(result: ToggleResult, *, task_id: str, related_task_id: str, stage: str, error: Exception) -> None:
    result.warnings.append(
        CascadeWarning(task_id=task_id, related_task_id=related_task_id, stage=stage, error=str(error))
    )
    log_with_task_context(
        logger,
        "warning",
        "Cascade branch abandoned",
        task_id=task_id,
        related_task_id=related_task_id,
        stage=stage,
        error=str(error),
    )


async def _complete_parents(child: Task, on_date: date, result: ToggleResult, *, seen: set[str]) -> None:
    for parent_id in sorted(child.parent_task_ids):
        if parent_id in seen:
            continue
        try:
            parent = await store.get_by_id(parent_id)
            if parent is None or not parent.active or parent.requires_manual_completion:
                continue
            if parent.is_completed_on(on_date):
                continue

            children = await store.get_children(parent_id)
            if not all(c.is_completed_on(on_date) for c in children):
                continue

            updated, resolution = completed(parent, on_date)
            parent = await store.update(updated)
        except TaskNotFoundError:
            continue
        except PersistenceError as e:
            _warn(result, task_id=child.id, related_task_id=parent_id, stage="parent_complete", error=e)
            continue

        seen.add(parent_id)
        result.auto_completed_parent_ids.append(parent_id)
        result.conflicts.extend(resolution.conflicts)
        logger.info("Auto-completed parent", extra={"task_id": parent_id, "child_id": child.id})
        await _complete_parents(parent, on_date, result, seen=seen)


async def _undo_parents(child: Task, on_date: date, result: ToggleResult) -> None:
    for parent_id in sorted(child.parent_task_ids):
        if parent_id in result.auto_undone_parent_ids:
            continue
        try:
            parent = await store.get_by_id(parent_id)
            if parent is None or parent.requires_manual_completion or not parent.is_completed_on(on_date):
                continue
            parent = await store.update(undone(parent, on_date))
        except TaskNotFoundError:
            continue
        except PersistenceError as e:
            _warn(result, task_id=child.id, related_task_id=parent_id, stage="parent_undo", error=e)
            continue

        result.auto_undone_parent_ids.append(parent_id)
        logger.info("Auto-undid parent", extra={"task_id": parent_id, "child_id": child.id})
        await _undo_parents(parent, on_date, result)


async def _activate_triggered(task: Task, on_date: date, result: ToggleResult) -> None:
    try:
        targets = await store.get_tasks_triggered_by(task.id)
    except PersistenceError as e:
        _warn(result, task_id=task.id, related_task_id=task.id, stage="trigger_lookup", error=e)
        return

    for target in targets:
        try:
            await store.update(target.model_copy(update={"next_due": on_date}))
        except TaskNotFoundError:
            continue
        except PersistenceError as e:
            _warn(result, task_id=task.id, related_task_id=target.id, stage="trigger_activate", error=e)
            continue
        result.activated_task_ids.append(target.id)
        logger.info("Activated triggered task", extra={"task_id": target.id, "trigger_id": task.id})
