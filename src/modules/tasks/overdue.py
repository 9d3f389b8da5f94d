"""Daily rollover: streak resets, overdue advancement, ephemeral clean-up."""

import logging
from datetime import date, timedelta

from src.core import db_client
from src.core.logging import span
from src.domain.task import OverdueBehavior, Task
from src.models.service_models import RolloverReport
from src.modules.tasks import recurrence, store


logger = logging.getLogger(__name__)


def rolled_over(task: Task, current_date: date, report: RolloverReport) -> Task:
    """Apply the rollover rules to one overdue task and record what changed."""
    update: dict[str, object] = {}

    if task.last_completed != current_date - timedelta(days=1) and task.completion_streak:
        update["completion_streak"] = 0
        report.streaks_reset.append(task.id)

    if task.overdue_behavior == OverdueBehavior.SKIP_TO_NEXT and not task.rule.is_adhoc and task.next_due:
        resolution = recurrence.resolve_after_missed(task.rule, task.next_due, current_date)
        report.conflicts.extend(resolution.conflicts)
        if resolution.due is not None and resolution.due != task.next_due:
            update["next_due"] = resolution.due
            report.advanced[task.id] = resolution.due

    return task.model_copy(update=update)


async def process_overdue(*, current_date: date) -> RolloverReport:
    """Process every active task whose due date has passed.

    POSTPONE tasks keep their due date and stay overdue until completed.
    SKIP_TO_NEXT tasks jump to their next occurrence on or after
    ``current_date``. Either way the streak survives only if the task was
    completed yesterday. Delete-after-completion tasks finished before
    today are removed.

    Args:
        current_date: The new "today"

    Returns:
        RolloverReport listing streak resets, advanced and deleted tasks
    """
    with span("overdue.process_overdue", current_date=current_date.isoformat()):
        report = RolloverReport(current_date=current_date)

        async with db_client.transaction():
            for task in await store.query_overdue(current_date):
                updated = rolled_over(task, current_date, report)
                if updated != task:
                    await store.update(updated)

            for task in await store.query_ephemeral_completed_before(current_date):
                await store.delete(task.id)
                report.deleted.append(task.id)

        logger.info(
            "Processed overdue tasks",
            extra={
                "current_date": current_date.isoformat(),
                "streaks_reset": len(report.streaks_reset),
                "advanced": len(report.advanced),
                "deleted": len(report.deleted),
                "conflicts": len(report.conflicts),
            },
        )
        return report
