"""Recurrence calculation for task scheduling.

Everything here is a pure function of its arguments: no store access, no
clock. Callers pass the reference date explicitly.
"""

import logging
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from src.core.config import constants
from src.domain.task import DayOfWeek, IntervalUnit, RecurrenceRule
from src.models.service_models import ConflictKind, ScheduleResolution, SchedulingConflict


logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


def advance(day: date, *, unit: IntervalUnit, qty: int) -> date:
    """Move a date forward by ``qty`` units.

    Month arithmetic clamps to the last day of shorter months (Jan 31 + 1 month = Feb 28/29).
    """
    if unit == IntervalUnit.DAY:
        return day + timedelta(days=qty)
    if unit == IntervalUnit.WEEK:
        return day + timedelta(weeks=qty)
    if unit == IntervalUnit.MONTH:
        return day + relativedelta(months=qty)
    msg = f"Cannot advance an {unit} interval"
    raise ValueError(msg)


def is_excluded(day: date, rule: RecurrenceRule) -> bool:
    """Return True if the rule never schedules on this date."""
    return day in rule.excluded_dates or DayOfWeek.of(day) in rule.excluded_days_of_week


def find_specific_day(start: date, days: frozenset[DayOfWeek]) -> date | None:
    """First date on or after ``start`` whose weekday is in ``days``, searching one week."""
    candidate = start
    for _ in range(constants.SPECIFIC_DAY_SEARCH_DAYS):
        if DayOfWeek.of(candidate) in days:
            return candidate
        candidate += ONE_DAY
    return None


def skip_exclusions(start: date, rule: RecurrenceRule) -> date | None:
    """First non-excluded date on or after ``start``, or None if the bound runs out."""
    candidate = start
    for _ in range(constants.EXCLUSION_SEARCH_MAX_DAYS):
        if not is_excluded(candidate, rule):
            return candidate
        candidate += ONE_DAY
    return None


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _next_weekly_slot(reference: date, rule: RecurrenceRule, conflicts: list[SchedulingConflict]) -> date:
    """Next specific weekday after ``reference`` for an every-N-weeks rule.

    Slots later in the reference's own calendar week are taken directly; once
    the search wraps into a following week the remaining N-1 weeks are added.
    """
    fallback = advance(reference, unit=IntervalUnit.WEEK, qty=rule.interval_qty)
    found = find_specific_day(reference + ONE_DAY, rule.specific_days_of_week)
    if found is None:
        conflicts.append(
            SchedulingConflict(
                kind=ConflictKind.NO_SPECIFIC_DAY,
                reference_date=reference,
                fallback_date=fallback,
                detail=f"No weekday in {sorted(rule.specific_days_of_week)} within a week",
            )
        )
        return fallback

    if rule.interval_qty > 1 and _week_start(found) != _week_start(reference):
        found += timedelta(weeks=rule.interval_qty - 1)
    return found


def align(start: date, rule: RecurrenceRule, conflicts: list[SchedulingConflict]) -> date:
    """Snap ``start`` forward onto a specific weekday (if any) and past exclusions.

    Bounded searches that find nothing fall back to their input date and
    record a conflict instead of failing.
    """
    candidate = start
    if rule.specific_days_of_week:
        found = find_specific_day(candidate, rule.specific_days_of_week)
        if found is None:
            conflicts.append(
                SchedulingConflict(
                    kind=ConflictKind.NO_SPECIFIC_DAY,
                    reference_date=start,
                    fallback_date=candidate,
                    detail=f"No weekday in {sorted(rule.specific_days_of_week)} within a week",
                )
            )
        else:
            candidate = found

    return _apply_exclusions(candidate, rule, conflicts)


def _apply_exclusions(candidate: date, rule: RecurrenceRule, conflicts: list[SchedulingConflict]) -> date:
    skipped = skip_exclusions(candidate, rule)
    if skipped is not None:
        return skipped

    conflicts.append(
        SchedulingConflict(
            kind=ConflictKind.ALL_DATES_EXCLUDED,
            reference_date=candidate,
            fallback_date=candidate,
            detail=f"Every date for {constants.EXCLUSION_SEARCH_MAX_DAYS} days is excluded",
        )
    )
    return candidate


def _report(resolution: ScheduleResolution) -> ScheduleResolution:
    for conflict in resolution.conflicts:
        logger.warning(
            "Scheduling conflict, using fallback date",
            extra={
                "conflict": conflict.kind,
                "reference_date": conflict.reference_date.isoformat(),
                "fallback_date": conflict.fallback_date.isoformat(),
            },
        )
    return resolution


def resolve(rule: RecurrenceRule, reference_date: date) -> ScheduleResolution:
    """Compute the next due date after ``reference_date`` and report any fallback taken."""
    if rule.is_adhoc:
        return ScheduleResolution(due=None)

    conflicts: list[SchedulingConflict] = []

    if rule.interval_unit == IntervalUnit.WEEK and rule.specific_days_of_week:
        candidate = _next_weekly_slot(reference_date, rule, conflicts)
        due = _apply_exclusions(candidate, rule, conflicts)
    else:
        candidate = advance(reference_date, unit=rule.interval_unit, qty=rule.interval_qty)
        due = align(candidate, rule, conflicts)

    return _report(ScheduleResolution(due=due, conflicts=conflicts))


def next_due(rule: RecurrenceRule, reference_date: date) -> date | None:
    """Next due date for a task completed on ``reference_date`` (None for ADHOC)."""
    return resolve(rule, reference_date).due


def resolve_after_missed(rule: RecurrenceRule, missed_due: date, current_date: date) -> ScheduleResolution:
    """Next occurrence strictly after a missed due date, never earlier than ``current_date``.

    A result that would still lie in the past is clamped to ``current_date``
    and re-aligned so it keeps honouring specific weekdays and exclusions.
    """
    resolution = resolve(rule, missed_due)
    if resolution.due is None or resolution.due >= current_date:
        return resolution

    conflicts = list(resolution.conflicts)
    due = align(current_date, rule, conflicts)
    return _report(ScheduleResolution(due=due, conflicts=conflicts[len(resolution.conflicts) :]))
