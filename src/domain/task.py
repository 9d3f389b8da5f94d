"""Task domain models and enums."""

from datetime import date
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class IntervalUnit(StrEnum):
    """Unit a recurrence interval is measured in."""

    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    ADHOC = "ADHOC"  # No automatic scheduling, trigger-only


class DayOfWeek(StrEnum):
    """Day of week, ordered to match date.weekday()."""

    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def of(cls, day: date) -> "DayOfWeek":
        """Return the weekday a date falls on."""
        return list(cls)[day.weekday()]


class OverdueBehavior(StrEnum):
    """What happens when the date advances past an uncompleted occurrence."""

    POSTPONE = "POSTPONE"  # Stays due until done
    SKIP_TO_NEXT = "SKIP_TO_NEXT"  # Jumps to the next scheduled occurrence


class Difficulty(StrEnum):
    """Difficulty indicator."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class EdgeKind(StrEnum):
    """Kind of directed relationship between two tasks.

    PARENT edges point from parent to child, TRIGGER edges from the task whose
    completion activates to the task being activated.
    """

    PARENT = "PARENT"
    TRIGGER = "TRIGGER"


class RecurrenceRule(BaseModel):
    """When a task is next due after it has been completed."""

    interval_unit: IntervalUnit = Field(default=IntervalUnit.DAY, description="Interval unit")
    interval_qty: int = Field(default=1, ge=0, description="Units between occurrences (0 for ADHOC)")
    specific_days_of_week: frozenset[DayOfWeek] = Field(
        default_factory=frozenset, description="Weekdays a WEEK recurrence lands on"
    )
    excluded_days_of_week: frozenset[DayOfWeek] = Field(
        default_factory=frozenset, description="Weekdays the task is never scheduled on"
    )
    excluded_dates: frozenset[date] = Field(default_factory=frozenset, description="Dates the task is never scheduled on")

    @property
    def is_adhoc(self) -> bool:
        return self.interval_unit == IntervalUnit.ADHOC


class TaskEdge(BaseModel):
    """A single directed relationship row."""

    model_config = ConfigDict(frozen=True)

    kind: EdgeKind
    source_id: str
    target_id: str

    @property
    def edge_id(self) -> str:
        return f"{self.kind}:{self.source_id}:{self.target_id}"


class CompletionSnapshot(BaseModel):
    """Schedule state from just before a completion, restored by undoing it."""

    model_config = ConfigDict(frozen=True)

    on_date: date
    next_due: date | None = None
    last_completed: date | None = None
    completion_streak: int = Field(default=0, ge=0)


class Task(BaseModel):
    """Task data transfer object.

    Relationship id sets are views generated from the edge table; saving a
    task never writes them directly.
    """

    id: str = Field(..., description="Stable, globally unique task ID (UUID)")
    name: str = Field(..., description="Task name (e.g., 'Clean Kitchen')")
    category: str = Field(..., description="Grouping category shown in the Today view")
    tags: frozenset[str] = Field(default_factory=frozenset, description="Searchable labels")
    description: str = Field(default="", description="Additional context or instructions")
    active: bool = Field(default=True, description="False once archived (soft delete)")

    rule: RecurrenceRule = Field(default_factory=RecurrenceRule, description="Recurrence rule")
    overdue_behavior: OverdueBehavior = Field(default=OverdueBehavior.POSTPONE, description="Overdue policy")
    delete_after_completion: bool = Field(
        default=False, description="Ephemeral task, deleted at the first rollover after completion"
    )

    next_due: date | None = Field(default=None, description="Next scheduled date (None for untriggered ADHOC)")
    last_completed: date | None = Field(default=None, description="Date of the last completion")
    completion_streak: int = Field(default=0, ge=0, description="Consecutive completions without a gap")
    undo_snapshot: CompletionSnapshot | None = Field(
        default=None, description="State to restore if the latest completion is undone the same day"
    )

    time_estimate: int | None = Field(default=None, ge=0, description="Estimated minutes")
    difficulty: Difficulty | None = Field(default=None, description="Difficulty indicator")

    parent_task_ids: frozenset[str] = Field(default_factory=frozenset, description="Parents of this task")
    child_task_ids: frozenset[str] = Field(default_factory=frozenset, description="Children of this task")
    child_order: int | None = Field(default=None, description="Ordering hint within a parent's child list")
    inherit_parent_schedule: bool = Field(default=False, description="Follow the parent's schedule")
    requires_manual_completion: bool = Field(
        default=False, description="Parent must be checked off by hand even when every child is done"
    )
    triggered_by_task_ids: frozenset[str] = Field(default_factory=frozenset, description="Tasks that activate this one")
    triggers_task_ids: frozenset[str] = Field(default_factory=frozenset, description="Tasks this one activates")

    requires_inventory: bool = Field(default=False, description="Completion consumes inventory")

    def is_completed_on(self, day: date) -> bool:
        return self.last_completed == day

    def is_due_on(self, day: date) -> bool:
        """Today-view predicate: overdue or due today, or checked off today."""
        return self.active and ((self.next_due is not None and self.next_due <= day) or self.last_completed == day)
