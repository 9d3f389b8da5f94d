"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, reporting what an
operation changed instead of leaving callers to re-read the store.
"""

from datetime import date
from enum import StrEnum

from pydantic import BaseModel, Field

from src.domain.task import EdgeKind, Task


class ConflictKind(StrEnum):
    """Which bounded search in the recurrence calculation gave up."""

    NO_SPECIFIC_DAY = "NO_SPECIFIC_DAY"
    ALL_DATES_EXCLUDED = "ALL_DATES_EXCLUDED"


class SchedulingConflict(BaseModel):
    """A recurrence rule could not be honoured and a fallback date was used."""

    kind: ConflictKind
    reference_date: date
    fallback_date: date
    detail: str


class ScheduleResolution(BaseModel):
    """Next due date plus any conflicts hit while computing it."""

    due: date | None
    conflicts: list[SchedulingConflict] = Field(default_factory=list)


class ToggleAction(StrEnum):
    """Outcome of a completion toggle."""

    COMPLETED = "COMPLETED"
    UNDONE = "UNDONE"
    NOT_FOUND = "NOT_FOUND"


class CascadeWarning(BaseModel):
    """A cascade branch that was abandoned while the primary toggle stayed committed."""

    task_id: str
    related_task_id: str
    stage: str
    error: str


class ToggleResult(BaseModel):
    """Everything a single toggle_complete call changed."""

    task_id: str
    on_date: date
    action: ToggleAction
    task: Task | None = None
    auto_completed_parent_ids: list[str] = Field(default_factory=list)
    auto_undone_parent_ids: list[str] = Field(default_factory=list)
    activated_task_ids: list[str] = Field(default_factory=list)
    conflicts: list[SchedulingConflict] = Field(default_factory=list)
    warnings: list[CascadeWarning] = Field(default_factory=list)


class EdgeChange(BaseModel):
    """One edge added or removed during relationship reconciliation."""

    kind: EdgeKind
    source_id: str
    target_id: str
    added: bool


class ReconcileReport(BaseModel):
    """Edges changed by a save, plus referenced ids that no longer exist."""

    task_id: str
    changes: list[EdgeChange] = Field(default_factory=list)
    missing_task_ids: list[str] = Field(default_factory=list)


class RolloverReport(BaseModel):
    """What the daily rollover did for one date advance."""

    current_date: date
    streaks_reset: list[str] = Field(default_factory=list)
    advanced: dict[str, date] = Field(default_factory=dict)
    deleted: list[str] = Field(default_factory=list)
    conflicts: list[SchedulingConflict] = Field(default_factory=list)


class TaskItem(BaseModel):
    """A top-level task in the Today view with its nested children."""

    task: Task
    children: list[Task] = Field(default_factory=list)

    @property
    def is_parent(self) -> bool:
        return bool(self.children)
