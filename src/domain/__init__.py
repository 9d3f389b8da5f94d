"""Domain models and DTOs."""

from src.domain.create_models import ConsumptionMode, InventoryAssociation, RelationshipRequest, SaveTaskRequest
from src.domain.task import (
    CompletionSnapshot,
    DayOfWeek,
    Difficulty,
    EdgeKind,
    IntervalUnit,
    OverdueBehavior,
    RecurrenceRule,
    Task,
    TaskEdge,
)


__all__ = [
    "CompletionSnapshot",
    "ConsumptionMode",
    "DayOfWeek",
    "Difficulty",
    "EdgeKind",
    "IntervalUnit",
    "InventoryAssociation",
    "OverdueBehavior",
    "RecurrenceRule",
    "RelationshipRequest",
    "SaveTaskRequest",
    "Task",
    "TaskEdge",
]
