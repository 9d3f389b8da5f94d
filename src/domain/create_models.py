"""Pydantic models for creating and editing task records."""

from datetime import date
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from src.domain.task import Difficulty, OverdueBehavior, RecurrenceRule


class ConsumptionMode(StrEnum):
    """How completing a task consumes a linked supply."""

    FIXED = "FIXED"  # Always the same quantity
    PROMPTED = "PROMPTED"  # User enters the quantity on completion
    RECOUNT = "RECOUNT"  # No consumption, user recounts stock


class InventoryAssociation(BaseModel):
    """Link between a task and a supply item owned by the inventory collaborator."""

    supply_id: str = Field(..., description="Supply item ID")
    consumption_mode: ConsumptionMode = Field(..., description="Consumption mode")
    fixed_quantity: int | None = Field(default=None, description="Quantity consumed in FIXED mode")
    prompted_default_value: int | None = Field(default=None, description="Pre-filled value in PROMPTED mode")


class RelationshipRequest(BaseModel):
    """Requested relationship sets for one task, replacing whatever is stored."""

    parent_task_ids: frozenset[str] = Field(default_factory=frozenset, description="Parent task IDs")
    child_task_ids: frozenset[str] = Field(default_factory=frozenset, description="Child task IDs")
    triggered_by_task_ids: frozenset[str] = Field(default_factory=frozenset, description="Trigger source IDs")
    triggers_task_ids: frozenset[str] = Field(default_factory=frozenset, description="Trigger target IDs")


class SaveTaskRequest(BaseModel):
    """Create (``task_id`` is None) or update a task with all of its relationships."""

    task_id: str | None = Field(default=None, description="None to create, existing ID to update")

    # Basic info
    name: str = Field(..., description="Task name")
    category: str = Field(..., description="Category")
    tags: frozenset[str] = Field(default_factory=frozenset, description="Searchable labels")
    description: str = Field(default="", description="Additional context")

    # Schedule
    rule: RecurrenceRule = Field(default_factory=RecurrenceRule, description="Recurrence rule")
    overdue_behavior: OverdueBehavior = Field(default=OverdueBehavior.POSTPONE, description="Overdue policy")
    delete_after_completion: bool = Field(default=False, description="Ephemeral task")
    next_due: date | None = Field(default=None, description="Explicit next due date, overrides the default")
    time_estimate: int | None = Field(default=None, description="Estimated minutes")
    difficulty: Difficulty | None = Field(default=None, description="Difficulty indicator")

    # Relationships
    relationships: RelationshipRequest = Field(default_factory=RelationshipRequest, description="Relationships")
    child_order: int | None = Field(default=None, description="Ordering hint within a parent")
    inherit_parent_schedule: bool = Field(default=False, description="Follow the parent's schedule")
    requires_manual_completion: bool = Field(default=False, description="Parent never auto-completes")

    # Inventory
    inventory_associations: list[InventoryAssociation] = Field(default_factory=list, description="Supply links")

    @field_validator("name", "category", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        """Trim surrounding whitespace from free-text fields."""
        return v.strip()

    @field_validator("tags")
    @classmethod
    def drop_blank_tags(cls, v: frozenset[str]) -> frozenset[str]:
        """Trim tags and drop empty ones."""
        return frozenset(tag.strip() for tag in v if tag.strip())
