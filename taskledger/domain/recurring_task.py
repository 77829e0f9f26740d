"""Recurring task domain models and enums."""

from datetime import date
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Priority(StrEnum):
    """How urgent a recurring task is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RecurrencePattern(StrEnum):
    """How often a recurring task produces an occurrence."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half-yearly"
    YEARLY = "yearly"


class TaskStatus(StrEnum):
    """Recurring task lifecycle state."""

    ACTIVE = "active"
    PAUSED = "paused"  # next_occurrence frozen, can resume
    STOPPED = "stopped"  # terminal for generation, history retained


class DeleteOption(StrEnum):
    """What a delete request should do with the series."""

    STOP = "stop"
    ALL = "all"


def dedupe_ids(values: list[str]) -> list[str]:
    """Drop blank and repeated ids, keeping first-seen order."""
    seen: set[str] = set()
    result = []
    for raw in values:
        value = str(raw).strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


class TeamMemberMapping(BaseModel):
    """Assignment of a subset of the task's clients to one team member."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1, description="Team member user ID")
    user_name: str = Field(default="", description="Display name of the team member")
    client_ids: list[str] = Field(default_factory=list, description="Clients this member is responsible for")

    @field_validator("client_ids")
    @classmethod
    def normalize_client_ids(cls, v: list[str]) -> list[str]:
        """Remove duplicates within a single member's assignment."""
        return dedupe_ids(v)


class CycleCompletion(BaseModel):
    """One consumed occurrence of the series and who completed it."""

    occurrence: date = Field(..., description="Occurrence date that was completed")
    completed_by: str = Field(..., description="User who completed the cycle")
    completed_at: str = Field(..., description="When the cycle was completed (ISO format)")
    arn_number: str | None = Field(default=None, description="ARN reference recorded with the cycle")
    arn_name: str | None = Field(default=None, description="Name of the person who provided the ARN")


class RecurringTask(BaseModel):
    """Recurring task data transfer object.

    One row describes the whole series; occurrences are computed on demand and never stored.
    """

    id: str = Field(..., description="Unique task ID from database")
    created: str | None = Field(default=None, description="Creation timestamp (ISO format)")
    updated: str | None = Field(default=None, description="Last update timestamp (ISO format)")
    title: str = Field(..., description="Task title")
    description: str = Field(default="", description="Detailed task description")
    priority: Priority = Field(default=Priority.MEDIUM, description="Task priority")
    recurrence_pattern: RecurrencePattern = Field(..., description="Series cadence")
    start_date: date = Field(..., description="Date the series begins")
    due_date: date | None = Field(default=None, description="Last date an occurrence may fall on")
    next_occurrence: date | None = Field(default=None, description="Next pending occurrence, None once exhausted")
    status: TaskStatus = Field(default=TaskStatus.ACTIVE, description="Lifecycle state")
    contact_ids: list[str] = Field(default_factory=list, description="Clients in scope for the task")
    team_id: str | None = Field(default=None, description="Owning team, if the task is team-scoped")
    team_member_mappings: list[TeamMemberMapping] = Field(
        default_factory=list,
        description="Authoritative client assignment per team member",
    )
    requires_arn: bool = Field(default=False, description="Whether completions carry an ARN reference")
    category_id: str | None = Field(default=None, description="Category ID")
    created_by: str | None = Field(default=None, description="User ID of the creator")
    completion_history: list[CycleCompletion] = Field(
        default_factory=list,
        description="Completed cycles, oldest first",
    )

    @property
    def is_team_scoped(self) -> bool:
        """Whether client visibility is restricted by team membership."""
        return bool(self.team_id) or bool(self.team_member_mappings)
