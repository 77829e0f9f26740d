"""Pydantic models for creating records in database."""

from datetime import date

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from taskledger.core.config import constants
from taskledger.domain.recurring_task import Priority, RecurrencePattern, TeamMemberMapping, dedupe_ids


class RecurringTaskCreate(BaseModel):
    """Pydantic model for creating a recurring task record."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=constants.TITLE_MAX_LENGTH, description="Task title")
    description: str = Field(default="", max_length=constants.DESCRIPTION_MAX_LENGTH)
    priority: Priority = Field(default=Priority.MEDIUM)
    recurrence_pattern: RecurrencePattern
    start_date: date
    due_date: date | None = Field(default=None, validation_alias=AliasChoices("due_date", "end_date"))
    contact_ids: list[str] = Field(default_factory=list)
    team_id: str | None = None
    team_member_mappings: list[TeamMemberMapping] = Field(default_factory=list)
    requires_arn: bool = False
    category_id: str | None = None
    created_by: str | None = None

    @field_validator("title")
    @classmethod
    def validate_title_not_blank(cls, v: str) -> str:
        """Reject titles made only of whitespace."""
        v = v.strip()
        if not v:
            msg = "Title is required"
            raise ValueError(msg)
        return v

    @field_validator("contact_ids")
    @classmethod
    def normalize_contact_ids(cls, v: list[str]) -> list[str]:
        """Treat the contact list as an ordered set."""
        return dedupe_ids(v)

    @model_validator(mode="after")
    def validate_due_after_start(self) -> "RecurringTaskCreate":
        """End date must be after start date."""
        if self.due_date is not None and self.due_date <= self.start_date:
            msg = "End date must be after start date"
            raise ValueError(msg)
        return self


class CycleCompletionCreate(BaseModel):
    """Optional details recorded when a cycle is completed."""

    model_config = ConfigDict(extra="forbid")

    arn_number: str | None = None
    arn_name: str | None = None
