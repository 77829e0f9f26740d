"""Update models for database operations."""

from datetime import date

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from taskledger.core.config import constants
from taskledger.domain.recurring_task import Priority, RecurrencePattern, TeamMemberMapping, dedupe_ids


class RecurringTaskUpdate(BaseModel):
    """Partial update payload for a recurring task.

    Only fields explicitly provided are applied. Status and next occurrence are
    owned by the lifecycle and cannot be set here.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: str | None = Field(default=None, min_length=1, max_length=constants.TITLE_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=constants.DESCRIPTION_MAX_LENGTH)
    priority: Priority | None = None
    recurrence_pattern: RecurrencePattern | None = None
    start_date: date | None = None
    due_date: date | None = Field(default=None, validation_alias=AliasChoices("due_date", "end_date"))
    contact_ids: list[str] | None = None
    team_id: str | None = None
    team_member_mappings: list[TeamMemberMapping] | None = None
    requires_arn: bool | None = None
    category_id: str | None = None

    @field_validator("contact_ids")
    @classmethod
    def normalize_contact_ids(cls, v: list[str] | None) -> list[str] | None:
        """Treat the contact list as an ordered set."""
        return dedupe_ids(v) if v is not None else None

    def changes(self) -> dict:
        """Return only the fields the caller actually sent."""
        return self.model_dump(include=self.model_fields_set)
