"""Per-client completion ledger models."""

from pydantic import BaseModel, ConfigDict, Field


PERIOD_KEY_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class TaskCompletion(BaseModel):
    """Completion of one recurring task for one client in one period."""

    id: str | None = Field(default=None, description="Row ID from database")
    task_id: str = Field(..., description="Recurring task ID")
    client_id: str = Field(..., description="Client ID")
    period_key: str = Field(..., description="Fiscal period key (YYYY-MM)")
    is_completed: bool = Field(default=False, description="Whether the period is done for this client")
    completed_by: str | None = Field(default=None, description="User who marked it completed")
    completed_at: str | None = Field(default=None, description="When it was marked completed (ISO format)")
    arn_number: str | None = Field(default=None, description="ARN reference recorded with the completion")
    arn_name: str | None = Field(default=None, description="Name of the person who provided the ARN")


class CompletionUpdate(BaseModel):
    """One checkbox change submitted in a bulk save."""

    model_config = ConfigDict(extra="forbid")

    client_id: str = Field(..., min_length=1)
    period_key: str = Field(..., pattern=PERIOD_KEY_PATTERN)
    is_completed: bool
    arn_number: str | None = None
    arn_name: str | None = None


class CompletionStats(BaseModel):
    """Progress of one client across the visible periods."""

    completed: int
    total: int
    percentage: int


class BulkSaveResult(BaseModel):
    """Outcome of an accepted bulk save."""

    task_id: str
    saved: int
    completed: int
    cleared: int
