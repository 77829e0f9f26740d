"""Domain models and DTOs."""

from taskledger.domain.completion import (
    BulkSaveResult,
    CompletionStats,
    CompletionUpdate,
    TaskCompletion,
)
from taskledger.domain.create_models import CycleCompletionCreate, RecurringTaskCreate
from taskledger.domain.period import FiscalPeriod
from taskledger.domain.recurring_task import (
    CycleCompletion,
    DeleteOption,
    Priority,
    RecurrencePattern,
    RecurringTask,
    TaskStatus,
    TeamMemberMapping,
)
from taskledger.domain.update_models import RecurringTaskUpdate


__all__ = [
    "BulkSaveResult",
    "CompletionStats",
    "CompletionUpdate",
    "CycleCompletion",
    "CycleCompletionCreate",
    "DeleteOption",
    "FiscalPeriod",
    "Priority",
    "RecurrencePattern",
    "RecurringTask",
    "RecurringTaskCreate",
    "RecurringTaskUpdate",
    "TaskCompletion",
    "TaskStatus",
    "TeamMemberMapping",
]
