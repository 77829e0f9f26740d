"""Error taxonomy for the recurring-task engine and its user-facing classification."""

from enum import Enum

import aiosqlite
from pydantic import BaseModel

from taskledger.core.config import constants
from taskledger.core.db_client import DatabaseError


class ErrorCategory(Enum):
    """Categories of errors that can occur inside the engine."""

    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    INVALID_STATE = "invalid_state"
    BATCH_WRITE_FAILED = "batch_write_failed"
    STORAGE_ERROR = "storage_error"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Lookup errors
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"

    # Input errors
    ERR_INVALID_ARGUMENT = "ERR_INVALID_ARGUMENT"
    ERR_INVALID_RECURRENCE_PATTERN = "ERR_INVALID_RECURRENCE_PATTERN"
    ERR_INVALID_TEAM_MAPPING = "ERR_INVALID_TEAM_MAPPING"

    # Lifecycle errors
    ERR_INVALID_STATE_TRANSITION = "ERR_INVALID_STATE_TRANSITION"

    # Completion errors
    ERR_BATCH_WRITE_FAILED = "ERR_BATCH_WRITE_FAILED"

    # Storage errors
    ERR_STORAGE = "ERR_STORAGE"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


class EngineError(Exception):
    """Base class for every failure the engine surfaces to its callers.

    Carries the task id and the offending field (when known) so the caller can
    render a precise message.
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, *, task_id: str | None = None, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.task_id = task_id
        self.field = field

    def __str__(self) -> str:
        return self.message


class NotFoundError(EngineError, KeyError):
    """An id does not resolve to a stored record."""

    category = ErrorCategory.NOT_FOUND


class InvalidArgumentError(EngineError, ValueError):
    """Malformed input: schema violation, unknown pattern, bad mapping, bad period key."""

    category = ErrorCategory.INVALID_ARGUMENT


class InvalidStateError(EngineError):
    """A lifecycle transition is not permitted from the task's current status."""

    category = ErrorCategory.INVALID_STATE


class BatchWriteError(EngineError):
    """A bulk completion write failed as a whole; nothing from the batch was kept."""

    category = ErrorCategory.BATCH_WRITE_FAILED

    def __init__(
        self,
        message: str,
        *,
        task_id: str | None = None,
        attempted: int = 0,
    ) -> None:
        super().__init__(message, task_id=task_id)
        self.attempted = attempted


def http_status_for(exception: Exception) -> int:
    """Map an engine exception to the HTTP status the router should answer with."""
    if isinstance(exception, NotFoundError):
        return constants.HTTP_NOT_FOUND
    if isinstance(exception, InvalidArgumentError):
        return constants.HTTP_BAD_REQUEST
    if isinstance(exception, InvalidStateError):
        return constants.HTTP_CONFLICT
    return constants.HTTP_SERVER_ERROR


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised by an engine operation

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, NotFoundError):
        return ErrorResponse(
            code=ErrorCode.ERR_TASK_NOT_FOUND,
            message=f"Recurring task not found: {exception.task_id}" if exception.task_id else str(exception),
            suggestion="Refresh the task list; the task may have been deleted.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InvalidStateError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_STATE_TRANSITION,
            message=str(exception),
            suggestion="Check the task status and try an action that fits it.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InvalidArgumentError):
        if exception.field == "recurrence_pattern":
            return ErrorResponse(
                code=ErrorCode.ERR_INVALID_RECURRENCE_PATTERN,
                message=str(exception),
                suggestion="Use one of: monthly, quarterly, half-yearly, yearly.",
                severity=ErrorSeverity.LOW,
            )
        if exception.field == "team_member_mappings":
            return ErrorResponse(
                code=ErrorCode.ERR_INVALID_TEAM_MAPPING,
                message=str(exception),
                suggestion="Only clients selected on the task can be assigned to team members.",
                severity=ErrorSeverity.LOW,
            )
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_ARGUMENT,
            message=str(exception),
            suggestion="Correct the highlighted field and submit again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, BatchWriteError):
        return ErrorResponse(
            code=ErrorCode.ERR_BATCH_WRITE_FAILED,
            message="None of the completion changes were saved.",
            suggestion="Please try saving again. If the problem persists, contact support.",
            severity=ErrorSeverity.HIGH,
        )

    if isinstance(exception, DatabaseError | aiosqlite.Error):
        return ErrorResponse(
            code=ErrorCode.ERR_STORAGE,
            message="The task store is unavailable.",
            suggestion="Please try again later.",
            severity=ErrorSeverity.CRITICAL,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
