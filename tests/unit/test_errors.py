"""Unit tests for error classification utilities."""

import aiosqlite
import pytest

from taskledger.core.db_client import DatabaseError, RecordNotFoundError
from taskledger.core.errors import (
    BatchWriteError,
    EngineError,
    ErrorCategory,
    ErrorCode,
    ErrorSeverity,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    classify_error_with_response,
    http_status_for,
)


@pytest.mark.unit
class TestHierarchy:
    """Tests for the exception hierarchy."""

    def test_not_found_is_key_error(self):
        exc = NotFoundError("Recurring task not found: 5", task_id="5")
        assert isinstance(exc, KeyError)
        assert isinstance(exc, EngineError)
        assert str(exc) == "Recurring task not found: 5"

    def test_invalid_argument_is_value_error(self):
        exc = InvalidArgumentError("bad", field="title")
        assert isinstance(exc, ValueError)
        assert exc.field == "title"
        assert exc.category == ErrorCategory.INVALID_ARGUMENT

    def test_batch_write_error_carries_size(self):
        exc = BatchWriteError("failed", task_id="3", attempted=12)
        assert exc.attempted == 12
        assert exc.task_id == "3"

    def test_record_not_found_is_database_error(self):
        assert issubclass(RecordNotFoundError, DatabaseError)
        assert issubclass(RecordNotFoundError, KeyError)


@pytest.mark.unit
class TestHttpStatusFor:
    """Tests for http_status_for."""

    @pytest.mark.parametrize(
        ("exc", "status"),
        [
            (NotFoundError("x"), 404),
            (InvalidArgumentError("x"), 400),
            (InvalidStateError("x"), 409),
            (BatchWriteError("x"), 500),
            (RuntimeError("x"), 500),
        ],
    )
    def test_mapping(self, exc, status):
        assert http_status_for(exc) == status


@pytest.mark.unit
class TestClassifyErrorWithResponse:
    """Tests for classify_error_with_response."""

    def test_not_found_names_task(self):
        response = classify_error_with_response(NotFoundError("gone", task_id="42"))
        assert response.code == ErrorCode.ERR_TASK_NOT_FOUND
        assert "42" in response.message
        assert response.severity == ErrorSeverity.LOW

    def test_invalid_state_keeps_explanation(self):
        response = classify_error_with_response(InvalidStateError("Cannot pause: task 1 is stopped"))
        assert response.code == ErrorCode.ERR_INVALID_STATE_TRANSITION
        assert response.message == "Cannot pause: task 1 is stopped"

    def test_recurrence_pattern_field(self):
        response = classify_error_with_response(InvalidArgumentError("weekly", field="recurrence_pattern"))
        assert response.code == ErrorCode.ERR_INVALID_RECURRENCE_PATTERN
        assert "quarterly" in response.suggestion

    def test_team_mapping_field(self):
        response = classify_error_with_response(InvalidArgumentError("c9", field="team_member_mappings"))
        assert response.code == ErrorCode.ERR_INVALID_TEAM_MAPPING

    def test_other_invalid_argument(self):
        response = classify_error_with_response(InvalidArgumentError("Title is required", field="title"))
        assert response.code == ErrorCode.ERR_INVALID_ARGUMENT
        assert response.message == "Title is required"

    def test_batch_write_failure(self):
        response = classify_error_with_response(BatchWriteError("disk full", task_id="1", attempted=3))
        assert response.code == ErrorCode.ERR_BATCH_WRITE_FAILED
        assert response.severity == ErrorSeverity.HIGH
        assert "None of the completion changes were saved" in response.message

    def test_storage_failure(self):
        response = classify_error_with_response(DatabaseError("locked"))
        assert response.code == ErrorCode.ERR_STORAGE
        assert response.severity == ErrorSeverity.CRITICAL

    @pytest.mark.parametrize(
        "exc",
        [
            RecordNotFoundError("gone"),
            aiosqlite.OperationalError("database is locked"),
            aiosqlite.IntegrityError("UNIQUE constraint failed"),
        ],
    )
    def test_storage_failures_by_type(self, exc):
        assert classify_error_with_response(exc).code == ErrorCode.ERR_STORAGE

    def test_unrelated_class_with_storage_name_is_unknown(self):
        class DatabaseError(Exception):  # noqa: N818 - same name as the storage error on purpose
            pass

        assert classify_error_with_response(DatabaseError("x")).code == ErrorCode.ERR_UNKNOWN

    def test_unknown(self):
        response = classify_error_with_response(RuntimeError("boom"))
        assert response.code == ErrorCode.ERR_UNKNOWN
