"""Pytest configuration and fixtures for unit tests."""

from datetime import date

import pytest

from taskledger.domain.create_models import RecurringTaskCreate
from taskledger.modules.recurring.repository import SqliteCompletionRepository, SqliteTaskRepository
from taskledger.modules.recurring.service import RecurringTaskService
from tests.unit.mocks import InMemoryDBClient


@pytest.fixture
def in_memory_db():
    """Provides a fresh InMemoryDBClient for each test."""
    return InMemoryDBClient()


@pytest.fixture
def patched_db(monkeypatch, in_memory_db):
    """Patches taskledger.core.db_client functions to use InMemoryDBClient."""
    monkeypatch.setattr("taskledger.core.db_client.create_record", in_memory_db.create_record)
    monkeypatch.setattr("taskledger.core.db_client.get_record", in_memory_db.get_record)
    monkeypatch.setattr("taskledger.core.db_client.update_record", in_memory_db.update_record)
    monkeypatch.setattr(
        "taskledger.core.db_client.delete_record_with_dependents",
        in_memory_db.delete_record_with_dependents,
    )
    monkeypatch.setattr("taskledger.core.db_client.upsert_records", in_memory_db.upsert_records)
    monkeypatch.setattr("taskledger.core.db_client.list_records", in_memory_db.list_records)

    return in_memory_db


class Clock:
    """Settable stand-in for date.today."""

    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today


@pytest.fixture
def clock():
    """A clock pinned to 15 June 2025 (fiscal year 2025)."""
    return Clock(date(2025, 6, 15))


@pytest.fixture
def task_repo(patched_db):
    return SqliteTaskRepository()


@pytest.fixture
def completion_repo(patched_db):
    return SqliteCompletionRepository()


@pytest.fixture
def service(patched_db, clock):
    """RecurringTaskService over the in-memory database with a pinned clock."""
    return RecurringTaskService(
        tasks=SqliteTaskRepository(),
        completions=SqliteCompletionRepository(),
        clock=clock,
    )


@pytest.fixture
def sample_task_data():
    """Returns sample recurring task data for testing."""
    return {
        "title": "GST Filing",
        "description": "File the GST return for each client",
        "priority": "high",
        "recurrence_pattern": "quarterly",
        "start_date": date(2025, 4, 1),
        "contact_ids": ["c1", "c2", "c3"],
    }


@pytest.fixture
def sample_create(sample_task_data):
    return RecurringTaskCreate(**sample_task_data)
