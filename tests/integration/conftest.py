"""Pytest configuration and fixtures for integration tests."""

import logging
from datetime import date

import pytest

from taskledger.core import db_client
from taskledger.core.module_registry import ensure_registered
from taskledger.modules.recurring import RecurringTasksModule
from taskledger.modules.recurring.service import RecurringTaskService


logger = logging.getLogger(__name__)


@pytest.fixture
async def sqlite_db(sqlite_db_path):
    """A freshly initialized SQLite database, closed after the test."""
    ensure_registered(RecurringTasksModule())
    await db_client.init_db()
    logger.info("Initialized integration database at %s", sqlite_db_path)
    yield sqlite_db_path
    await db_client.close_connection()


@pytest.fixture
def sqlite_service(sqlite_db):
    """RecurringTaskService over the real SQLite repositories, pinned to 15 June 2025."""
    return RecurringTaskService(clock=lambda: date(2025, 6, 15))
