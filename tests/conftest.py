"""Pytest configuration and shared fixtures."""

import logging

import logfire
import pytest


logger = logging.getLogger(__name__)


def pytest_configure(config):
    """Keep logfire local during tests."""
    logfire.configure(send_to_logfire=False, console=False)


@pytest.fixture
def sqlite_db_path(tmp_path, monkeypatch):
    """Points settings.sqlite_db_path at a throwaway database file."""
    db_path = tmp_path / "taskledger_test.db"
    monkeypatch.setattr("taskledger.core.config.settings.sqlite_db_path", str(db_path))
    logger.debug("Using temporary database at %s", db_path)
    return db_path
