"""Recurring tasks module."""

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from fastapi import APIRouter


class RecurringTasksModule:
    """Recurring task engine.

    Provides:
    - Fiscal-year recurrence rules (monthly, quarterly, half-yearly, yearly)
    - Lifecycle: active, paused, stopped, deleted
    - Team member client mappings and visibility
    - Per-client completion ledger with progress statistics
    """

    @property
    def name(self) -> str:
        """Module name (unique identifier)."""
        return "recurring_tasks"

    @property
    def description(self) -> str:
        """Module description (human-readable)."""
        return "Recurring tasks with per-client, per-period completion tracking"

    def get_table_schemas(self) -> dict[str, str]:
        """Return table schemas for this module."""
        return {
            "recurring_tasks": """CREATE TABLE IF NOT EXISTS recurring_tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created TEXT NOT NULL DEFAULT (datetime('now')),
        updated TEXT NOT NULL DEFAULT (datetime('now')),
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        priority TEXT NOT NULL DEFAULT 'medium'
            CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
        recurrence_pattern TEXT NOT NULL
            CHECK (recurrence_pattern IN ('monthly', 'quarterly', 'half-yearly', 'yearly')),
        start_date TEXT NOT NULL,
        due_date TEXT,
        next_occurrence TEXT,
        status TEXT NOT NULL DEFAULT 'active'
            CHECK (status IN ('active', 'paused', 'stopped')),
        contact_ids TEXT NOT NULL DEFAULT '[]',
        team_id TEXT,
        team_member_mappings TEXT NOT NULL DEFAULT '[]',
        requires_arn INTEGER NOT NULL DEFAULT 0,
        category_id TEXT,
        created_by TEXT,
        completion_history TEXT NOT NULL DEFAULT '[]'
    )""",
            "task_completions": """CREATE TABLE IF NOT EXISTS task_completions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created TEXT NOT NULL DEFAULT (datetime('now')),
        updated TEXT NOT NULL DEFAULT (datetime('now')),
        task_id TEXT NOT NULL,
        client_id TEXT NOT NULL,
        period_key TEXT NOT NULL,
        is_completed INTEGER NOT NULL DEFAULT 0,
        completed_by TEXT,
        completed_at TEXT,
        arn_number TEXT,
        arn_name TEXT,
        UNIQUE (task_id, client_id, period_key)
    )""",
        }

    def get_indexes(self) -> list[str]:
        """Return indexes for this module's tables."""
        return [
            "CREATE INDEX IF NOT EXISTS idx_recurring_tasks_status ON recurring_tasks (status)",
            "CREATE INDEX IF NOT EXISTS idx_recurring_tasks_next_occurrence ON recurring_tasks (next_occurrence)",
            "CREATE INDEX IF NOT EXISTS idx_recurring_tasks_category_id ON recurring_tasks (category_id)",
            "CREATE INDEX IF NOT EXISTS idx_task_completions_client ON task_completions (task_id, client_id)",
        ]

    def get_router(self) -> "APIRouter":
        """Return the HTTP router for recurring tasks."""
        from taskledger.interface.recurring_router import router

        return router
