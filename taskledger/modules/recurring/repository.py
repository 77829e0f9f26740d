"""Storage contracts for recurring tasks and their completion ledger.

The service depends only on the two protocols below. The SQLite implementations
go through ``taskledger.core.db_client`` and translate missing rows into
``NotFoundError`` so a concurrent delete surfaces as a lookup failure, not a crash.
"""

import json
import logging
from datetime import date
from typing import Any, Protocol

from pydantic import BaseModel

from taskledger.core import db_client
from taskledger.core.db_client import RecordNotFoundError, sanitize_param
from taskledger.core.errors import NotFoundError
from taskledger.domain.completion import TaskCompletion
from taskledger.domain.recurring_task import RecurringTask


logger = logging.getLogger(__name__)

TASKS_COLLECTION = "recurring_tasks"
COMPLETIONS_COLLECTION = "task_completions"

_JSON_LIST_FIELDS = ("contact_ids", "team_member_mappings", "completion_history")
_LIST_PAGE_SIZE = 500


class TaskRepository(Protocol):
    """Read/write contract for the ``recurring_tasks`` collection."""

    async def get(self, task_id: str) -> RecurringTask: ...

    async def create(self, data: dict[str, Any]) -> RecurringTask: ...

    async def update(self, task_id: str, data: dict[str, Any]) -> RecurringTask: ...

    async def delete_with_completions(self, task_id: str, from_period: str) -> int: ...

    async def list(self, *, filter_query: str = "", sort: str = "", limit: int | None = None) -> list[RecurringTask]: ...


class CompletionRepository(Protocol):
    """Read/write contract for the ``task_completions`` collection."""

    async def list_for_task(self, task_id: str) -> list[TaskCompletion]: ...

    async def list_for_client(self, task_id: str, client_id: str) -> list[TaskCompletion]: ...

    async def upsert_many(self, rows: list[dict[str, Any]]) -> int: ...


def task_from_record(record: dict[str, Any]) -> RecurringTask:
    """Build a RecurringTask from a stored row, decoding JSON list columns."""
    data = dict(record)
    for field in _JSON_LIST_FIELDS:
        value = data.get(field)
        if value is None:
            data[field] = []
        elif isinstance(value, str):
            data[field] = json.loads(value) if value else []
    return RecurringTask.model_validate(data)


def _to_storage(data: dict[str, Any]) -> dict[str, Any]:
    """Serialize nested models and enums to plain values before writing."""
    stored: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, list):
            stored[key] = [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value]
        elif isinstance(value, date):
            stored[key] = value.isoformat()
        else:
            stored[key] = value
    return stored


class SqliteTaskRepository:
    """TaskRepository backed by db_client."""

    async def get(self, task_id: str) -> RecurringTask:
        try:
            record = await db_client.get_record(collection=TASKS_COLLECTION, record_id=task_id)
        except RecordNotFoundError as e:
            msg = f"Recurring task not found: {task_id}"
            raise NotFoundError(msg, task_id=task_id) from e
        return task_from_record(record)

    async def create(self, data: dict[str, Any]) -> RecurringTask:
        record = await db_client.create_record(collection=TASKS_COLLECTION, data=_to_storage(data))
        return task_from_record(record)

    async def update(self, task_id: str, data: dict[str, Any]) -> RecurringTask:
        try:
            record = await db_client.update_record(
                collection=TASKS_COLLECTION,
                record_id=task_id,
                data=_to_storage(data),
            )
        except RecordNotFoundError as e:
            msg = f"Recurring task not found: {task_id}"
            raise NotFoundError(msg, task_id=task_id) from e
        return task_from_record(record)

    async def delete_with_completions(self, task_id: str, from_period: str) -> int:
        """Remove the task and its completions for ``from_period`` onward in one transaction."""
        try:
            purged = await db_client.delete_record_with_dependents(
                collection=TASKS_COLLECTION,
                record_id=task_id,
                dependents={
                    COMPLETIONS_COLLECTION: (
                        f'task_id = "{sanitize_param(task_id)}" && period_key >= "{sanitize_param(from_period)}"'
                    ),
                },
            )
        except RecordNotFoundError as e:
            msg = f"Recurring task not found: {task_id}"
            raise NotFoundError(msg, task_id=task_id) from e
        logger.info("Purged completions", extra={"task_id": task_id, "from_period": from_period, "count": purged})
        return purged

    async def list(self, *, filter_query: str = "", sort: str = "", limit: int | None = None) -> list[RecurringTask]:
        """Matching tasks in ``sort`` order; every page is read when ``limit`` is None."""
        if limit:
            records = await db_client.list_records(
                collection=TASKS_COLLECTION,
                filter_query=filter_query,
                sort=sort,
                per_page=limit,
            )
            return [task_from_record(r) for r in records]

        found: list[RecurringTask] = []
        page = 1
        while True:
            records = await db_client.list_records(
                collection=TASKS_COLLECTION,
                filter_query=filter_query,
                sort=sort,
                page=page,
                per_page=_LIST_PAGE_SIZE,
            )
            found.extend(task_from_record(r) for r in records)
            if len(records) < _LIST_PAGE_SIZE:
                return found
            page += 1


class SqliteCompletionRepository:
    """CompletionRepository backed by db_client."""

    async def _list(self, filter_query: str) -> list[TaskCompletion]:
        rows: list[TaskCompletion] = []
        page = 1
        while True:
            records = await db_client.list_records(
                collection=COMPLETIONS_COLLECTION,
                filter_query=filter_query,
                sort="+period_key",
                page=page,
                per_page=_LIST_PAGE_SIZE,
            )
            rows.extend(TaskCompletion.model_validate(r) for r in records)
            if len(records) < _LIST_PAGE_SIZE:
                return rows
            page += 1

    async def list_for_task(self, task_id: str) -> list[TaskCompletion]:
        return await self._list(f'task_id = "{sanitize_param(task_id)}"')

    async def list_for_client(self, task_id: str, client_id: str) -> list[TaskCompletion]:
        return await self._list(
            f'task_id = "{sanitize_param(task_id)}" && client_id = "{sanitize_param(client_id)}"'
        )

    async def upsert_many(self, rows: list[dict[str, Any]]) -> int:
        """Write every row in one transaction, keyed by (task_id, client_id, period_key)."""
        return await db_client.upsert_records(
            collection=COMPLETIONS_COLLECTION,
            records=rows,
            conflict_fields=["task_id", "client_id", "period_key"],
        )
