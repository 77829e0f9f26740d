"""Recurring task service: the single entry point over lifecycle, rules, mappings and completions."""

import logging
from collections.abc import Callable
from datetime import date
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from taskledger.core.config import constants
from taskledger.core.db_client import sanitize_param
from taskledger.core.errors import InvalidArgumentError
from taskledger.core.logging import span
from taskledger.domain.completion import BulkSaveResult, CompletionStats, CompletionUpdate
from taskledger.domain.create_models import RecurringTaskCreate
from taskledger.domain.period import FiscalPeriod
from taskledger.domain.recurring_task import DeleteOption, Priority, RecurringTask, TaskStatus, TeamMemberMapping
from taskledger.domain.update_models import RecurringTaskUpdate
from taskledger.modules.recurring import assignments, completions, recurrence, state_machine
from taskledger.modules.recurring.repository import (
    CompletionRepository,
    SqliteCompletionRepository,
    SqliteTaskRepository,
    TaskRepository,
)


logger = logging.getLogger(__name__)


def _invalid_from_validation(error: ValidationError, task_id: str | None = None) -> InvalidArgumentError:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or None
    message = first["msg"].removeprefix("Value error, ")
    msg = f"{field}: {message}" if field else message
    return InvalidArgumentError(msg, task_id=task_id, field=field)


def _coerce_enum(enum_type: type[StrEnum], value: str, field: str) -> StrEnum:
    try:
        return enum_type(value)
    except ValueError as e:
        msg = f"Invalid {field}: {value}"
        raise InvalidArgumentError(msg, field=field) from e


class RecurringTaskService:
    """Owns recurring task rows and their completion ledger.

    Repositories are injected; by default both are backed by SQLite. ``clock``
    returns today's date and exists so tests can pin the calendar.
    """

    def __init__(
        self,
        *,
        tasks: TaskRepository | None = None,
        completions: CompletionRepository | None = None,
        clock: Callable[[], date] | None = None,
    ) -> None:
        self.tasks = tasks or SqliteTaskRepository()
        self.completions = completions or SqliteCompletionRepository()
        self._clock = clock or date.today

    def today(self) -> date:
        return self._clock()

    async def create(
        self,
        payload: RecurringTaskCreate | dict[str, Any],
        *,
        actor_id: str | None = None,
    ) -> RecurringTask:
        """Create an active series with its first occurrence computed.

        Raises:
            InvalidArgumentError: On schema violations or mappings outside the contact list
        """
        with span("recurring_service.create"):
            if not isinstance(payload, RecurringTaskCreate):
                try:
                    payload = RecurringTaskCreate.model_validate(payload)
                except ValidationError as e:
                    raise _invalid_from_validation(e) from e

            mappings = assignments.normalize_mappings(payload.team_member_mappings)
            assignments.validate_mapping(mappings, payload.contact_ids)
            self._warn_on_overlap(None, mappings)

            updates: dict[str, Any] = {"team_member_mappings": mappings}
            if payload.created_by is None and actor_id:
                updates["created_by"] = actor_id
            payload = payload.model_copy(update=updates)

            return await state_machine.create(tasks=self.tasks, payload=payload)

    async def get(self, task_id: str) -> RecurringTask:
        """Get a task by id.

        Raises:
            NotFoundError: If the task does not exist
        """
        with span("recurring_service.get"):
            return await self.tasks.get(task_id)

    async def list_tasks(
        self,
        *,
        status: TaskStatus | str | None = None,
        priority: Priority | str | None = None,
        category_id: str | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[RecurringTask]:
        """List tasks ordered by next occurrence, optionally filtered."""
        with span("recurring_service.list_tasks"):
            filters = []
            if status:
                filters.append(f'status = "{sanitize_param(_coerce_enum(TaskStatus, status, "status"))}"')
            if priority:
                filters.append(f'priority = "{sanitize_param(_coerce_enum(Priority, priority, "priority"))}"')
            if category_id:
                filters.append(f'category_id = "{sanitize_param(category_id)}"')

            # Search runs after the fetch, so a limit can only be pushed down without it
            found = await self.tasks.list(
                filter_query=" && ".join(filters),
                sort="+next_occurrence",
                limit=None if search else limit,
            )

            if search:
                needle = search.strip().lower()
                found = [t for t in found if needle in t.title.lower() or needle in t.description.lower()]
            if limit is not None:
                found = found[:limit]
            return found

    async def update(self, task_id: str, payload: RecurringTaskUpdate | dict[str, Any]) -> RecurringTask:
        """Apply a partial edit.

        ``next_occurrence`` is recomputed from the new start date when an active
        task changes its pattern or start date, and cleared when a tightened due
        date leaves it out of range.

        Raises:
            NotFoundError: If the task does not exist
            InvalidArgumentError: On schema violations, bad date ranges or bad mappings
        """
        with span("recurring_service.update"):
            if not isinstance(payload, RecurringTaskUpdate):
                try:
                    payload = RecurringTaskUpdate.model_validate(payload)
                except ValidationError as e:
                    raise _invalid_from_validation(e, task_id) from e

            changes = payload.changes()
            task = await self.tasks.get(task_id)
            if not changes:
                return task

            for required in ("title", "recurrence_pattern", "start_date"):
                if required in changes and changes[required] is None:
                    msg = f"{required} cannot be cleared"
                    raise InvalidArgumentError(msg, task_id=task_id, field=required)
            if "title" in changes:
                changes["title"] = changes["title"].strip()
                if not changes["title"]:
                    msg = "Title is required"
                    raise InvalidArgumentError(msg, task_id=task_id, field="title")

            start_date = changes.get("start_date", task.start_date)
            due_date = changes.get("due_date", task.due_date)
            pattern = changes.get("recurrence_pattern", task.recurrence_pattern)
            if due_date is not None and due_date <= start_date:
                msg = "End date must be after start date"
                raise InvalidArgumentError(msg, task_id=task_id, field="due_date")

            contact_ids = changes.get("contact_ids", task.contact_ids) or []
            if "team_member_mappings" in changes or "contact_ids" in changes:
                raw_mappings = payload.team_member_mappings
                mappings = assignments.normalize_mappings(
                    raw_mappings if "team_member_mappings" in changes and raw_mappings is not None
                    else task.team_member_mappings
                )
                assignments.validate_mapping(mappings, contact_ids)
                self._warn_on_overlap(task_id, mappings)
                changes["team_member_mappings"] = mappings

            next_occurrence = task.next_occurrence
            if task.status == TaskStatus.ACTIVE and ("recurrence_pattern" in changes or "start_date" in changes):
                next_occurrence = recurrence.bounded_next_occurrence(pattern, start_date, due_date)
            elif next_occurrence is not None and due_date is not None and next_occurrence > due_date:
                next_occurrence = None
            if next_occurrence != task.next_occurrence:
                changes["next_occurrence"] = next_occurrence

            updated = await self.tasks.update(task_id, changes)
            logger.info("Updated recurring task %s (%s)", task_id, ", ".join(sorted(changes)))
            return updated

    async def pause(self, task_id: str) -> RecurringTask:
        return await state_machine.pause(tasks=self.tasks, task_id=task_id)

    async def resume(self, task_id: str) -> RecurringTask:
        return await state_machine.resume(tasks=self.tasks, task_id=task_id, today=self.today())

    async def complete_cycle(
        self,
        task_id: str,
        *,
        actor_id: str | None = None,
        arn_number: str | None = None,
        arn_name: str | None = None,
    ) -> RecurringTask:
        """Consume the pending occurrence and append it to the task's completion history.

        Without a known actor the cycle is recorded as completed by the system user.
        """
        return await state_machine.complete_cycle(
            tasks=self.tasks,
            task_id=task_id,
            actor_id=(actor_id or "").strip() or constants.SYSTEM_ACTOR_ID,
            arn_number=arn_number,
            arn_name=arn_name,
        )

    async def delete(self, task_id: str, option: DeleteOption | str | None) -> None:
        """Delete with an explicit option: "stop" keeps everything, "all" removes the task and future completions."""
        await state_machine.delete(
            tasks=self.tasks,
            task_id=task_id,
            option=option,
            today=self.today(),
        )

    async def visible_clients(self, task_id: str, viewer_id: str | None, viewer_is_privileged: bool) -> list[str]:
        """Clients the viewer may act on, in task order."""
        with span("recurring_service.visible_clients"):
            task = await self.tasks.get(task_id)
            return assignments.ordered_visible_clients(task, viewer_id, viewer_is_privileged)

    async def periods_for(self, task_id: str, fiscal_year: int | None = None) -> list[FiscalPeriod]:
        """Visible periods of the task in a fiscal year (the current one by default)."""
        task = await self.tasks.get(task_id)
        return self._visible_periods(task, fiscal_year)

    def _visible_periods(self, task: RecurringTask, fiscal_year: int | None) -> list[FiscalPeriod]:
        year = fiscal_year if fiscal_year is not None else recurrence.fiscal_year_of(self.today())
        return recurrence.visible_periods(task.recurrence_pattern, recurrence.generate_fiscal_year_periods(year))

    async def load_completions(self, task_id: str) -> dict[str, set[str]]:
        return await completions.load_completions(tasks=self.tasks, completions=self.completions, task_id=task_id)

    async def completion_grid(self, task_id: str) -> completions.CompletionGrid:
        """Editable grid seeded from the stored ledger."""
        return completions.CompletionGrid(task_id, await self.load_completions(task_id))

    async def bulk_save_completions(
        self,
        task_id: str,
        updates: list[CompletionUpdate | dict[str, Any]],
        actor_id: str,
    ) -> BulkSaveResult:
        return await completions.bulk_save(
            tasks=self.tasks,
            completions=self.completions,
            task_id=task_id,
            updates=updates,
            actor_id=actor_id,
        )

    async def client_stats(self, task_id: str, client_id: str, fiscal_year: int | None = None) -> CompletionStats:
        """Progress of one client over the task's visible periods."""
        with span("recurring_service.client_stats"):
            task = await self.tasks.get(task_id)
            return await completions.stats(
                completions=self.completions,
                task_id=task_id,
                client_id=client_id,
                visible_periods=self._visible_periods(task, fiscal_year),
            )

    async def task_progress(
        self,
        task_id: str,
        *,
        viewer_id: str | None = None,
        viewer_is_privileged: bool = True,
        fiscal_year: int | None = None,
    ) -> CompletionStats:
        """Aggregate progress over the clients the viewer can see."""
        with span("recurring_service.task_progress"):
            task = await self.tasks.get(task_id)
            ledger = completions.build_ledger(task.contact_ids, await self.completions.list_for_task(task_id))
            client_ids = assignments.ordered_visible_clients(task, viewer_id, viewer_is_privileged)
            return completions.task_progress(ledger, client_ids, self._visible_periods(task, fiscal_year))

    async def completion_rate(self, task_id: str, client_id: str) -> int:
        """Share of the client's elapsed occurrences that were completed."""
        task = await self.tasks.get(task_id)
        rows = await self.completions.list_for_client(task_id, client_id)
        return completions.completion_rate(task, {r.period_key for r in rows if r.is_completed}, self.today())

    def _warn_on_overlap(self, task_id: str | None, mappings: list[TeamMemberMapping]) -> None:
        overlaps = assignments.find_overlapping_clients(mappings)
        if overlaps:
            logger.warning(
                "Clients assigned to more than one team member",
                extra={"task_id": task_id, "clients": sorted(overlaps)},
            )
