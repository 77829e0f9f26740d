"""Per-client, per-period completion ledger and progress statistics."""

import logging
from datetime import UTC, date, datetime
from typing import Any

from pydantic import ValidationError

from taskledger.core.config import constants
from taskledger.core.db_client import DatabaseError
from taskledger.core.errors import BatchWriteError, InvalidArgumentError, InvalidStateError
from taskledger.core.logging import log_with_task_context, span
from taskledger.domain.completion import BulkSaveResult, CompletionStats, CompletionUpdate, TaskCompletion
from taskledger.domain.period import FiscalPeriod
from taskledger.domain.recurring_task import RecurringTask, TaskStatus
from taskledger.modules.recurring import recurrence
from taskledger.modules.recurring.repository import CompletionRepository, TaskRepository


logger = logging.getLogger(__name__)

_MAX_REPORTED_PROBLEMS = 5


def build_ledger(contact_ids: list[str], rows: list[TaskCompletion]) -> dict[str, set[str]]:
    """Map every contact to its completed period keys.

    Contacts without rows get an empty set. Rows for clients that are no longer
    contacts are ignored.
    """
    ledger: dict[str, set[str]] = {client_id: set() for client_id in contact_ids}
    for row in rows:
        if row.is_completed and row.client_id in ledger:
            ledger[row.client_id].add(row.period_key)
    return ledger


async def load_completions(
    *,
    tasks: TaskRepository,
    completions: CompletionRepository,
    task_id: str,
) -> dict[str, set[str]]:
    """Load the completion ledger of a task.

    Raises:
        NotFoundError: If the task does not exist
    """
    with span("completion_tracker.load"):
        task = await tasks.get(task_id)
        rows = await completions.list_for_task(task_id)
        return build_ledger(task.contact_ids, rows)


class CompletionGrid:
    """In-memory checkbox grid for one task.

    Toggles are local until ``pending_updates()`` is handed to ``bulk_save``.
    """

    def __init__(self, task_id: str, ledger: dict[str, set[str]]) -> None:
        self.task_id = task_id
        self._saved = {client_id: set(keys) for client_id, keys in ledger.items()}
        self._current = {client_id: set(keys) for client_id, keys in ledger.items()}
        self._arn: dict[tuple[str, str], tuple[str | None, str | None]] = {}

    def is_completed(self, client_id: str, period_key: str) -> bool:
        return period_key in self._current.get(client_id, set())

    def completed_periods(self, client_id: str) -> set[str]:
        return set(self._current.get(client_id, set()))

    def toggle(self, client_id: str, period_key: str) -> bool:
        """Flip one cell and return its new state."""
        recurrence.parse_period_key(period_key)
        keys = self._current.setdefault(client_id, set())
        if period_key in keys:
            keys.discard(period_key)
            self._arn.pop((client_id, period_key), None)
            return False
        keys.add(period_key)
        return True

    def set_arn(self, client_id: str, period_key: str, arn_number: str | None, arn_name: str | None) -> None:
        """Attach an ARN to a completed cell."""
        if not self.is_completed(client_id, period_key):
            msg = f"Cannot record an ARN for {client_id} in {period_key}: the period is not completed"
            raise InvalidArgumentError(msg, task_id=self.task_id, field="arn_number")
        self._arn[(client_id, period_key)] = (arn_number, arn_name)

    @property
    def is_dirty(self) -> bool:
        return bool(self.pending_updates())

    def pending_updates(self) -> list[CompletionUpdate]:
        """Cells that differ from the loaded ledger, plus completed cells with a new ARN."""
        updates = []
        for client_id in sorted(set(self._saved) | set(self._current)):
            before = self._saved.get(client_id, set())
            after = self._current.get(client_id, set())
            for period_key in sorted(before ^ after | {k for (c, k) in self._arn if c == client_id}):
                arn_number, arn_name = self._arn.get((client_id, period_key), (None, None))
                updates.append(
                    CompletionUpdate(
                        client_id=client_id,
                        period_key=period_key,
                        is_completed=period_key in after,
                        arn_number=arn_number,
                        arn_name=arn_name,
                    )
                )
        return updates

    def mark_saved(self) -> None:
        """Adopt the current state as the persisted baseline after a successful save."""
        self._saved = {client_id: set(keys) for client_id, keys in self._current.items()}
        self._arn.clear()


def compute_stats(completed_keys: set[str], visible_keys: list[str]) -> CompletionStats:
    """Progress over the visible periods; completions outside them do not count."""
    total = len(visible_keys)
    completed = sum(1 for key in visible_keys if key in completed_keys)
    percentage = round(100 * completed / total) if total else 0
    return CompletionStats(completed=completed, total=total, percentage=percentage)


def _period_keys(visible_periods: list[FiscalPeriod] | list[str]) -> list[str]:
    return [p if isinstance(p, str) else p.key for p in visible_periods]


async def stats(
    *,
    completions: CompletionRepository,
    task_id: str,
    client_id: str,
    visible_periods: list[FiscalPeriod] | list[str],
) -> CompletionStats:
    """Completed / total / percentage for one client of a task."""
    rows = await completions.list_for_client(task_id, client_id)
    completed_keys = {row.period_key for row in rows if row.is_completed}
    return compute_stats(completed_keys, _period_keys(visible_periods))


def task_progress(
    ledger: dict[str, set[str]],
    client_ids: list[str],
    visible_periods: list[FiscalPeriod] | list[str],
) -> CompletionStats:
    """Aggregate progress over every (client, visible period) cell of the grid."""
    keys = _period_keys(visible_periods)
    total = len(keys) * len(client_ids)
    completed = sum(compute_stats(ledger.get(c, set()), keys).completed for c in client_ids)
    percentage = round(100 * completed / total) if total else 0
    return CompletionStats(completed=completed, total=total, percentage=percentage)


def completion_rate(task: RecurringTask, completed_keys: set[str], today: date) -> int:
    """Percentage of the occurrences elapsed so far that were completed.

    Only completions in periods that hold an occurrence of the series count.
    """
    occurred = recurrence.occurrences_between(task.start_date, min(today, task.due_date or today), task.recurrence_pattern)
    if not occurred:
        return 0
    occurred_keys = {recurrence.period_key_for(d) for d in occurred}
    return round(100 * len(occurred_keys & completed_keys) / len(occurred_keys))


def _coerce_update(raw: CompletionUpdate | dict[str, Any]) -> CompletionUpdate:
    if isinstance(raw, CompletionUpdate):
        return raw
    return CompletionUpdate.model_validate(raw)


def validate_updates(
    task: RecurringTask,
    updates: list[CompletionUpdate | dict[str, Any]],
) -> list[CompletionUpdate]:
    """Validate a whole batch before anything is written.

    Repeated (client, period) pairs with the same value collapse to the last one;
    pairs with conflicting values reject the batch.

    Raises:
        InvalidArgumentError: One aggregate error describing the malformed entries
    """
    if len(updates) > constants.MAX_BULK_COMPLETION_UPDATES:
        msg = f"Too many completion updates: {len(updates)} (limit {constants.MAX_BULK_COMPLETION_UPDATES})"
        raise InvalidArgumentError(msg, task_id=task.id, field="updates")

    contacts = set(task.contact_ids)
    problems: list[str] = []
    accepted: dict[tuple[str, str], CompletionUpdate] = {}

    for index, raw in enumerate(updates):
        try:
            update = _coerce_update(raw)
        except ValidationError as e:
            problems.append(f"entry {index}: {e.errors()[0]['msg']}")
            continue

        if update.client_id not in contacts:
            problems.append(f"entry {index}: unknown client {update.client_id}")
            continue

        pair = (update.client_id, update.period_key)
        previous = accepted.get(pair)
        if previous is not None and previous.is_completed != update.is_completed:
            problems.append(f"entry {index}: conflicting values for {update.client_id} in {update.period_key}")
            continue
        accepted[pair] = update

    if problems:
        shown = "; ".join(problems[:_MAX_REPORTED_PROBLEMS])
        more = len(problems) - _MAX_REPORTED_PROBLEMS
        if more > 0:
            shown += f"; and {more} more"
        msg = f"Completion batch rejected ({len(problems)} invalid): {shown}"
        raise InvalidArgumentError(msg, task_id=task.id, field="updates")

    return list(accepted.values())


def plan_rows(
    task_id: str,
    updates: list[CompletionUpdate],
    existing: dict[tuple[str, str], TaskCompletion],
    actor_id: str,
    now: datetime,
) -> list[dict[str, Any]]:
    """Rows to upsert for a validated batch.

    Audit fields are stamped only on the transition to completed; re-saving an
    already completed cell keeps its original audit trail. Uncompleting keeps the
    row and clears audit and ARN fields.
    """
    rows = []
    for update in updates:
        current = existing.get((update.client_id, update.period_key))
        row: dict[str, Any] = {
            "task_id": task_id,
            "client_id": update.client_id,
            "period_key": update.period_key,
            "is_completed": update.is_completed,
            "completed_by": None,
            "completed_at": None,
            "arn_number": None,
            "arn_name": None,
        }
        if update.is_completed:
            if current is not None and current.is_completed:
                row["completed_by"] = current.completed_by
                row["completed_at"] = current.completed_at
                row["arn_number"] = update.arn_number or current.arn_number
                row["arn_name"] = update.arn_name or current.arn_name
            else:
                row["completed_by"] = actor_id
                row["completed_at"] = now.isoformat()
                row["arn_number"] = update.arn_number
                row["arn_name"] = update.arn_name
        rows.append(row)
    return rows


async def bulk_save(
    *,
    tasks: TaskRepository,
    completions: CompletionRepository,
    task_id: str,
    updates: list[CompletionUpdate | dict[str, Any]],
    actor_id: str,
    now: datetime | None = None,
) -> BulkSaveResult:
    """Apply a batch of completion changes as one all-or-nothing write.

    Only the (client, period) pairs in ``updates`` are touched.

    Raises:
        NotFoundError: If the task does not exist
        InvalidArgumentError: If any entry is malformed; nothing is written
        InvalidStateError: If the task is stopped
        BatchWriteError: If the storage write fails; nothing is kept
    """
    if not actor_id or not actor_id.strip():
        msg = "actor_id is required to record completions"
        raise InvalidArgumentError(msg, task_id=task_id, field="actor_id")

    with span("completion_tracker.bulk_save"):
        task = await tasks.get(task_id)
        if task.status == TaskStatus.STOPPED:
            msg = f"Cannot record completions: task {task_id} is stopped"
            raise InvalidStateError(msg, task_id=task_id, field="status")

        validated = validate_updates(task, updates)
        if not validated:
            return BulkSaveResult(task_id=task_id, saved=0, completed=0, cleared=0)

        existing = {(row.client_id, row.period_key): row for row in await completions.list_for_task(task_id)}
        rows = plan_rows(task_id, validated, existing, actor_id, now or datetime.now(UTC))

        try:
            saved = await completions.upsert_many(rows)
        except DatabaseError as e:
            logger.error("Bulk completion save failed for task %s: %s", task_id, e)
            msg = f"Failed to save {len(rows)} completion changes for task {task_id}"
            raise BatchWriteError(msg, task_id=task_id, attempted=len(rows)) from e

        completed = sum(1 for row in rows if row["is_completed"])
        log_with_task_context(
            logger,
            "info",
            "Completions saved",
            task_id=task_id,
            actor_id=actor_id,
            saved=saved,
            completed=completed,
        )
        return BulkSaveResult(task_id=task_id, saved=saved, completed=completed, cleared=len(rows) - completed)
