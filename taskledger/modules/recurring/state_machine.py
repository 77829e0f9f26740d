"""Lifecycle transitions for recurring tasks (active / paused / stopped / deleted).

Transition planning is pure; the async functions resolve the task, check the
transition, and write only the task's own row. The one exception is delete
"all", which also purges completions for periods after today.
"""

import logging
from datetime import UTC, date, datetime
from typing import Any

from dateutil.relativedelta import relativedelta

from taskledger.core.errors import InvalidArgumentError, InvalidStateError
from taskledger.core.logging import span
from taskledger.domain.create_models import RecurringTaskCreate
from taskledger.domain.recurring_task import CycleCompletion, DeleteOption, RecurringTask, TaskStatus
from taskledger.modules.recurring import recurrence
from taskledger.modules.recurring.repository import TaskRepository


logger = logging.getLogger(__name__)


TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.ACTIVE: {TaskStatus.PAUSED, TaskStatus.STOPPED},
    TaskStatus.PAUSED: {TaskStatus.ACTIVE, TaskStatus.STOPPED},
    TaskStatus.STOPPED: set(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Whether ``current -> target`` is an allowed lifecycle move."""
    return target in TRANSITIONS[current]


def _ensure_transition(task: RecurringTask, target: TaskStatus, action: str) -> None:
    if not can_transition(task.status, target):
        msg = f"Cannot {action}: task {task.id} is {task.status}"
        raise InvalidStateError(msg, task_id=task.id, field="status")


def plan_create(payload: RecurringTaskCreate) -> dict[str, Any]:
    """Record data for a new series: active, first occurrence one period after the start date."""
    data = payload.model_dump()
    data["status"] = TaskStatus.ACTIVE
    data["next_occurrence"] = recurrence.bounded_next_occurrence(
        payload.recurrence_pattern,
        payload.start_date,
        payload.due_date,
    )
    return data


def plan_pause(task: RecurringTask) -> dict[str, Any]:
    """Pause keeps ``next_occurrence`` exactly where it is."""
    _ensure_transition(task, TaskStatus.PAUSED, "pause")
    return {"status": TaskStatus.PAUSED}


def plan_resume(task: RecurringTask, today: date) -> dict[str, Any]:
    """Resume; a frozen occurrence that already elapsed moves forward to the first one not before today."""
    if task.status != TaskStatus.PAUSED:
        msg = f"Cannot resume: task {task.id} is {task.status}, not paused"
        raise InvalidStateError(msg, task_id=task.id, field="status")

    update: dict[str, Any] = {"status": TaskStatus.ACTIVE}
    frozen = task.next_occurrence
    if frozen is not None and frozen < today:
        refreshed: date | None = recurrence.first_occurrence_on_or_after(task.recurrence_pattern, frozen, today)
        if task.due_date is not None and refreshed is not None and refreshed > task.due_date:
            refreshed = None
        update["next_occurrence"] = refreshed
    return update


def plan_stop(task: RecurringTask) -> dict[str, Any]:
    """Stop ends generation for good; the row and its completions stay."""
    _ensure_transition(task, TaskStatus.STOPPED, "stop")
    return {"status": TaskStatus.STOPPED}


def plan_complete_cycle(
    task: RecurringTask,
    *,
    actor_id: str,
    now: datetime,
    arn_number: str | None = None,
    arn_name: str | None = None,
) -> dict[str, Any]:
    """Consume the pending occurrence, record it in the history and schedule the one after it."""
    if task.status != TaskStatus.ACTIVE:
        msg = f"Cannot complete cycle: task {task.id} is {task.status}"
        raise InvalidStateError(msg, task_id=task.id, field="status")
    if task.next_occurrence is None:
        msg = f"Cannot complete cycle: task {task.id} has no pending occurrence"
        raise InvalidStateError(msg, task_id=task.id, field="next_occurrence")

    record = CycleCompletion(
        occurrence=task.next_occurrence,
        completed_by=actor_id,
        completed_at=now.isoformat(),
        arn_number=arn_number,
        arn_name=arn_name,
    )
    return {
        "next_occurrence": recurrence.bounded_next_occurrence(
            task.recurrence_pattern,
            task.next_occurrence,
            task.due_date,
        ),
        "completion_history": [*task.completion_history, record],
    }


def coerce_delete_option(option: DeleteOption | str | None) -> DeleteOption:
    """Deletion never defaults; the caller must choose between "stop" and "all"."""
    if option is None:
        msg = "Delete option is required: choose 'stop' or 'all'"
        raise InvalidArgumentError(msg, field="option")
    try:
        return DeleteOption(option)
    except ValueError as e:
        msg = f"Invalid delete option: {option}. Choose 'stop' or 'all'"
        raise InvalidArgumentError(msg, field="option") from e


async def create(*, tasks: TaskRepository, payload: RecurringTaskCreate) -> RecurringTask:
    """Persist a new active series."""
    with span("recurring_state_machine.create"):
        task = await tasks.create(plan_create(payload))
        logger.info(
            "Created recurring task %s (%s, next occurrence %s)",
            task.id,
            task.recurrence_pattern,
            task.next_occurrence,
        )
        return task


async def pause(*, tasks: TaskRepository, task_id: str) -> RecurringTask:
    """Transition an active task to PAUSED."""
    with span("recurring_state_machine.pause"):
        task = await tasks.get(task_id)
        updated = await tasks.update(task_id, plan_pause(task))
        logger.info("Paused recurring task %s", task_id)
        return updated


async def resume(*, tasks: TaskRepository, task_id: str, today: date) -> RecurringTask:
    """Transition a paused task back to ACTIVE."""
    with span("recurring_state_machine.resume"):
        task = await tasks.get(task_id)
        update = plan_resume(task, today)
        updated = await tasks.update(task_id, update)
        logger.info(
            "Resumed recurring task %s (next occurrence %s)",
            task_id,
            updated.next_occurrence,
        )
        return updated


async def complete_cycle(
    *,
    tasks: TaskRepository,
    task_id: str,
    actor_id: str,
    arn_number: str | None = None,
    arn_name: str | None = None,
    now: datetime | None = None,
) -> RecurringTask:
    """Advance the series past its pending occurrence and record who completed it."""
    with span("recurring_state_machine.complete_cycle"):
        task = await tasks.get(task_id)
        update = plan_complete_cycle(
            task,
            actor_id=actor_id,
            now=now or datetime.now(UTC),
            arn_number=arn_number,
            arn_name=arn_name,
        )
        updated = await tasks.update(task_id, update)
        logger.info(
            "Completed cycle of recurring task %s (next occurrence %s)",
            task_id,
            updated.next_occurrence or "none, series ended",
        )
        return updated


async def delete(
    *,
    tasks: TaskRepository,
    task_id: str,
    option: DeleteOption | str | None,
    today: date,
) -> None:
    """Stop the series or remove it entirely.

    "stop" keeps the task and every completion row; stopping a stopped task is a
    no-op. "all" removes the task and the completion rows of periods after the
    current month in one transaction; earlier history is kept.
    """
    chosen = coerce_delete_option(option)
    with span("recurring_state_machine.delete"):
        task = await tasks.get(task_id)

        if chosen == DeleteOption.STOP:
            if task.status == TaskStatus.STOPPED:
                logger.info("Recurring task %s already stopped", task_id)
                return
            await tasks.update(task_id, plan_stop(task))
            logger.info("Stopped recurring task %s", task_id)
            return

        first_future_period = recurrence.period_key_for(today.replace(day=1) + relativedelta(months=1))
        purged = await tasks.delete_with_completions(task_id, first_future_period)
        logger.info("Deleted recurring task %s (purged %d future completions)", task_id, purged)
