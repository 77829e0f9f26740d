"""HTTP routes for recurring tasks and their completion grid."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Header, Query, Response, status

from taskledger.core.config import constants
from taskledger.domain.completion import BulkSaveResult, CompletionStats
from taskledger.domain.create_models import CycleCompletionCreate, RecurringTaskCreate
from taskledger.domain.period import FiscalPeriod
from taskledger.domain.recurring_task import DeleteOption, Priority, RecurringTask, TaskStatus
from taskledger.domain.update_models import RecurringTaskUpdate
from taskledger.modules.recurring.assignments import is_privileged_role
from taskledger.modules.recurring.service import RecurringTaskService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recurring-tasks", tags=["recurring-tasks"])


def get_service() -> RecurringTaskService:
    """Service backed by the configured SQLite database."""
    return RecurringTaskService()


ServiceDep = Annotated[RecurringTaskService, Depends(get_service)]
UserIdHeader = Annotated[str | None, Header(alias="X-User-Id")]
UserRoleHeader = Annotated[str | None, Header(alias="X-User-Role")]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_recurring_task(
    payload: RecurringTaskCreate,
    service: ServiceDep,
    user_id: UserIdHeader = None,
) -> RecurringTask:
    return await service.create(payload, actor_id=user_id)


@router.get("")
async def list_recurring_tasks(
    service: ServiceDep,
    task_status: Annotated[TaskStatus | None, Query(alias="status")] = None,
    priority: Priority | None = None,
    category_id: str | None = None,
    search: str | None = None,
    limit: Annotated[int, Query(ge=1, le=constants.DEFAULT_PER_PAGE_LIMIT)] = constants.DEFAULT_PER_PAGE_LIMIT,
) -> list[RecurringTask]:
    return await service.list_tasks(
        status=task_status,
        priority=priority,
        category_id=category_id,
        search=search,
        limit=limit,
    )


@router.get("/{task_id}")
async def get_recurring_task(task_id: str, service: ServiceDep) -> RecurringTask:
    return await service.get(task_id)


@router.patch("/{task_id}")
async def update_recurring_task(task_id: str, payload: RecurringTaskUpdate, service: ServiceDep) -> RecurringTask:
    return await service.update(task_id, payload)


@router.patch("/{task_id}/pause")
async def pause_recurring_task(task_id: str, service: ServiceDep) -> RecurringTask:
    return await service.pause(task_id)


@router.patch("/{task_id}/resume")
async def resume_recurring_task(task_id: str, service: ServiceDep) -> RecurringTask:
    return await service.resume(task_id)


@router.post("/{task_id}/complete")
async def complete_recurring_task_cycle(
    task_id: str,
    service: ServiceDep,
    details: Annotated[CycleCompletionCreate | None, Body()] = None,
    user_id: UserIdHeader = None,
) -> RecurringTask:
    """Consume the pending occurrence; the caller and optional ARN go into the completion history."""
    details = details or CycleCompletionCreate()
    return await service.complete_cycle(
        task_id,
        actor_id=user_id,
        arn_number=details.arn_number,
        arn_name=details.arn_name,
    )


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_recurring_task(
    task_id: str,
    service: ServiceDep,
    option: DeleteOption | None = None,
) -> Response:
    """Delete requires ``?option=stop`` or ``?option=all``; there is no default."""
    logger.info("Delete requested", extra={"task_id": task_id, "option": option})
    await service.delete(task_id, option)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{task_id}/periods")
async def get_visible_periods(
    task_id: str,
    service: ServiceDep,
    fiscal_year: Annotated[int | None, Query(ge=1900, le=9999)] = None,
) -> list[FiscalPeriod]:
    return await service.periods_for(task_id, fiscal_year)


@router.get("/{task_id}/completions")
async def get_completions(
    task_id: str,
    service: ServiceDep,
    user_id: UserIdHeader = None,
    user_role: UserRoleHeader = None,
) -> dict[str, Any]:
    """Completed period keys per client, limited to the clients the caller may act on."""
    ledger = await service.load_completions(task_id)
    visible = await service.visible_clients(task_id, user_id, is_privileged_role(user_role))
    return {
        "task_id": task_id,
        "clients": visible,
        "completions": {client_id: sorted(ledger.get(client_id, set())) for client_id in visible},
    }


@router.put("/{task_id}/completions")
async def save_completions(
    task_id: str,
    service: ServiceDep,
    updates: Annotated[list[dict[str, Any]], Body(embed=True)],
    user_id: UserIdHeader = None,
) -> BulkSaveResult:
    """Save a batch of checkbox changes; the whole batch is accepted or rejected."""
    return await service.bulk_save_completions(task_id, updates, actor_id=user_id or "")


@router.get("/{task_id}/stats")
async def get_stats(
    task_id: str,
    service: ServiceDep,
    client_id: str | None = None,
    fiscal_year: Annotated[int | None, Query(ge=1900, le=9999)] = None,
    user_id: UserIdHeader = None,
    user_role: UserRoleHeader = None,
) -> CompletionStats:
    """Progress of one client, or of every client the caller can see."""
    if client_id:
        return await service.client_stats(task_id, client_id, fiscal_year)
    return await service.task_progress(
        task_id,
        viewer_id=user_id,
        viewer_is_privileged=is_privileged_role(user_role),
        fiscal_year=fiscal_year,
    )
