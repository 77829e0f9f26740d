"""Unit tests for the completion ledger."""

from datetime import UTC, date, datetime

import pytest

from taskledger.core.config import constants
from taskledger.core.errors import BatchWriteError, InvalidArgumentError, InvalidStateError, NotFoundError
from taskledger.domain.completion import CompletionUpdate, TaskCompletion
from taskledger.domain.recurring_task import RecurringTask
from taskledger.modules.recurring import completions
from taskledger.modules.recurring.repository import COMPLETIONS_COLLECTION


def _row(client_id: str, period_key: str, is_completed: bool = True) -> TaskCompletion:
    return TaskCompletion(task_id="1", client_id=client_id, period_key=period_key, is_completed=is_completed)


def _update(client_id: str, period_key: str, is_completed: bool = True, **extra) -> dict:
    return {"client_id": client_id, "period_key": period_key, "is_completed": is_completed, **extra}


@pytest.fixture
async def task(service, sample_create):
    return await service.create(sample_create)


@pytest.mark.unit
class TestLedger:
    """Tests for building and loading the ledger."""

    def test_every_contact_present(self):
        ledger = completions.build_ledger(["c1", "c2"], [_row("c1", "2025-04")])
        assert ledger == {"c1": {"2025-04"}, "c2": set()}

    def test_ignores_uncompleted_and_unknown_clients(self):
        rows = [_row("c1", "2025-04", is_completed=False), _row("gone", "2025-04")]
        assert completions.build_ledger(["c1"], rows) == {"c1": set()}

    async def test_load_completions(self, service, task):
        await service.bulk_save_completions(task.id, [_update("c1", "2025-04")], actor_id="u1")

        ledger = await service.load_completions(task.id)

        assert ledger == {"c1": {"2025-04"}, "c2": set(), "c3": set()}

    async def test_load_completions_unknown_task(self, service):
        with pytest.raises(NotFoundError):
            await service.load_completions("9999")


@pytest.mark.unit
class TestCompletionGrid:
    """Tests for the in-memory grid."""

    def test_toggle_flips_and_reports_pending(self):
        grid = completions.CompletionGrid("1", {"c1": {"2025-04"}, "c2": set()})

        assert grid.toggle("c2", "2025-07") is True
        assert grid.toggle("c1", "2025-04") is False

        pending = grid.pending_updates()
        assert [(u.client_id, u.period_key, u.is_completed) for u in pending] == [
            ("c1", "2025-04", False),
            ("c2", "2025-07", True),
        ]

    def test_toggle_twice_is_clean(self):
        grid = completions.CompletionGrid("1", {"c1": set()})
        grid.toggle("c1", "2025-04")
        grid.toggle("c1", "2025-04")
        assert not grid.is_dirty

    def test_arn_requires_completed_cell(self):
        grid = completions.CompletionGrid("1", {"c1": set()})
        with pytest.raises(InvalidArgumentError):
            grid.set_arn("c1", "2025-04", "ARN-1", "Asha")

        grid.toggle("c1", "2025-04")
        grid.set_arn("c1", "2025-04", "ARN-1", "Asha")
        [update] = grid.pending_updates()
        assert update.arn_number == "ARN-1"

    def test_toggle_rejects_malformed_key(self):
        grid = completions.CompletionGrid("1", {"c1": set()})
        with pytest.raises(InvalidArgumentError):
            grid.toggle("c1", "April")

    def test_mark_saved_resets_baseline(self):
        grid = completions.CompletionGrid("1", {"c1": set()})
        grid.toggle("c1", "2025-04")
        grid.mark_saved()
        assert grid.pending_updates() == []
        assert grid.is_completed("c1", "2025-04")


@pytest.mark.unit
class TestStats:
    """Tests for progress statistics."""

    def test_three_of_four(self):
        stats = completions.compute_stats({"2025-04", "2025-07", "2025-10"}, ["2025-04", "2025-07", "2025-10", "2026-01"])
        assert stats.model_dump() == {"completed": 3, "total": 4, "percentage": 75}

    def test_no_visible_periods(self):
        assert completions.compute_stats({"2025-04"}, []).model_dump() == {"completed": 0, "total": 0, "percentage": 0}

    def test_completions_outside_visible_periods_are_inert(self):
        stats = completions.compute_stats({"2025-05", "2025-06"}, ["2025-04", "2025-07"])
        assert stats.completed == 0

    def test_rounding(self):
        assert completions.compute_stats({"a", "b"}, ["a", "b", "c"]).percentage == 67
        assert completions.compute_stats({"a"}, ["a", "b", "c"]).percentage == 33

    async def test_client_stats(self, service, task):
        updates = [_update("c1", key) for key in ("2025-04", "2025-07", "2025-10")]
        await service.bulk_save_completions(task.id, updates, actor_id="u1")

        stats = await service.client_stats(task.id, "c1")

        assert stats.model_dump() == {"completed": 3, "total": 4, "percentage": 75}

    async def test_task_progress(self, service, task):
        await service.bulk_save_completions(
            task.id,
            [_update("c1", "2025-04"), _update("c2", "2025-04"), _update("c3", "2025-07")],
            actor_id="u1",
        )

        progress = await service.task_progress(task.id)

        assert progress.model_dump() == {"completed": 3, "total": 12, "percentage": 25}

    def test_completion_rate(self):
        task = RecurringTask(id="1", title="T", recurrence_pattern="quarterly", start_date=date(2025, 4, 1))
        rate = completions.completion_rate(task, {"2025-04", "2025-07", "2025-06"}, date(2025, 11, 1))
        assert rate == 67

    def test_completion_rate_before_start(self):
        task = RecurringTask(id="1", title="T", recurrence_pattern="monthly", start_date=date(2025, 4, 1))
        assert completions.completion_rate(task, set(), date(2025, 3, 1)) == 0


@pytest.mark.unit
class TestBulkSave:
    """Tests for bulk_save."""

    async def test_saves_and_stamps_audit_fields(self, task_repo, completion_repo, task):
        now = datetime(2025, 6, 15, 9, 30, tzinfo=UTC)

        result = await completions.bulk_save(
            tasks=task_repo,
            completions=completion_repo,
            task_id=task.id,
            updates=[_update("c1", "2025-04", arn_number="ARN-9", arn_name="Asha"), _update("c2", "2025-04", False)],
            actor_id="u1",
            now=now,
        )

        assert result.model_dump() == {"task_id": task.id, "saved": 2, "completed": 1, "cleared": 1}
        rows = {r.client_id: r for r in await completion_repo.list_for_task(task.id)}
        assert rows["c1"].completed_by == "u1"
        assert rows["c1"].completed_at == now.isoformat()
        assert rows["c1"].arn_number == "ARN-9"
        assert not rows["c2"].is_completed
        assert rows["c2"].completed_by is None

    async def test_resaving_completed_cell_keeps_original_audit(self, task_repo, completion_repo, task):
        first = datetime(2025, 5, 1, tzinfo=UTC)
        for actor, now in (("u1", first), ("u2", datetime(2025, 6, 1, tzinfo=UTC))):
            await completions.bulk_save(
                tasks=task_repo,
                completions=completion_repo,
                task_id=task.id,
                updates=[_update("c1", "2025-04")],
                actor_id=actor,
                now=now,
            )

        [row] = await completion_repo.list_for_task(task.id)
        assert row.completed_by == "u1"
        assert row.completed_at == first.isoformat()

    async def test_uncomplete_keeps_row_and_clears_audit(self, service, completion_repo, task):
        await service.bulk_save_completions(task.id, [_update("c1", "2025-04", arn_number="A1")], actor_id="u1")
        await service.bulk_save_completions(task.id, [_update("c1", "2025-04", False)], actor_id="u1")

        [row] = await completion_repo.list_for_task(task.id)
        assert row.is_completed is False
        assert row.completed_by is None
        assert row.completed_at is None
        assert row.arn_number is None

    async def test_omitted_entries_untouched(self, service, task):
        await service.bulk_save_completions(task.id, [_update("c1", "2025-04"), _update("c2", "2025-04")], actor_id="u1")
        await service.bulk_save_completions(task.id, [_update("c1", "2025-04", False)], actor_id="u1")

        ledger = await service.load_completions(task.id)
        assert ledger["c1"] == set()
        assert ledger["c2"] == {"2025-04"}

    async def test_unknown_client_rejects_whole_batch(self, service, patched_db, task):
        updates = [_update("c1", "2025-04"), _update("ghost", "2025-04"), _update("c2", "2025-07")]

        with pytest.raises(InvalidArgumentError) as exc_info:
            await service.bulk_save_completions(task.id, updates, actor_id="u1")

        assert "ghost" in str(exc_info.value)
        assert exc_info.value.field == "updates"
        assert patched_db.all_records(COMPLETIONS_COLLECTION) == []

    async def test_malformed_entries_reported_together(self, service, task):
        updates = [
            _update("c1", "April"),
            {"client_id": "c1", "period_key": "2025-04"},
            _update("c1", "2025-04", colour="green"),
        ]

        with pytest.raises(InvalidArgumentError) as exc_info:
            await service.bulk_save_completions(task.id, updates, actor_id="u1")

        assert "3 invalid" in str(exc_info.value)

    async def test_conflicting_duplicates_reject(self, service, task):
        updates = [_update("c1", "2025-04", True), _update("c1", "2025-04", False)]
        with pytest.raises(InvalidArgumentError):
            await service.bulk_save_completions(task.id, updates, actor_id="u1")

    async def test_identical_duplicates_collapse(self, service, task):
        result = await service.bulk_save_completions(
            task.id,
            [_update("c1", "2025-04"), CompletionUpdate(client_id="c1", period_key="2025-04", is_completed=True)],
            actor_id="u1",
        )
        assert result.saved == 1

    async def test_too_many_updates(self, service, task):
        updates = [_update("c1", "2025-04")] * (constants.MAX_BULK_COMPLETION_UPDATES + 1)
        with pytest.raises(InvalidArgumentError):
            await service.bulk_save_completions(task.id, updates, actor_id="u1")

    async def test_actor_required(self, service, task):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await service.bulk_save_completions(task.id, [_update("c1", "2025-04")], actor_id="  ")
        assert exc_info.value.field == "actor_id"

    async def test_stopped_task_rejects_completions(self, service, task):
        await service.delete(task.id, "stop")
        with pytest.raises(InvalidStateError):
            await service.bulk_save_completions(task.id, [_update("c1", "2025-04")], actor_id="u1")

    async def test_paused_task_accepts_completions(self, service, task):
        await service.pause(task.id)
        result = await service.bulk_save_completions(task.id, [_update("c1", "2025-04")], actor_id="u1")
        assert result.completed == 1

    async def test_empty_batch_is_a_no_op(self, service, task):
        result = await service.bulk_save_completions(task.id, [], actor_id="u1")
        assert result.saved == 0

    async def test_storage_failure_is_one_aggregate_error(self, service, patched_db, task):
        await service.bulk_save_completions(task.id, [_update("c1", "2025-04")], actor_id="u1")
        patched_db.fail_writes = True

        with pytest.raises(BatchWriteError) as exc_info:
            await service.bulk_save_completions(
                task.id, [_update("c2", "2025-04"), _update("c3", "2025-04")], actor_id="u1"
            )

        assert exc_info.value.attempted == 2
        assert exc_info.value.task_id == task.id
        patched_db.fail_writes = False
        ledger = await service.load_completions(task.id)
        assert ledger == {"c1": {"2025-04"}, "c2": set(), "c3": set()}
