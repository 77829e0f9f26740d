"""Unit tests for RecurringTaskService create, read and update paths."""

from datetime import date

import pytest

from taskledger.core.errors import InvalidArgumentError, NotFoundError
from taskledger.domain.recurring_task import Priority, TaskStatus


@pytest.mark.unit
class TestCreate:
    """Tests for RecurringTaskService.create."""

    async def test_create_from_dict(self, service, sample_task_data):
        task = await service.create(sample_task_data, actor_id="u1")

        assert task.id
        assert task.title == "GST Filing"
        assert task.priority == Priority.HIGH
        assert task.contact_ids == ["c1", "c2", "c3"]
        assert task.created_by == "u1"
        assert task.next_occurrence == date(2025, 7, 1)

    async def test_end_date_alias(self, service, sample_task_data):
        data = {**sample_task_data, "end_date": date(2026, 3, 31)}
        task = await service.create(data)
        assert task.due_date == date(2026, 3, 31)

    async def test_end_before_start_rejected(self, service, sample_task_data):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await service.create({**sample_task_data, "due_date": date(2025, 3, 1)})
        assert "End date must be after start date" in str(exc_info.value)

    async def test_unknown_pattern_rejected(self, service, sample_task_data):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await service.create({**sample_task_data, "recurrence_pattern": "weekly"})
        assert exc_info.value.field == "recurrence_pattern"

    async def test_blank_title_rejected(self, service, sample_task_data):
        with pytest.raises(InvalidArgumentError):
            await service.create({**sample_task_data, "title": "   "})

    async def test_unknown_fields_rejected(self, service, sample_task_data):
        with pytest.raises(InvalidArgumentError):
            await service.create({**sample_task_data, "status": "paused"})

    async def test_mapping_outside_contacts_rejected(self, service, sample_task_data):
        data = {
            **sample_task_data,
            "team_member_mappings": [{"user_id": "u1", "user_name": "Asha", "client_ids": ["c1", "c9"]}],
        }
        with pytest.raises(InvalidArgumentError) as exc_info:
            await service.create(data)
        assert exc_info.value.field == "team_member_mappings"
        assert "c9" in str(exc_info.value)
        assert await service.list_tasks() == []

    async def test_mappings_round_trip_merged(self, service, sample_task_data):
        data = {
            **sample_task_data,
            "team_id": "team-a",
            "team_member_mappings": [
                {"user_id": "u1", "client_ids": ["c1"]},
                {"user_id": "u1", "user_name": "Asha", "client_ids": ["c2"]},
            ],
        }
        task = await service.create(data)

        fetched = await service.get(task.id)
        assert len(fetched.team_member_mappings) == 1
        assert fetched.team_member_mappings[0].client_ids == ["c1", "c2"]
        assert fetched.is_team_scoped

    async def test_contact_ids_deduplicated(self, service, sample_task_data):
        task = await service.create({**sample_task_data, "contact_ids": ["c1", "c1", "c2"]})
        assert task.contact_ids == ["c1", "c2"]


@pytest.mark.unit
class TestReadAndList:
    """Tests for get and list_tasks."""

    async def test_get_unknown(self, service):
        with pytest.raises(NotFoundError):
            await service.get("12345")

    async def test_list_filters_and_orders(self, service, sample_task_data):
        monthly = await service.create({**sample_task_data, "title": "Payroll", "recurrence_pattern": "monthly"})
        quarterly = await service.create({**sample_task_data, "priority": "low"})
        yearly = await service.create({**sample_task_data, "title": "Audit", "recurrence_pattern": "yearly"})
        await service.pause(yearly.id)

        assert [t.id for t in await service.list_tasks()] == [monthly.id, quarterly.id, yearly.id]
        assert [t.id for t in await service.list_tasks(status="paused")] == [yearly.id]
        assert [t.id for t in await service.list_tasks(priority=Priority.LOW)] == [quarterly.id]
        assert [t.id for t in await service.list_tasks(search="payroll")] == [monthly.id]
        assert len(await service.list_tasks(limit=2)) == 2

    async def test_list_by_category(self, service, sample_task_data):
        task = await service.create({**sample_task_data, "category_id": "tax"})
        await service.create(sample_task_data)
        assert [t.id for t in await service.list_tasks(category_id="tax")] == [task.id]

    async def test_list_reads_every_page(self, service, sample_task_data, monkeypatch):
        monkeypatch.setattr("taskledger.modules.recurring.repository._LIST_PAGE_SIZE", 2)
        for i in range(4):
            await service.create({**sample_task_data, "title": f"Filing {i}"})
        late = await service.create({**sample_task_data, "title": "Annual Audit"})

        assert len(await service.list_tasks()) == 5
        assert [t.id for t in await service.list_tasks(search="audit")] == [late.id]
        assert len(await service.list_tasks(limit=3)) == 3

    async def test_list_rejects_unknown_status(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.list_tasks(status="archived")

    async def test_periods_for(self, service, sample_task_data):
        task = await service.create(sample_task_data)

        periods = await service.periods_for(task.id)
        assert [p.key for p in periods] == ["2025-04", "2025-07", "2025-10", "2026-01"]

        periods = await service.periods_for(task.id, fiscal_year=2026)
        assert periods[0].label == "Apr 2026"

    async def test_visible_clients(self, service, sample_task_data):
        task = await service.create(
            {
                **sample_task_data,
                "team_id": "team-a",
                "team_member_mappings": [{"user_id": "u1", "client_ids": ["c3", "c1"]}],
            }
        )

        assert await service.visible_clients(task.id, "u1", False) == ["c1", "c3"]
        assert await service.visible_clients(task.id, "boss", True) == ["c1", "c2", "c3"]
        assert await service.visible_clients(task.id, "u2", False) == []


@pytest.mark.unit
class TestUpdate:
    """Tests for RecurringTaskService.update."""

    @pytest.fixture
    async def task(self, service, sample_create):
        return await service.create(sample_create)

    async def test_update_plain_fields(self, service, task):
        updated = await service.update(task.id, {"title": "  GST Filing (monthly)  ", "priority": "urgent"})
        assert updated.title == "GST Filing (monthly)"
        assert updated.priority == Priority.URGENT
        assert updated.next_occurrence == task.next_occurrence

    async def test_pattern_change_recomputes_next_occurrence(self, service, task):
        updated = await service.update(task.id, {"recurrence_pattern": "monthly"})
        assert updated.next_occurrence == date(2025, 5, 1)

    async def test_start_change_recomputes_next_occurrence(self, service, task):
        updated = await service.update(task.id, {"start_date": date(2025, 5, 15)})
        assert updated.next_occurrence == date(2025, 8, 15)

    async def test_paused_task_keeps_frozen_occurrence(self, service, task):
        await service.pause(task.id)
        updated = await service.update(task.id, {"recurrence_pattern": "monthly"})
        assert updated.status == TaskStatus.PAUSED
        assert updated.next_occurrence == task.next_occurrence

    async def test_tightened_due_date_ends_series(self, service, task):
        updated = await service.update(task.id, {"due_date": date(2025, 6, 30)})
        assert updated.next_occurrence is None

    async def test_due_before_start_rejected(self, service, task):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await service.update(task.id, {"end_date": date(2025, 1, 1)})
        assert exc_info.value.field == "due_date"

    async def test_cannot_clear_required_fields(self, service, task):
        with pytest.raises(InvalidArgumentError):
            await service.update(task.id, {"start_date": None})

    async def test_status_not_editable(self, service, task):
        with pytest.raises(InvalidArgumentError):
            await service.update(task.id, {"status": "stopped"})

    async def test_removing_mapped_contact_rejected(self, service, task):
        await service.update(task.id, {"team_member_mappings": [{"user_id": "u1", "client_ids": ["c2"]}]})
        with pytest.raises(InvalidArgumentError):
            await service.update(task.id, {"contact_ids": ["c1", "c3"]})

    async def test_empty_update_returns_task(self, service, task):
        assert (await service.update(task.id, {})).id == task.id

    async def test_update_unknown(self, service):
        with pytest.raises(NotFoundError):
            await service.update("4242", {"title": "x"})
