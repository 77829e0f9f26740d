"""Unit tests for module registration and contributed schema."""

import pytest

from taskledger.core import module_registry
from taskledger.modules.recurring import RecurringTasksModule


@pytest.fixture
def empty_registry(monkeypatch):
    monkeypatch.setattr(module_registry._RegistryState, "modules", {})


@pytest.mark.unit
class TestModuleRegistry:
    """Tests for the module registry."""

    def test_register_and_lookup(self, empty_registry):
        module = RecurringTasksModule()
        module_registry.register_module(module)

        assert module_registry.get_module("recurring_tasks") is module
        assert module_registry.get_module("missing") is None
        assert list(module_registry.get_modules()) == ["recurring_tasks"]

    def test_duplicate_registration_fails(self, empty_registry):
        module_registry.register_module(RecurringTasksModule())
        with pytest.raises(ValueError, match="already registered"):
            module_registry.register_module(RecurringTasksModule())

    def test_ensure_registered_is_idempotent(self, empty_registry):
        module_registry.ensure_registered(RecurringTasksModule())
        module_registry.ensure_registered(RecurringTasksModule())
        assert len(module_registry.get_modules()) == 1

    def test_schema_contributions(self, empty_registry):
        module_registry.register_module(RecurringTasksModule())

        schemas = module_registry.get_all_table_schemas()

        assert set(schemas) == {"recurring_tasks", "task_completions"}
        assert "UNIQUE (task_id, client_id, period_key)" in schemas["task_completions"]
        assert all(sql.startswith("CREATE INDEX IF NOT EXISTS") for sql in module_registry.get_all_indexes())

    def test_module_router(self):
        router = RecurringTasksModule().get_router()
        assert router.prefix == "/recurring-tasks"
