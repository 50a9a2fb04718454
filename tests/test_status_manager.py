"""Tests for the component status registry and health checks."""

import pytest

from copilot_value.schemas import ComponentStatus
from copilot_value.services.status_manager import HealthCheckResult, StatusManager


@pytest.fixture
def manager() -> StatusManager:
    return StatusManager(max_history_length=3)


class TestComponentStatus:
    """Tests for registering and updating components."""

    def test_register_starts_in_starting(self, manager):
        manager.register_component("database")

        info = manager.get_component_status("database")
        assert info.current_status == ComponentStatus.STARTING
        assert len(info.history) == 1

    def test_update_unknown_component_registers_it(self, manager):
        manager.update_status("webhookProxy", ComponentStatus.RUNNING, "ok")

        assert manager.get_all_component_statuses() == {"webhookProxy": ComponentStatus.RUNNING}
        assert manager.get_component_status("webhookProxy").message == "ok"

    def test_history_is_bounded(self, manager):
        manager.register_component("database")
        for status in (ComponentStatus.RUNNING, ComponentStatus.WARNING, ComponentStatus.ERROR):
            manager.update_status("database", status)

        history = manager.get_status_history("database")
        assert [entry.status for entry in history] == [
            ComponentStatus.RUNNING,
            ComponentStatus.WARNING,
            ComponentStatus.ERROR,
        ]

    def test_history_of_unknown_component_is_empty(self, manager):
        assert manager.get_status_history("nope") == []
        assert manager.get_component_status("nope") is None

    def test_details_are_copies(self, manager):
        manager.register_component("database")

        details = manager.get_all_component_details()
        details["database"].history.clear()

        assert len(manager.get_status_history("database")) == 1


class TestSystemHealth:
    """Tests for the healthy/ready summaries."""

    def test_starting_component_is_healthy_but_not_ready(self, manager):
        manager.register_component("database")

        assert manager.is_system_healthy() is True
        assert manager.is_system_ready() is False

    def test_error_is_neither(self, manager):
        manager.update_status("database", ComponentStatus.ERROR)

        assert manager.is_system_healthy() is False
        assert manager.is_system_ready() is False

    def test_running_and_stopped_are_ready(self, manager):
        manager.update_status("database", ComponentStatus.RUNNING)
        manager.update_status("metricsCron", ComponentStatus.STOPPED)

        assert manager.is_system_ready() is True

    def test_uptime_is_non_negative(self, manager):
        assert manager.get_uptime() >= 0


class TestHealthChecks:
    """Tests for monitored components."""

    async def test_changed_result_updates_status(self, manager):
        manager.register_component("database")

        async def check():
            return HealthCheckResult(status=ComponentStatus.RUNNING, message="Connected")

        manager.monitor_component("database", check)
        results = await manager.run_health_checks()

        assert results["database"].status == ComponentStatus.RUNNING
        assert manager.get_component_status("database").current_status == ComponentStatus.RUNNING

    async def test_unchanged_result_adds_no_history(self, manager):
        manager.update_status("database", ComponentStatus.RUNNING)

        async def check():
            return HealthCheckResult(status=ComponentStatus.RUNNING)

        manager.monitor_component("database", check)
        await manager.run_health_checks()

        assert len(manager.get_status_history("database")) == 1

    async def test_raising_check_marks_error(self, manager):
        async def check():
            raise ConnectionError("refused")

        manager.monitor_component("documentStore", check)
        results = await manager.run_health_checks()

        assert results["documentStore"].status == ComponentStatus.ERROR
        assert "refused" in manager.get_component_status("documentStore").message

    async def test_start_and_stop_background_checks(self, manager):
        task = manager.start_health_checks(interval_seconds=3600)

        assert manager.start_health_checks(interval_seconds=3600) is task
        await manager.stop_health_checks()
        assert task.cancelled()
