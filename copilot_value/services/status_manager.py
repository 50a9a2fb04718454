"""StatusManager: in-memory registry of component health.

Components (database, github app, metrics cron, webhook proxy...) report
their state here. Health check callables can be attached to a component and
are run periodically; a changed result updates the component status.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from ..schemas.base import ComponentStatus

logger = logging.getLogger(__name__)

MAX_HISTORY_LENGTH = 10

# Component names
DATABASE = "database"
DOCUMENT_STORE = "documentStore"
GITHUB_APP = "githubApp"
METRICS_CRON = "metricsCron"
WEBHOOK_PROXY = "webhookProxy"


@dataclass
class HealthCheckResult:
    status: ComponentStatus
    message: str | None = None


HealthCheck = Callable[[], Awaitable[HealthCheckResult]]


@dataclass
class StatusHistoryEntry:
    timestamp: datetime
    status: ComponentStatus
    message: str | None = None


@dataclass
class ComponentStatusInfo:
    current_status: ComponentStatus
    last_updated: datetime
    history: list[StatusHistoryEntry] = field(default_factory=list)
    message: str | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StatusManager:
    """Tracks the status of application components."""

    def __init__(self, max_history_length: int = MAX_HISTORY_LENGTH):
        self._components: dict[str, ComponentStatusInfo] = {}
        self._health_checks: dict[str, HealthCheck] = {}
        self._start_time = _now()
        self._max_history_length = max_history_length
        self._health_task: asyncio.Task | None = None

    def register_component(
        self,
        component_name: str,
        initial_status: ComponentStatus = ComponentStatus.STARTING,
        message: str | None = None,
    ) -> None:
        now = _now()
        self._components[component_name] = ComponentStatusInfo(
            current_status=initial_status,
            last_updated=now,
            history=[StatusHistoryEntry(timestamp=now, status=initial_status, message=message)],
            message=message,
        )
        logger.debug(f"Registered component {component_name} with status {initial_status.value}")

    def update_status(
        self,
        component_name: str,
        status: ComponentStatus,
        message: str | None = None,
    ) -> None:
        """Set a component status; unknown components are registered."""
        info = self._components.get(component_name)
        if info is None:
            self.register_component(component_name, status, message)
            return

        now = _now()
        info.current_status = status
        info.last_updated = now
        info.message = message
        info.history.append(StatusHistoryEntry(timestamp=now, status=status, message=message))
        if len(info.history) > self._max_history_length:
            info.history = info.history[-self._max_history_length:]

        suffix = f": {message}" if message else ""
        logger.debug(f"Updated component {component_name} status to {status.value}{suffix}")

    def get_status_history(self, component_name: str) -> list[StatusHistoryEntry]:
        info = self._components.get(component_name)
        if info is None:
            return []
        return list(info.history)

    def get_component_status(self, component_name: str) -> ComponentStatusInfo | None:
        return self._components.get(component_name)

    def get_all_component_statuses(self) -> dict[str, ComponentStatus]:
        return {name: info.current_status for name, info in self._components.items()}

    def get_all_component_details(self) -> dict[str, ComponentStatusInfo]:
        return {
            name: replace(info, history=list(info.history))
            for name, info in self._components.items()
        }

    def is_system_healthy(self) -> bool:
        """True unless some component is in error."""
        return all(
            info.current_status != ComponentStatus.ERROR
            for info in self._components.values()
        )

    def is_system_ready(self) -> bool:
        """True when no component is in error or still starting."""
        return all(
            info.current_status not in (ComponentStatus.ERROR, ComponentStatus.STARTING)
            for info in self._components.values()
        )

    def get_uptime(self) -> int:
        """Seconds since the manager was created."""
        return int((_now() - self._start_time).total_seconds())

    def get_start_time(self) -> datetime:
        return self._start_time

    # =========================================================================
    # HEALTH CHECKS
    # =========================================================================

    def monitor_component(self, component_name: str, check: HealthCheck) -> None:
        self._health_checks[component_name] = check
        logger.debug(f"Registered health check for component {component_name}")

    async def _run_check(self, component_name: str, check: HealthCheck) -> HealthCheckResult:
        try:
            result = await check()
        except Exception as e:
            logger.error(f"Health check failed for component {component_name}: {e}")
            message = f"Health check failed: {e}"
            self.update_status(component_name, ComponentStatus.ERROR, message)
            return HealthCheckResult(status=ComponentStatus.ERROR, message=message)

        current = self.get_component_status(component_name)
        if current is None or current.current_status != result.status:
            self.update_status(component_name, result.status, result.message)
        return result

    async def run_health_checks(self) -> dict[str, HealthCheckResult]:
        """Run every registered health check concurrently."""
        names = list(self._health_checks)
        results = await asyncio.gather(
            *(self._run_check(name, self._health_checks[name]) for name in names)
        )
        return dict(zip(names, results))

    def start_health_checks(self, interval_seconds: float = 60) -> asyncio.Task:
        """Schedule run_health_checks every ``interval_seconds`` on the running loop."""
        if self._health_task and not self._health_task.done():
            return self._health_task

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                try:
                    await self.run_health_checks()
                except Exception as e:
                    logger.error(f"Error running scheduled health checks: {e}")

        self._health_task = asyncio.create_task(_loop(), name="health-checks")
        return self._health_task

    async def stop_health_checks(self) -> None:
        if self._health_task is None:
            return
        self._health_task.cancel()
        try:
            await self._health_task
        except asyncio.CancelledError:
            pass
        self._health_task = None


status_manager = StatusManager()


def get_status_manager() -> StatusManager:
    """Dependency returning the process-wide status manager."""
    return status_manager
