"""Status and health schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from .base import ApiBaseModel, ComponentStatus


class StatusHistoryEntry(ApiBaseModel):
    timestamp: datetime
    status: ComponentStatus
    message: str | None = None


class ComponentStatusInfo(ApiBaseModel):
    current_status: ComponentStatus
    last_updated: datetime
    history: list[StatusHistoryEntry]
    message: str | None = None


class HealthCheckResult(BaseModel):
    status: ComponentStatus
    message: str | None = None


class SeatsHistory(ApiBaseModel):
    oldest_created_at: str
    days_since_oldest_created_at: int | None = None


class SystemStatus(ApiBaseModel):
    """Snapshot of every component plus data freshness details."""

    status: dict[str, ComponentStatus]
    component_details: dict[str, ComponentStatusInfo]
    is_ready: bool
    uptime: int
    start_time: datetime
    seats_history: SeatsHistory | None = None
    survey_count: int = 0
    installations: list[dict[str, Any]] | None = None
    github: bool | None = None
    auth: dict[str, Any] | None = None


class HealthCheckResponse(BaseModel):
    success: bool
    results: dict[str, HealthCheckResult]
