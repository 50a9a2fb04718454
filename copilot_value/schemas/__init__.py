"""Copilot Value API Schemas.

Schemas are organized by domain:
- base: Common enums, camelCase base model, errors
- surveys: Survey payloads
- targets: Target values and calculation logs
- setup: GitHub App setup
- status: Component status and health checks
"""

from .base import (
    ActivityPrecision,
    ApiBaseModel,
    ComponentStatus,
    ErrorDetail,
    ErrorResponse,
    SurveyStatus,
)
from .setup import (
    DatabaseSetupRequest,
    ExistingAppRequest,
    ExistingAppResponse,
    SetupStatusResponse,
)
from .status import (
    ComponentStatusInfo,
    HealthCheckResponse,
    HealthCheckResult,
    SeatsHistory,
    StatusHistoryEntry,
    SystemStatus,
)
from .surveys import SurveyBase, SurveyCreate, SurveyResponse, SurveyUpdate
from .targets import CalculatedTargetsResponse, CalculationLogEntry, Target, TargetValuesPayload

__all__ = [
    # Enums
    "ActivityPrecision",
    "ComponentStatus",
    "SurveyStatus",
    # Base
    "ApiBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    # Setup
    "DatabaseSetupRequest",
    "ExistingAppRequest",
    "ExistingAppResponse",
    "SetupStatusResponse",
    # Status
    "ComponentStatusInfo",
    "HealthCheckResponse",
    "HealthCheckResult",
    "SeatsHistory",
    "StatusHistoryEntry",
    "SystemStatus",
    # Surveys
    "SurveyBase",
    "SurveyCreate",
    "SurveyResponse",
    "SurveyUpdate",
    # Targets
    "CalculatedTargetsResponse",
    "CalculationLogEntry",
    "Target",
    "TargetValuesPayload",
]
