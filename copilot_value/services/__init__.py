"""Business logic services for Copilot Value."""

from .adoption import AdoptionService, calculate_adoption_totals
from .duplicates import DuplicateDeliveryGuard
from .metrics import MetricsService, summarize_day
from .seats import SeatsService
from .settings import DEFAULT_SETTINGS, SettingsNotFoundError, SettingsService
from .status import StatusService, auth_info
from .status_manager import StatusManager, get_status_manager, status_manager
from .surveys import (
    InvalidSurveyError,
    SurveyError,
    SurveyNotFoundError,
    SurveyNotModifiedError,
    SurveyService,
)
from .target_calculation import (
    CalculationDataMissingError,
    TargetCalculationError,
    TargetCalculator,
    fetch_and_calculate,
)
from .targets import TargetsService, default_targets
from .teams import MemberNotFoundError, TeamNotFoundError, TeamsError, TeamsService

__all__ = [
    # Adoption and seats
    "AdoptionService",
    "calculate_adoption_totals",
    "SeatsService",
    # Metrics
    "MetricsService",
    "summarize_day",
    # Surveys
    "SurveyService",
    "SurveyError",
    "SurveyNotFoundError",
    "SurveyNotModifiedError",
    "InvalidSurveyError",
    # Teams and members
    "TeamsService",
    "TeamsError",
    "TeamNotFoundError",
    "MemberNotFoundError",
    # Settings and targets
    "DEFAULT_SETTINGS",
    "SettingsService",
    "SettingsNotFoundError",
    "TargetsService",
    "default_targets",
    "TargetCalculator",
    "TargetCalculationError",
    "CalculationDataMissingError",
    "fetch_and_calculate",
    # Status
    "StatusManager",
    "StatusService",
    "auth_info",
    "get_status_manager",
    "status_manager",
    "DuplicateDeliveryGuard",
]
