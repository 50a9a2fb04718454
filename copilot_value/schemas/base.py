"""Base schemas and common types for the Copilot Value API."""

from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS
# =============================================================================


class ComponentStatus(str, Enum):
    """Lifecycle state of a monitored component."""

    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"
    WARNING = "warning"
    STOPPING = "stopping"
    STOPPED = "stopped"


class SurveyStatus(str, Enum):
    """Status of a Copilot survey."""

    PENDING = "pending"
    COMPLETED = "completed"


class ActivityPrecision(str, Enum):
    """Bucket size used when grouping seat activity."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class ApiBaseModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
        alias_generator=to_camel,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
    request_id: str | None = None
