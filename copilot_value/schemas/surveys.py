"""Survey request/response schemas."""

from datetime import datetime

from pydantic import Field

from .base import ApiBaseModel, SurveyStatus


class SurveyBase(ApiBaseModel):
    """Fields a developer fills in about a pull request."""

    user_id: str | None = None
    org: str | None = None
    repo: str | None = None
    team: str | None = None
    pr_number: int | None = None
    used_copilot: bool | None = None
    percent_time_saved: float | None = Field(default=None, ge=0, le=100)
    reason: str | None = None
    time_used_for: str | None = None
    kudos: int | None = None
    status: SurveyStatus | None = None
    hits: int | None = None


class SurveyCreate(SurveyBase):
    """Payload for creating a survey."""

    user_id: str
    status: SurveyStatus = SurveyStatus.COMPLETED


class SurveyUpdate(SurveyBase):
    """Payload for updating a survey; unset fields are left untouched."""


class SurveyResponse(SurveyBase):
    """A stored survey."""

    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
