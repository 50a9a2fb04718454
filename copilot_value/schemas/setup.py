"""GitHub App setup schemas."""

from typing import Any

from pydantic import BaseModel

from .base import ApiBaseModel


class ExistingAppRequest(ApiBaseModel):
    """Credentials of a GitHub App that was registered by hand."""

    app_id: str | None = None
    private_key: str | None = None
    webhook_secret: str | None = None


class ExistingAppResponse(ApiBaseModel):
    install_url: str


class DatabaseSetupRequest(BaseModel):
    uri: str | None = None


class SetupStatusResponse(ApiBaseModel):
    is_setup: bool
    db_connected: bool | None = None
    installations: list[dict[str, Any]] | None = None
