"""Status service: data freshness and installation details shown on the dashboard."""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pymongo.asynchronous.database import AsyncDatabase

from ..core.mongo import serialize
from .activity import as_utc
from .seats import SeatsService
from .surveys import SurveyService

logger = logging.getLogger(__name__)

AUTH_USER_HEADER = "x-auth-request-user"
AUTH_EMAIL_HEADER = "x-auth-request-email"
AUTH_GROUPS_HEADER = "x-auth-request-groups"


def auth_info(headers: Mapping[str, str]) -> dict[str, Any]:
    """Identity forwarded by an authenticating reverse proxy (oauth2-proxy style headers)."""
    user = headers.get(AUTH_USER_HEADER)
    groups = headers.get(AUTH_GROUPS_HEADER)
    return {
        "user": user,
        "email": headers.get(AUTH_EMAIL_HEADER),
        "authenticated": bool(user),
        "groups": [g.strip() for g in groups.split(",") if g.strip()] if groups else None,
        "headers": list(headers.keys()),
    }


class StatusService:
    """Assembles the ``/status`` payload."""

    def __init__(self, db: AsyncDatabase):
        self.db = db

    async def get_seats_history(self, now: datetime | None = None) -> dict[str, Any]:
        oldest = await SeatsService(self.db).get_oldest_seat()
        if not oldest or not oldest.get("createdAt"):
            return {"oldestCreatedAt": "No data", "daysSinceOldestCreatedAt": None}
        created_at = as_utc(oldest["createdAt"])
        now = now or datetime.now(timezone.utc)
        return {
            "oldestCreatedAt": created_at.isoformat(),
            "daysSinceOldestCreatedAt": (now - created_at).days,
        }

    async def get_installations(self, app: Any) -> list[dict[str, Any]]:
        """Each installation of ``app`` with its repositories."""
        installations = []
        for installation in list(app.installations):
            try:
                repos = await app.get_installation_repositories(installation)
            except Exception as e:
                logger.error(f"Failed to list repositories for {installation.login}: {e}")
                repos = []
            installations.append({"installation": serialize(installation.data), "repos": repos})
        return installations

    async def get_status(
        self,
        app: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        status: dict[str, Any] = {
            "seatsHistory": await self.get_seats_history(),
            "surveyCount": await SurveyService(self.db).count_surveys(),
            "installations": await self.get_installations(app) if app is not None else [],
        }
        if app is not None:
            status["github"] = app.is_connected
        if headers is not None:
            status["auth"] = auth_info(headers)
        return status
