"""Polls GitHub for one organization: seats, usage metrics, teams and members."""

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from ..core.database import get_session_context
from ..core.mongo import get_mongo_db
from ..services.metrics import MetricsService
from ..services.seats import SeatsService
from ..services.settings import SettingsService
from ..services.teams import NO_TEAM_ID, TeamsService

if TYPE_CHECKING:
    from ..integrations.github.client import GitHubClient

logger = logging.getLogger(__name__)

TEAMS_REFRESH_INTERVAL = timedelta(days=1)


class MetricsQuery:
    """One organization's polling run."""

    def __init__(self, org: str, client: "GitHubClient"):
        self.org = org
        self.client = client
        self.last_run_at: datetime | None = None

    async def query_copilot_seats(self) -> int:
        query_at = datetime.now(timezone.utc)
        seats = await self.client.paginate(f"/orgs/{self.org}/copilot/billing/seats", item_key="seats")

        async with get_session_context() as session:
            days_inactive = await SettingsService(session).get_setting("daysInactive")

        await SeatsService(get_mongo_db()).insert_seats(
            self.org, query_at, seats, days_inactive=int(days_inactive or 30)
        )
        logger.info(f"{self.org} seats updated ({len(seats)})")
        return len(seats)

    async def query_copilot_usage_metrics(self) -> int:
        days = await self.client.get(f"/orgs/{self.org}/copilot/metrics")
        async with get_session_context() as session:
            await MetricsService(get_mongo_db(), session).insert_metrics(self.org, days)
        logger.info(f"{self.org} metrics updated ({len(days)} days)")
        return len(days)

    async def teams_due(self) -> bool:
        """Whether members were last synced more than a day ago."""
        last_updated = await TeamsService(get_mongo_db()).get_last_updated_at(self.org)
        return datetime.now(timezone.utc) - last_updated >= TEAMS_REFRESH_INTERVAL

    async def query_teams_and_members(self, force: bool = False) -> bool:
        """Sync teams and members when older than a day (or ``force``)."""
        if not force and not await self.teams_due():
            logger.info(f"{self.org} teams and members are up to date")
            return False

        teams_service = TeamsService(get_mongo_db())
        teams = await self.client.paginate(f"/orgs/{self.org}/teams")
        await teams_service.update_teams(self.org, teams)

        members_in_teams: set[int] = set()
        for team in teams:
            members = await self.client.paginate(f"/orgs/{self.org}/teams/{team['slug']}/members")
            await teams_service.update_members(self.org, members)
            for member in members:
                await teams_service.add_member_to_team(team["id"], member["id"])
                members_in_teams.add(member["id"])

        org_members = await self.client.paginate(f"/orgs/{self.org}/members")
        await teams_service.update_members(self.org, org_members)
        for member in org_members:
            if member["id"] not in members_in_teams:
                await teams_service.add_member_to_team(NO_TEAM_ID, member["id"])

        logger.info(f"{self.org} teams and members updated ({len(teams)} teams, {len(org_members)} members)")
        return True

    async def run(self, force_teams: bool = False) -> dict[str, Any]:
        """Run every query; a failing step is recorded and the others still run."""
        results: dict[str, Any] = {"org": self.org, "seats": None, "metrics": None, "teams": None, "errors": []}

        # Decided before the seats poll, which inserts members for new seat holders
        refresh_teams = force_teams
        if not refresh_teams:
            try:
                refresh_teams = await self.teams_due()
            except Exception as e:
                logger.warning(f"{self.org} could not check teams sync age: {e}")

        steps = (
            ("seats", self.query_copilot_seats),
            ("metrics", self.query_copilot_usage_metrics),
            ("teams", lambda: self.query_teams_and_members(force=refresh_teams)),
        )
        for name, step in steps:
            try:
                results[name] = await step()
            except Exception as e:
                error_msg = f"{self.org} {name} query failed: {e}"
                logger.error(error_msg)
                results["errors"].append(error_msg)
        self.last_run_at = datetime.now(timezone.utc)
        return results
