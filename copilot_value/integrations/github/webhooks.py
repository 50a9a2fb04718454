"""
GitHub webhook event handling.

Routes deliveries by ``X-GitHub-Event`` and ``action`` to the teams,
members, surveys and installation bookkeeping they affect.

See: https://docs.github.com/en/webhooks/webhook-events-and-payloads
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pymongo.asynchronous.database import AsyncDatabase

from ...services.surveys import SurveyService
from ...services.teams import NO_TEAM_ID, MemberNotFoundError, TeamNotFoundError, TeamsService
from .app import GitHubApp
from .comments import post_survey_request, survey_link, survey_request_body

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


class WebhookHandler:
    """Dispatches one webhook delivery."""

    def __init__(self, app: GitHubApp, db: AsyncDatabase, base_url: str):
        self.app = app
        self.db = db
        self.base_url = base_url
        self.teams = TeamsService(db)
        self.surveys = SurveyService(db)
        self._handlers: dict[str, Handler] = {
            "pull_request.opened": self.on_pull_request_opened,
            "membership.added": self.on_membership_added,
            "membership.removed": self.on_membership_removed,
            "team.created": self.on_team_changed,
            "team.edited": self.on_team_changed,
            "team.deleted": self.on_team_deleted,
            "organization.member_added": self.on_organization_member_added,
            "organization.member_removed": self.on_organization_member_removed,
            "installation.created": self.on_installation_created,
            "installation.deleted": self.on_installation_deleted,
        }

    async def handle(self, event: str, payload: dict[str, Any]) -> bool:
        """Run the handler for ``event.action``; False when nothing handles it."""
        name = f"{event}.{payload.get('action')}" if payload.get("action") else event
        handler = self._handlers.get(name)
        if handler is None:
            logger.debug(f"Ignoring webhook event {name}")
            return False
        logger.info(f"Handling webhook event {name}")
        await handler(payload)
        return True

    @staticmethod
    def _org(payload: dict[str, Any]) -> str | None:
        return (payload.get("organization") or {}).get("login")

    # =========================================================================
    # PULL REQUESTS
    # =========================================================================

    async def on_pull_request_opened(self, payload: dict[str, Any]) -> dict[str, Any]:
        pull_request = payload["pull_request"]
        repository = payload["repository"]
        author = pull_request["user"]["login"]
        org = repository["owner"]["login"]

        survey = await self.surveys.create_pending_survey(
            user_id=author,
            org=org,
            repo=repository["name"],
            pr_number=pull_request["number"],
        )
        link = survey_link(self.base_url, survey["id"], pull_request["html_url"], author)
        await post_survey_request(
            self.app, org, repository["name"], pull_request["number"], survey_request_body(link, author)
        )
        return survey

    # =========================================================================
    # TEAMS AND MEMBERS
    # =========================================================================

    async def on_membership_added(self, payload: dict[str, Any]) -> None:
        org = self._org(payload)
        member = payload["member"]
        await self.teams.update_members(org, [member])
        await self.teams.add_member_to_team(payload["team"]["id"], member["id"])

    async def on_membership_removed(self, payload: dict[str, Any]) -> None:
        try:
            await self.teams.delete_member_from_team(payload["team"]["id"], payload["member"]["id"])
        except MemberNotFoundError as e:
            logger.warning(str(e))

    async def on_team_changed(self, payload: dict[str, Any]) -> None:
        await self.teams.update_teams(self._org(payload), [payload["team"]])

    async def on_team_deleted(self, payload: dict[str, Any]) -> None:
        try:
            await self.teams.delete_team(payload["team"]["id"])
        except TeamNotFoundError as e:
            logger.warning(str(e))

    async def on_organization_member_added(self, payload: dict[str, Any]) -> None:
        user = payload["membership"]["user"]
        await self.teams.update_members(self._org(payload), [user])
        await self.teams.add_member_to_team(NO_TEAM_ID, user["id"])

    async def on_organization_member_removed(self, payload: dict[str, Any]) -> None:
        try:
            await self.teams.delete_member(payload["membership"]["user"]["id"])
        except MemberNotFoundError as e:
            logger.warning(str(e))

    # =========================================================================
    # INSTALLATIONS
    # =========================================================================

    async def on_installation_created(self, payload: dict[str, Any]) -> None:
        await self.app.add_installation(payload["installation"])

    async def on_installation_deleted(self, payload: dict[str, Any]) -> None:
        self.app.remove_installation(payload["installation"]["id"])
