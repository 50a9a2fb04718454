"""GitHub App connection: credentials, installations and their metrics queries."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urljoin

from ...core.config import get_settings, persist_env
from ...jobs.query import MetricsQuery
from .client import (
    GitHubAPIError,
    GitHubAppError,
    GitHubClient,
    InstallationTokenCache,
    create_app_jwt,
)

logger = logging.getLogger(__name__)

APP_PERMISSIONS = {
    "metadata": "read",
    "members": "read",
    "organization_copilot_seat_management": "read",
    "organization_administration": "read",
    "pull_requests": "write",
    "issues": "write",
}
APP_EVENTS = ["pull_request", "membership", "team", "organization"]


# =============================================================================
# EXCEPTIONS
# =============================================================================


class GitHubAppNotConfiguredError(GitHubAppError):
    """App id or private key is missing, or the app is not connected."""
    pass


class InstallationNotFoundError(GitHubAppError):
    """No installation matches the given id or account login."""
    pass


# =============================================================================
# INSTALLATIONS
# =============================================================================


@dataclass
class Installation:
    """An installation of the app on an organization."""

    data: dict[str, Any]
    client: GitHubClient
    query: MetricsQuery
    tasks: set[asyncio.Task] = field(default_factory=set)

    @property
    def id(self) -> int:
        return self.data["id"]

    @property
    def login(self) -> str | None:
        return (self.data.get("account") or {}).get("login")


class GitHubApp:
    """The GitHub App this deployment runs as."""

    def __init__(self):
        self.app_id: str | None = None
        self.private_key: str | None = None
        self.webhook_secret: str | None = None
        self.info: dict[str, Any] | None = None
        self.installations: list[Installation] = []
        self.connected_at: datetime | None = None

    @property
    def is_connected(self) -> bool:
        return self.info is not None

    @property
    def slug(self) -> str | None:
        return self.info.get("slug") if self.info else None

    def app_client(self) -> GitHubClient:
        if not self.app_id or not self.private_key:
            raise GitHubAppNotConfiguredError("GitHub App is not configured")
        app_id, private_key = self.app_id, self.private_key

        async def token() -> str:
            return create_app_jwt(app_id, private_key)

        return GitHubClient(token_provider=token)

    def _installation_client(self, installation_id: int) -> GitHubClient:
        cache = InstallationTokenCache(installation_id, self.app_client())
        return GitHubClient(token_provider=cache.get_token)

    # =========================================================================
    # CONNECTION
    # =========================================================================

    async def connect(
        self,
        app_id: str | None = None,
        private_key: str | None = None,
        webhook_secret: str | None = None,
        start_queries: bool = True,
    ) -> dict[str, Any]:
        """Connect with the given (or configured) credentials and load installations."""
        await self.disconnect()

        settings = get_settings()
        self.app_id = app_id or self.app_id or settings.github_app_id
        self.private_key = private_key or self.private_key or settings.github_private_key
        self.webhook_secret = webhook_secret or self.webhook_secret or settings.github_webhook_secret
        if not self.app_id:
            raise GitHubAppNotConfiguredError("App ID is required")
        if not self.private_key:
            raise GitHubAppNotConfiguredError("Private key is required")
        # Raises InvalidPrivateKeyError before anything is persisted
        create_app_jwt(self.app_id, self.private_key)

        values = {
            "GITHUB_APP_ID": str(self.app_id),
            "GITHUB_APP_PRIVATE_KEY": self.private_key.replace("\n", "\\n"),
        }
        if self.webhook_secret:
            values["GITHUB_WEBHOOK_SECRET"] = self.webhook_secret
        persist_env(values)

        app_client = self.app_client()
        self.info = await app_client.get("/app")
        for data in await app_client.paginate("/app/installations"):
            login = (data.get("account") or {}).get("login")
            if not login:
                logger.warning(f"Skipping installation {data.get('id')} without an account login")
                continue
            client = self._installation_client(data["id"])
            self.installations.append(Installation(data=data, client=client, query=MetricsQuery(login, client)))
            logger.info(f"{login} installation {data['id']} connected")

        self.connected_at = datetime.now(timezone.utc)
        if start_queries:
            for installation in self.installations:
                self.start_query(installation)
        return self.info

    def start_query(self, installation: Installation) -> asyncio.Task:
        """Run the installation's metrics query in the background."""
        task = asyncio.create_task(installation.query.run(), name=f"query-{installation.login}")
        installation.tasks.add(task)
        task.add_done_callback(installation.tasks.discard)
        return task

    async def disconnect(self) -> None:
        for installation in self.installations:
            for task in list(installation.tasks):
                task.cancel()
        self.installations = []
        self.info = None

    async def run_queries(self) -> list[dict[str, Any]]:
        """Run the metrics query of every installation, one after another."""
        results = []
        for installation in list(self.installations):
            results.append(await installation.query.run())
        return results

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def get_app_manifest(self, base_url: str, webhook_url: str | None = None) -> dict[str, Any]:
        """Manifest for registering the app from ``base_url``.

        See: https://docs.github.com/en/apps/sharing-github-apps/registering-a-github-app-from-a-manifest
        """
        base = base_url.rstrip("/") + "/"
        return {
            "name": "Copilot Value",
            "url": base,
            "hook_attributes": {
                "url": webhook_url or urljoin(base, "api/github/webhooks"),
                "active": True,
            },
            "redirect_url": urljoin(base, "api/setup/registration/complete"),
            "setup_url": urljoin(base, "api/setup/install/complete"),
            "setup_on_update": True,
            "public": False,
            "default_permissions": APP_PERMISSIONS,
            "default_events": APP_EVENTS,
        }

    async def create_app_from_manifest(self, code: str) -> dict[str, Any]:
        """Exchange the manifest code for the new app's credentials and store them."""
        data = await GitHubClient().post(f"/app-manifests/{code}/conversions")
        if not data or not data.get("id") or not data.get("pem"):
            raise GitHubAppError("Failed to create app from manifest")

        self.app_id = str(data["id"])
        self.private_key = data["pem"]
        self.webhook_secret = data.get("webhook_secret") or self.webhook_secret

        values = {
            "GITHUB_APP_ID": self.app_id,
            "GITHUB_APP_PRIVATE_KEY": self.private_key.replace("\n", "\\n"),
        }
        if data.get("webhook_secret"):
            values["GITHUB_WEBHOOK_SECRET"] = data["webhook_secret"]
        persist_env(values)
        logger.info(f"Created GitHub App {data.get('slug')} ({self.app_id})")

        return {
            "id": data["id"],
            "pem": data["pem"],
            "webhook_secret": data.get("webhook_secret"),
            "html_url": data.get("html_url"),
        }

    async def get_installation_url(self) -> str:
        if not self.info:
            self.info = await self.app_client().get("/app")
        return f"{self.info['html_url']}/installations/new"

    # =========================================================================
    # INSTALLATION LOOKUP
    # =========================================================================

    def get_installation(self, id_or_login: int | str) -> Installation:
        if not self.is_connected:
            raise GitHubAppNotConfiguredError("App is not initialized")
        for installation in self.installations:
            if installation.login == id_or_login or str(installation.id) == str(id_or_login):
                return installation
        raise InstallationNotFoundError(f"Installation {id_or_login} not found")

    async def add_installation(self, data: dict[str, Any]) -> Installation | None:
        """Track an installation reported by an ``installation.created`` event."""
        login = (data.get("account") or {}).get("login")
        if not login:
            return None
        self.remove_installation(data["id"])
        client = self._installation_client(data["id"])
        installation = Installation(data=data, client=client, query=MetricsQuery(login, client))
        self.installations.append(installation)
        self.start_query(installation)
        logger.info(f"{login} installation {data['id']} added")
        return installation

    def remove_installation(self, installation_id: int) -> None:
        for installation in [i for i in self.installations if i.id == installation_id]:
            for task in list(installation.tasks):
                task.cancel()
            self.installations.remove(installation)
            logger.info(f"{installation.login} installation {installation_id} removed")

    async def get_installation_repositories(self, installation: Installation) -> list[dict[str, Any]]:
        return await installation.client.paginate("/installation/repositories", item_key="repositories")

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    async def validate_installations(self) -> dict[str, Any]:
        """Check every installation and report what is wrong with each."""
        diagnostics: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "appConnected": self.is_connected,
            "totalInstallations": len(self.installations),
            "installations": [],
            "errors": [],
            "appInfo": None,
            "summary": {
                "validInstallations": 0,
                "invalidInstallations": 0,
                "organizationNames": [],
                "accountTypes": {},
            },
        }
        if not self.is_connected:
            diagnostics["errors"].append("GitHub App is not initialized")
            return diagnostics

        summary = diagnostics["summary"]
        for index, installation in enumerate(self.installations):
            data = installation.data
            account = data.get("account") or {}
            entry: dict[str, Any] = {
                "index": index,
                "installationId": data.get("id"),
                "accountLogin": account.get("login") or "MISSING",
                "accountId": account.get("id") or "MISSING",
                "accountType": account.get("type") or "MISSING",
                "accountAvatarUrl": account.get("avatar_url") or "MISSING",
                "appId": data.get("app_id"),
                "appSlug": data.get("app_slug"),
                "targetType": data.get("target_type"),
                "permissions": data.get("permissions"),
                "events": data.get("events"),
                "createdAt": data.get("created_at"),
                "updatedAt": data.get("updated_at"),
                "suspendedAt": data.get("suspended_at"),
                "suspendedBy": data.get("suspended_by"),
                "apiTest": None,
                "isValid": True,
                "validationErrors": [],
            }
            for key, message in (
                ("login", "Missing account.login (organization name)"),
                ("id", "Missing account.id"),
                ("type", "Missing account.type"),
            ):
                if not account.get(key):
                    entry["isValid"] = False
                    entry["validationErrors"].append(message)

            try:
                repos = await installation.client.get("/installation/repositories", params={"per_page": 1})
                entry["apiTest"] = {"success": True, "totalRepositories": repos.get("total_count", 0)}
            except (GitHubAPIError, GitHubAppError) as e:
                entry["apiTest"] = {"success": False, "error": str(e)}
                entry["isValid"] = False
                entry["validationErrors"].append(f"API test failed: {e}")

            if entry["isValid"]:
                summary["validInstallations"] += 1
                if account.get("login"):
                    summary["organizationNames"].append(account["login"])
            else:
                summary["invalidInstallations"] += 1
            account_type = account.get("type") or "Unknown"
            summary["accountTypes"][account_type] = summary["accountTypes"].get(account_type, 0) + 1
            diagnostics["installations"].append(entry)

        try:
            info = await self.app_client().get("/app")
            diagnostics["appInfo"] = {
                "name": info.get("name") or "Unknown",
                "description": info.get("description") or "No description",
                "owner": (info.get("owner") or {}).get("login") or "Unknown",
                "htmlUrl": info.get("html_url") or "Unknown",
                "permissions": info.get("permissions") or {},
                "events": info.get("events") or [],
            }
        except (GitHubAPIError, GitHubAppError) as e:
            diagnostics["errors"].append(f"Failed to get app info: {e}")

        summary["organizationNames"].sort()
        return diagnostics


github_app = GitHubApp()


def get_github_app() -> GitHubApp:
    """Dependency returning the process-wide GitHub App."""
    return github_app
