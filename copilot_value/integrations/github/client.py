"""GitHub REST API client.

Authenticates either as the GitHub App (RS256 JWT) or as one of its
installations (short lived installation token, cached until close to expiry).
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import jwt

from ...core.config import get_settings

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
PER_PAGE = 100

TokenProvider = Callable[[], Awaitable[str]]


class GitHubAPIError(Exception):
    """A GitHub API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubAppError(Exception):
    """Base exception for GitHub App operations."""
    pass


class InvalidPrivateKeyError(GitHubAppError):
    """The private key cannot sign an app JWT."""
    pass


def create_app_jwt(app_id: str, private_key: str, now: datetime | None = None) -> str:
    """Sign the JWT a GitHub App uses to call ``/app`` endpoints.

    See: https://docs.github.com/en/apps/creating-github-apps/authenticating-with-a-github-app/generating-a-json-web-token-jwt-for-a-github-app
    """
    now = now or datetime.now(timezone.utc)
    payload = {
        # Backdated to allow for clock drift
        "iat": int((now - timedelta(seconds=60)).timestamp()),
        "exp": int((now + timedelta(minutes=9)).timestamp()),
        "iss": str(app_id),
    }
    try:
        return jwt.encode(payload, private_key, algorithm="RS256")
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise InvalidPrivateKeyError(f"Private key for app {app_id} is not a valid RSA PEM key: {e}") from e


class GitHubClient:
    """Thin async wrapper over the REST API with ``Link`` header pagination."""

    def __init__(
        self,
        token_provider: TokenProvider | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ):
        self.token_provider = token_provider
        self.base_url = (base_url or get_settings().github_api_url).rstrip("/")
        self._transport = transport
        self._timeout = timeout

    async def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": "copilot-value",
        }
        if self.token_provider is not None:
            headers["Authorization"] = f"Bearer {await self.token_provider()}"
        return headers

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith("http"):
            return path_or_url
        return f"{self.base_url}/{path_or_url.lstrip('/')}"

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = await self._headers()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, self._url(path), headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"GitHub API {method} {path} unreachable: {e}")
            raise GitHubAPIError(f"GitHub API {method} {path} unreachable: {e}") from e
        if response.status_code >= 400:
            logger.error(f"GitHub API {method} {path} failed: {response.status_code} {response.text[:200]}")
            raise GitHubAPIError(
                f"GitHub API {method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self.request("GET", path, params=params)
        return response.json()

    async def post(self, path: str, json: dict[str, Any] | None = None) -> Any:
        response = await self.request("POST", path, json=json)
        return response.json() if response.content else None

    async def patch(self, path: str, json: dict[str, Any] | None = None) -> Any:
        response = await self.request("PATCH", path, json=json)
        return response.json() if response.content else None

    async def paginate(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        item_key: str | None = None,
    ) -> list[Any]:
        """Fetch every page, following ``rel="next"`` links.

        ``item_key`` names the list inside object responses such as
        ``{"total_seats": 3, "seats": [...]}``.
        """
        items: list[Any] = []
        url: str | None = path
        page_params: dict[str, Any] | None = {"per_page": PER_PAGE, **(params or {})}
        while url:
            response = await self.request("GET", url, params=page_params)
            data = response.json()
            if item_key:
                items.extend(data.get(item_key) or [])
            else:
                items.extend(data)
            url = response.links.get("next", {}).get("url")
            # The next link already carries the query string
            page_params = None
        return items


class InstallationTokenCache:
    """Caches an installation access token until shortly before it expires."""

    def __init__(self, installation_id: int, app_client: GitHubClient):
        self.installation_id = installation_id
        self.app_client = app_client
        self._token: str | None = None
        self._expires_at: datetime | None = None

    async def get_token(self) -> str:
        now = datetime.now(timezone.utc)
        if self._token and self._expires_at and now < self._expires_at - timedelta(minutes=5):
            return self._token

        data = await self.app_client.post(f"/app/installations/{self.installation_id}/access_tokens")
        self._token = data["token"]
        self._expires_at = datetime.fromisoformat(data["expires_at"].replace("Z", "+00:00"))
        logger.debug(f"Refreshed token for installation {self.installation_id}")
        return self._token
