"""GitHub OAuth web flow for dashboard login."""

import logging
from urllib.parse import urlencode

import httpx

from ...core.config import get_settings
from ...core.security import SessionUser

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
SCOPES = ["user:email"]


class OAuthError(Exception):
    """The OAuth exchange with GitHub failed."""
    pass


def build_authorize_url(state: str, redirect_uri: str) -> str:
    settings = get_settings()
    params = {
        "client_id": settings.github_oauth_client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(SCOPES),
        "state": state,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code(
    code: str,
    redirect_uri: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Trade the callback ``code`` for a user access token."""
    settings = get_settings()
    async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
        response = await client.post(
            ACCESS_TOKEN_URL,
            data={
                "client_id": settings.github_oauth_client_id,
                "client_secret": settings.github_oauth_client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            headers={"Accept": "application/json"},
        )
    data = response.json()
    if response.status_code >= 400 or not data.get("access_token"):
        logger.error(f"GitHub OAuth error: {data.get('error')}")
        raise OAuthError(f"GitHub authorization failed: {data.get('error_description') or data.get('error')}")
    return data["access_token"]


async def fetch_user(
    access_token: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SessionUser:
    """Profile of the user who authorized the app."""
    settings = get_settings()
    async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
        response = await client.get(
            f"{settings.github_api_url.rstrip('/')}/user",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
            },
        )
    if response.status_code >= 400:
        raise OAuthError(f"Failed to load GitHub user: {response.status_code}")
    profile = response.json()
    user = SessionUser(
        id=str(profile["id"]),
        username=profile["login"],
        display_name=profile.get("name"),
        avatar_url=profile.get("avatar_url"),
        profile_url=profile.get("html_url"),
        email=profile.get("email"),
    )
    logger.info(f"User authenticated: {user.username}")
    return user
