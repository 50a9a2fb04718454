"""Dashboard login with GitHub OAuth.

When ``GITHUB_OAUTH_CLIENT_ID``/``GITHUB_OAUTH_CLIENT_SECRET`` are not set,
authentication is disabled and every visitor is treated as logged in.
"""

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, Cookie, Query, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from ..core.config import get_settings
from ..core.dependencies import SessionUserDep
from ..core.security import SESSION_COOKIE, create_session_token
from ..integrations.github.oauth import OAuthError, build_authorize_url, exchange_code, fetch_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

STATE_COOKIE = "copilot_value_oauth_state"
RETURN_TO_COOKIE = "copilot_value_return_to"


def _callback_url() -> str:
    settings = get_settings()
    return f"{settings.base_url.rstrip('/')}{settings.api_prefix}/auth/github/callback"


@router.get("/github")
async def github_login(return_to: str = Query("/", alias="returnTo")):
    """Start the OAuth flow by redirecting to GitHub."""
    if not get_settings().auth_enabled:
        logger.info("Authentication attempt when auth is disabled")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Authentication disabled",
                "message": (
                    "GitHub OAuth authentication is not configured. Set GITHUB_OAUTH_CLIENT_ID and "
                    "GITHUB_OAUTH_CLIENT_SECRET environment variables to enable authentication."
                ),
            },
        )

    state = secrets.token_urlsafe(32)
    response = RedirectResponse(url=build_authorize_url(state, _callback_url()), status_code=302)
    response.set_cookie(STATE_COOKIE, state, max_age=600, httponly=True, samesite="lax")
    # Only local paths, never an external redirect
    if return_to.startswith("/") and not return_to.startswith("//"):
        response.set_cookie(RETURN_TO_COOKIE, return_to, max_age=600, httponly=True, samesite="lax")
    return response


@router.get("/github/callback")
async def github_callback(
    code: str | None = None,
    state: str | None = None,
    expected_state: Annotated[str | None, Cookie(alias=STATE_COOKIE)] = None,
    return_to: Annotated[str | None, Cookie(alias=RETURN_TO_COOKIE)] = None,
):
    """GitHub redirects here with the authorization code."""
    settings = get_settings()
    if not settings.auth_enabled:
        logger.info("Authentication callback received when auth is disabled")
        return RedirectResponse(url="/", status_code=302)

    if not code or not state or not expected_state or not secrets.compare_digest(state, expected_state):
        logger.warning("OAuth callback with missing or mismatched state")
        return RedirectResponse(url="/login", status_code=302)

    try:
        access_token = await exchange_code(code, _callback_url())
        user = await fetch_user(access_token)
    except OAuthError as e:
        logger.error(f"GitHub login failed: {e}")
        return RedirectResponse(url="/login", status_code=302)

    destination = return_to or "/"
    logger.info(f"Authentication successful, redirecting to {destination}")
    response = RedirectResponse(url=destination, status_code=302)
    response.set_cookie(
        SESSION_COOKIE,
        create_session_token(user),
        max_age=settings.session_expire_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.base_url.startswith("https://"),
    )
    response.delete_cookie(STATE_COOKIE)
    response.delete_cookie(RETURN_TO_COOKIE)
    return response


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(user: SessionUserDep):
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(SESSION_COOKIE)
    if user:
        logger.info(f"User {user.username} logged out")
    return response


@router.get("/user")
async def current_user(user: SessionUserDep):
    """The logged in user; an anonymous user when auth is disabled."""
    if not get_settings().auth_enabled:
        return {
            "isAuthenticated": True,
            "authDisabled": True,
            "user": {
                "username": "anonymous",
                "displayName": "Anonymous User (Auth Disabled)",
            },
        }
    if user is None:
        return {"isAuthenticated": False}
    return {"isAuthenticated": True, "user": user.model_dump()}


@router.get("/status")
async def auth_status(user: SessionUserDep):
    auth_enabled = get_settings().auth_enabled
    return {
        "authEnabled": auth_enabled,
        "isAuthenticated": user is not None or not auth_enabled,
    }
