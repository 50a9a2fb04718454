"""FastAPI dependencies for stores, the GitHub App and the dashboard session."""

import logging
from typing import Annotated

from fastapi import Cookie, Depends, HTTPException, status
from pymongo.asynchronous.database import AsyncDatabase
from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations.github.app import GitHubApp, get_github_app
from ..integrations.github.smee import WebhookProxy, get_webhook_proxy
from ..services.status_manager import StatusManager, get_status_manager
from .config import get_settings
from .database import get_session
from .mongo import DocumentStoreUnavailableError, get_mongo_db
from .security import SESSION_COOKIE, SessionUser, decode_session_token

logger = logging.getLogger(__name__)


def get_db() -> AsyncDatabase:
    """Dependency returning the document store, 503 until it is connected."""
    try:
        return get_mongo_db()
    except DocumentStoreUnavailableError as e:
        logger.warning(f"Request needs the document store: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        )


def get_session_user(
    session_token: Annotated[str | None, Cookie(alias=SESSION_COOKIE)] = None,
) -> SessionUser | None:
    """The logged in dashboard user, if any."""
    if not session_token:
        return None
    return decode_session_token(session_token)


def require_user(
    user: Annotated[SessionUser | None, Depends(get_session_user)],
) -> SessionUser | None:
    """Require a logged in user when GitHub OAuth is configured.

    With OAuth unconfigured every request is allowed through.
    """
    if not get_settings().auth_enabled:
        return user
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


# Type aliases for cleaner dependency injection
SessionDep = Annotated[AsyncSession, Depends(get_session)]
MongoDep = Annotated[AsyncDatabase, Depends(get_db)]
GitHubAppDep = Annotated[GitHubApp, Depends(get_github_app)]
StatusManagerDep = Annotated[StatusManager, Depends(get_status_manager)]
WebhookProxyDep = Annotated[WebhookProxy, Depends(get_webhook_proxy)]
SessionUserDep = Annotated[SessionUser | None, Depends(get_session_user)]
CurrentUserDep = Annotated[SessionUser | None, Depends(require_user)]
