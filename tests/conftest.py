"""Shared fixtures: fake stores and an HTTP client bound to the app."""

from collections.abc import AsyncIterator
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from copilot_value.core.database import get_session
from copilot_value.core.dependencies import get_db
from copilot_value.integrations.github.app import get_github_app
from copilot_value.main import app as fastapi_app


# =============================================================================
# FAKES
# =============================================================================


def make_installation(login: str = "octo-org", installation_id: int = 1) -> SimpleNamespace:
    """An installation with an AsyncMock REST client."""
    return SimpleNamespace(
        id=installation_id,
        login=login,
        data={"id": installation_id, "account": {"login": login}},
        client=AsyncMock(),
    )


def make_github_app(installations=None, webhook_secret: str | None = None) -> MagicMock:
    """A connected GitHub App stand-in."""
    installations = installations if installations is not None else [make_installation()]
    github_app = MagicMock()
    github_app.slug = "copilot-value"
    github_app.is_connected = True
    github_app.webhook_secret = webhook_secret
    github_app.installations = installations
    github_app.get_installation.side_effect = lambda key: next(
        i for i in installations if key in (i.id, i.login)
    )
    github_app.add_installation = AsyncMock()
    return github_app


@pytest.fixture
def github_app() -> MagicMock:
    return make_github_app()


@pytest.fixture
def mongo_db() -> MagicMock:
    return MagicMock()


@pytest.fixture
def sql_session() -> AsyncMock:
    session = AsyncMock()
    session.get.return_value = None
    return session


# =============================================================================
# HTTP CLIENT
# =============================================================================


@pytest.fixture
def app(github_app, mongo_db, sql_session):
    """The FastAPI app with stores and the GitHub App overridden."""

    async def override_session() -> AsyncIterator[AsyncMock]:
        yield sql_session

    fastapi_app.dependency_overrides[get_github_app] = lambda: github_app
    fastapi_app.dependency_overrides[get_db] = lambda: mongo_db
    fastapi_app.dependency_overrides[get_session] = override_session
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
