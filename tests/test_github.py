"""
Tests for the GitHub integration.

These tests verify:
1. The REST client follows Link pagination and raises on errors
2. Installation tokens are cached until close to expiry, and unusable
   credentials or an unreachable GitHub surface as integration errors
3. Webhook events reach the right teams/surveys/installation handler
4. Survey comments are posted and replaced by a thank-you
5. The smee relay parses Server-Sent Events into deliveries
6. The OAuth exchange yields a session user
"""

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from copilot_value import main
from copilot_value.integrations.github import app as app_module
from copilot_value.integrations.github import comments, webhooks
from copilot_value.integrations.github.app import GitHubApp
from copilot_value.integrations.github.client import (
    GitHubAPIError,
    GitHubAppError,
    GitHubClient,
    InstallationTokenCache,
    InvalidPrivateKeyError,
    create_app_jwt,
)
from copilot_value.integrations.github.oauth import OAuthError, exchange_code, fetch_user
from copilot_value.integrations.github.smee import (
    WebhookProxy,
    WebhookProxyError,
    create_channel,
    is_smee_url,
    iter_events,
    parse_event,
)
from copilot_value.integrations.github.webhooks import WebhookHandler
from copilot_value.schemas import ComponentStatus
from copilot_value.services.status_manager import GITHUB_APP
from copilot_value.services.teams import NO_TEAM_ID, TeamNotFoundError

from .conftest import make_github_app, make_installation


# =============================================================================
# TEST: REST CLIENT
# =============================================================================


class TestGitHubClient:
    """Tests for requests and pagination."""

    async def test_paginate_follows_next_links(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[{"id": 3}])
            return httpx.Response(
                200,
                json=[{"id": 1}, {"id": 2}],
                headers={"Link": '<https://api.github.com/orgs/o/members?per_page=100&page=2>; rel="next"'},
            )

        client = GitHubClient(base_url="https://api.github.com", transport=httpx.MockTransport(handler))

        items = await client.paginate("/orgs/o/members")

        assert [item["id"] for item in items] == [1, 2, 3]
        assert requests[0].url.params["per_page"] == "100"

    async def test_paginate_object_responses(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"total_seats": 1, "seats": [{"assignee": {"login": "a"}}]})

        client = GitHubClient(base_url="https://api.github.com", transport=httpx.MockTransport(handler))

        seats = await client.paginate("/orgs/o/copilot/billing/seats", item_key="seats")

        assert seats == [{"assignee": {"login": "a"}}]

    async def test_error_status_raises(self):
        client = GitHubClient(
            base_url="https://api.github.com",
            transport=httpx.MockTransport(lambda request: httpx.Response(404, json={"message": "Not Found"})),
        )

        with pytest.raises(GitHubAPIError) as exc_info:
            await client.get("/orgs/missing")
        assert exc_info.value.status_code == 404

    async def test_token_and_api_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.headers)
            return httpx.Response(200, json={})

        client = GitHubClient(
            token_provider=AsyncMock(return_value="ghs_token"),
            base_url="https://api.github.com",
            transport=httpx.MockTransport(handler),
        )

        await client.get("/app")

        assert seen["authorization"] == "Bearer ghs_token"
        assert seen["x-github-api-version"] == "2022-11-28"


class TestInstallationTokenCache:
    """Tests for installation access tokens."""

    async def test_token_is_reused_until_near_expiry(self):
        app_client = AsyncMock()
        expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
        app_client.post.return_value = {"token": "ghs_1", "expires_at": expires_at.isoformat()}
        cache = InstallationTokenCache(42, app_client)

        assert await cache.get_token() == "ghs_1"
        assert await cache.get_token() == "ghs_1"
        app_client.post.assert_awaited_once_with("/app/installations/42/access_tokens")

    async def test_expiring_token_is_refreshed(self):
        app_client = AsyncMock()
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=2)
        app_client.post.return_value = {"token": "ghs_1", "expires_at": expires_at.isoformat()}
        cache = InstallationTokenCache(42, app_client)

        await cache.get_token()
        await cache.get_token()

        assert app_client.post.await_count == 2


class TestAppCredentials:
    """Tests for credentials that cannot be used."""

    def test_malformed_key_cannot_sign(self):
        with pytest.raises(InvalidPrivateKeyError):
            create_app_jwt("1", "not-a-pem-key")

    async def test_malformed_key_is_not_persisted(self, monkeypatch):
        persist = MagicMock()
        monkeypatch.setattr(app_module, "persist_env", persist)

        with pytest.raises(GitHubAppError):
            await GitHubApp().connect(app_id="1", private_key="not-a-pem-key", start_queries=False)

        persist.assert_not_called()

    async def test_unreachable_github_raises_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = GitHubClient(base_url="https://api.github.com", transport=httpx.MockTransport(handler))

        with pytest.raises(GitHubAPIError) as exc_info:
            await client.get("/app")
        assert exc_info.value.status_code is None

    async def test_startup_survives_connect_failure(self, monkeypatch):
        failing_app = MagicMock()
        failing_app.connect = AsyncMock(side_effect=GitHubAPIError("GitHub API GET /app unreachable"))
        status_manager = MagicMock()
        monkeypatch.setattr(main, "github_app", failing_app)
        monkeypatch.setattr(main, "status_manager", status_manager)
        monkeypatch.setattr(main, "settings", SimpleNamespace(github_app_configured=True))

        await main._start_github_app()

        component, state, message = status_manager.update_status.call_args.args
        assert component == GITHUB_APP
        assert state == ComponentStatus.ERROR
        assert "unreachable" in message


# =============================================================================
# TEST: WEBHOOK EVENTS
# =============================================================================


@pytest.fixture
def handler() -> WebhookHandler:
    handler = WebhookHandler(make_github_app(), MagicMock(), "https://copilot.example.com")
    handler.teams = AsyncMock()
    handler.surveys = AsyncMock()
    return handler


class TestWebhookHandler:
    """Tests for dispatching webhook events."""

    async def test_unknown_event_is_ignored(self, handler):
        assert await handler.handle("push", {"ref": "refs/heads/main"}) is False
        assert await handler.handle("pull_request", {"action": "closed"}) is False

    async def test_pull_request_opened_creates_survey_and_comments(self, handler, monkeypatch):
        post = AsyncMock()
        monkeypatch.setattr(webhooks, "post_survey_request", post)
        handler.surveys.create_pending_survey.return_value = {"id": 7}
        payload = {
            "action": "opened",
            "pull_request": {"number": 12, "html_url": "https://github.com/octo-org/repo/pull/12", "user": {"login": "alice"}},
            "repository": {"name": "repo", "owner": {"login": "octo-org"}},
        }

        assert await handler.handle("pull_request", payload) is True

        handler.surveys.create_pending_survey.assert_awaited_once_with(
            user_id="alice", org="octo-org", repo="repo", pr_number=12
        )
        app, org, repo, number, body = post.await_args.args
        assert (org, repo, number) == ("octo-org", "repo", 12)
        assert "https://copilot.example.com/copilot/surveys/new/7?" in body

    async def test_membership_added(self, handler):
        payload = {
            "action": "added",
            "organization": {"login": "octo-org"},
            "team": {"id": 5},
            "member": {"id": 9, "login": "bob"},
        }

        await handler.handle("membership", payload)

        handler.teams.update_members.assert_awaited_once_with("octo-org", [{"id": 9, "login": "bob"}])
        handler.teams.add_member_to_team.assert_awaited_once_with(5, 9)

    async def test_organization_member_added_joins_no_team(self, handler):
        payload = {
            "action": "member_added",
            "organization": {"login": "octo-org"},
            "membership": {"user": {"id": 9, "login": "bob"}},
        }

        await handler.handle("organization", payload)

        handler.teams.add_member_to_team.assert_awaited_once_with(NO_TEAM_ID, 9)

    async def test_team_edited_and_created_sync_team(self, handler):
        for action in ("created", "edited"):
            await handler.handle(
                "team", {"action": action, "organization": {"login": "octo-org"}, "team": {"id": 5}}
            )

        assert handler.teams.update_teams.await_count == 2

    async def test_deleting_unknown_team_is_logged(self, handler):
        handler.teams.delete_team.side_effect = TeamNotFoundError("Team 5 not found")

        assert await handler.handle("team", {"action": "deleted", "team": {"id": 5}}) is True

    async def test_installation_events(self, handler):
        await handler.handle("installation", {"action": "created", "installation": {"id": 3}})
        await handler.handle("installation", {"action": "deleted", "installation": {"id": 3}})

        handler.app.add_installation.assert_awaited_once_with({"id": 3})
        handler.app.remove_installation.assert_called_once_with(3)


# =============================================================================
# TEST: SURVEY COMMENTS
# =============================================================================


class TestSurveyComments:
    """Tests for the pull request comment flow."""

    def test_survey_link(self):
        link = comments.survey_link("https://copilot.example.com/", 7, "https://github.com/o/r/pull/1", "alice")

        assert link.startswith("https://copilot.example.com/copilot/surveys/new/7?")
        assert "author=alice" in link

    async def test_thank_you_replaces_app_comment(self):
        installation = make_installation()
        installation.client.paginate.return_value = [
            {"id": 1, "user": {"login": "alice"}},
            {"id": 2, "user": {"login": "copilot-value[bot]"}},
        ]
        app = make_github_app([installation])
        survey = {"org": "octo-org", "repo": "repo", "prNumber": 12, "userId": "alice"}

        assert await comments.thank_for_survey(app, survey) is True

        installation.client.patch.assert_awaited_once_with(
            "/repos/octo-org/repo/issues/comments/2",
            json={"body": "Thanks for filling out the copilot survey @alice!"},
        )

    async def test_thank_you_without_pull_request(self):
        assert await comments.thank_for_survey(make_github_app(), {"userId": "alice"}) is False

    async def test_thank_you_swallows_api_errors(self):
        installation = make_installation()
        installation.client.paginate.side_effect = GitHubAPIError("boom", status_code=500)
        survey = {"org": "octo-org", "repo": "repo", "prNumber": 12, "userId": "alice"}

        assert await comments.thank_for_survey(make_github_app([installation]), survey) is False


# =============================================================================
# TEST: WEBHOOK PROXY
# =============================================================================


class TestWebhookProxy:
    """Tests for the smee.io relay."""

    def test_parse_event(self):
        data = json.dumps(
            {
                "x-github-event": "pull_request",
                "x-github-delivery": "abc",
                "x-hub-signature-256": "sha256=00",
                "body": {"action": "opened", "number": 1},
                "query": {},
                "timestamp": 1700000000,
            }
        )

        headers, body = parse_event(data)

        assert headers["x-github-event"] == "pull_request"
        assert headers["content-type"] == "application/json"
        assert "timestamp" not in headers
        assert body == b'{"action":"opened","number":1}'

    def test_parse_event_ignores_malformed_data(self):
        assert parse_event("not json") is None
        assert parse_event("{}") is None

    async def test_iter_events(self):
        stream = b'event: ready\ndata: {}\n\n: comment\ndata: {"body": {}}\n\nevent: ping\ndata: {}\n\n'
        response = httpx.Response(200, content=stream)

        events = [event async for event in iter_events(response)]

        assert events == [("ready", "{}"), ("message", '{"body": {}}'), ("ping", "{}")]

    def test_is_smee_url(self):
        assert is_smee_url("https://smee.io/abc123")
        assert not is_smee_url("https://copilot.example.com/api/github/webhooks")

    async def test_create_channel_reads_redirect(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(307, headers={"Location": "https://smee.io/new-channel"})
        )

        assert await create_channel(transport) == "https://smee.io/new-channel"

    async def test_create_channel_without_redirect(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200))

        with pytest.raises(WebhookProxyError):
            await create_channel(transport)

    async def test_forward_posts_to_local_endpoint(self):
        received = {}

        def handler(request: httpx.Request) -> httpx.Response:
            received["url"] = str(request.url)
            received["event"] = request.headers["x-github-event"]
            return httpx.Response(200)

        proxy = WebhookProxy(url="https://smee.io/abc", port=9000)
        data = json.dumps({"x-github-event": "push", "body": {"ref": "main"}})
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            status_code = await proxy.forward(client, data)

        assert status_code == 200
        assert received == {"url": "http://localhost:9000/api/github/webhooks", "event": "push"}
        assert proxy.forwarded == 1

    async def test_direct_url_starts_no_relay(self):
        proxy = WebhookProxy()

        url = await proxy.connect("https://copilot.example.com/api/github/webhooks")

        assert url == "https://copilot.example.com/api/github/webhooks"
        assert proxy.status() == {"url": url, "connected": False, "forwarded": 0}


# =============================================================================
# TEST: OAUTH
# =============================================================================


class TestOAuth:
    """Tests for the dashboard login exchange."""

    async def test_exchange_code(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"access_token": "gho_abc"}))

        assert await exchange_code("code", "http://test/callback", transport=transport) == "gho_abc"

    async def test_exchange_code_error(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"error": "bad_verification_code"})
        )

        with pytest.raises(OAuthError):
            await exchange_code("code", "http://test/callback", transport=transport)

    async def test_fetch_user(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["authorization"] == "Bearer gho_abc"
            return httpx.Response(200, json={"id": 1, "login": "octocat", "name": "The Octocat"})

        user = await fetch_user("gho_abc", transport=httpx.MockTransport(handler))

        assert user.id == "1"
        assert user.username == "octocat"
        assert user.display_name == "The Octocat"
