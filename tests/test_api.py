"""
Tests for the HTTP API.

Stores and the GitHub App are replaced through dependency overrides; see
conftest.py.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from copilot_value.api import surveys as surveys_api
from copilot_value.api import webhooks as webhooks_api
from copilot_value.core.security import sign_webhook_payload
from copilot_value.integrations.github.client import InvalidPrivateKeyError
from copilot_value.services import (
    DuplicateDeliveryGuard,
    InvalidSurveyError,
    SurveyNotFoundError,
)


@pytest.fixture
def survey_service(app) -> AsyncMock:
    service = AsyncMock()
    app.dependency_overrides[surveys_api.get_survey_service] = lambda: service
    return service


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# =============================================================================
# TEST: SURVEYS
# =============================================================================


class TestSurveyRoutes:
    """Tests for /api/survey."""

    async def test_create(self, client, survey_service):
        survey_service.create_survey.return_value = {"id": 1, "userId": "alice", "status": "completed"}

        response = await client.post("/api/survey", json={"userId": "alice", "percentTimeSaved": 25})

        assert response.status_code == 201
        assert response.json()["id"] == 1
        payload = survey_service.create_survey.await_args.args[0]
        assert payload == {"userId": "alice", "percentTimeSaved": 25.0, "status": "completed"}

    async def test_create_rejects_out_of_range_percent(self, client, survey_service):
        response = await client.post("/api/survey", json={"userId": "alice", "percentTimeSaved": 120})

        assert response.status_code == 422

    async def test_get_missing(self, client, survey_service):
        survey_service.get_survey.side_effect = SurveyNotFoundError("Survey 99 not found")

        response = await client.get("/api/survey/99")

        assert response.status_code == 404

    async def test_delete(self, client, survey_service):
        response = await client.delete("/api/survey/1")

        assert response.status_code == 204
        survey_service.delete_survey.assert_awaited_once_with(1)

    async def test_recent_requires_valid_length(self, client, survey_service):
        survey_service.get_recent_surveys_with_good_reasons.side_effect = InvalidSurveyError("Invalid minReasonLength provided")

        response = await client.get("/api/survey/recent", params={"minReasonLength": 0})

        assert response.status_code == 400

    async def test_github_completion_defaults_to_completed(self, client, survey_service):
        survey_service.update_survey.return_value = {"id": 4, "userId": "alice", "status": "completed"}

        response = await client.post("/api/survey/4/github", json={"reason": "Wrote the tests"})

        assert response.status_code == 200
        payload = survey_service.update_survey.await_args.args[0]
        assert payload["id"] == 4
        assert payload["status"] == "completed"


# =============================================================================
# TEST: SEATS AND SETTINGS
# =============================================================================


class TestSeatRoutes:
    async def test_daily_activity_requires_days_inactive(self, client):
        response = await client.get("/api/seats/activity/daily")

        assert response.status_code == 400

    async def test_totals_source_is_validated(self, client):
        response = await client.get("/api/seats/activity/totals", params={"source": "weekly"})

        assert response.status_code == 422


class TestSettingRoutes:
    """Tests for /api/settings."""

    async def test_default_setting(self, client):
        response = await client.get("/api/settings/timezone")

        assert response.json() == {"name": "timezone", "value": "UTC"}

    async def test_unknown_setting(self, client):
        response = await client.get("/api/settings/favoriteColor")

        assert response.status_code == 404

    async def test_delete_default_only_setting(self, client, sql_session):
        sql_session.execute.return_value = SimpleNamespace(rowcount=0)

        response = await client.delete("/api/settings/timezone")

        assert response.status_code == 200
        assert response.json() == {"deleted": "timezone"}

    async def test_delete_unknown_setting(self, client, sql_session):
        sql_session.execute.return_value = SimpleNamespace(rowcount=0)

        response = await client.delete("/api/settings/favoriteColor")

        assert response.status_code == 404

    async def test_invalid_cron_expression(self, client):
        response = await client.put("/api/settings/metricsCronExpression", json={"value": "every hour"})

        assert response.status_code == 400


# =============================================================================
# TEST: SETUP AND STATUS
# =============================================================================


class TestSetupRoutes:
    async def test_existing_app_requires_every_field(self, client):
        response = await client.post("/api/setup/existing-app", json={"appId": "1"})

        assert response.status_code == 400
        assert response.json()["detail"] == "All fields are required"

    async def test_existing_app_with_malformed_key(self, client, github_app):
        github_app.connect = AsyncMock(side_effect=InvalidPrivateKeyError("Private key for app 1 is not a valid RSA PEM key"))

        response = await client.post(
            "/api/setup/existing-app",
            json={"appId": "1", "privateKey": "not-a-pem-key", "webhookSecret": "secret"},
        )

        assert response.status_code == 400
        assert "not a valid RSA PEM key" in response.json()["detail"]

    async def test_status(self, client):
        response = await client.get("/api/setup/status")

        body = response.json()
        assert body["isSetup"] is True
        assert body["dbConnected"] is False
        assert body["installations"][0]["account"]["login"] == "octo-org"

    async def test_install_requires_id_or_owner(self, client):
        response = await client.get("/api/setup/install")

        assert response.status_code == 400


class TestStatusRoutes:
    async def test_status_without_document_store(self, client):
        response = await client.get("/api/status")

        body = response.json()
        assert response.status_code == 200
        assert body["surveyCount"] == 0
        assert body["github"] is True

    async def test_unknown_component(self, client):
        response = await client.get("/api/status/not-a-component")

        assert response.status_code == 404


# =============================================================================
# TEST: AUTH
# =============================================================================


class TestAuthRoutes:
    """Tests for /api/auth with OAuth unconfigured."""

    async def test_user_is_anonymous(self, client):
        response = await client.get("/api/auth/user")

        body = response.json()
        assert body["isAuthenticated"] is True
        assert body["authDisabled"] is True
        assert body["user"]["username"] == "anonymous"

    async def test_login_is_rejected(self, client):
        response = await client.get("/api/auth/github")

        assert response.status_code == 400
        assert response.json()["error"] == "Authentication disabled"

    async def test_status(self, client):
        response = await client.get("/api/auth/status")

        assert response.json() == {"authEnabled": False, "isAuthenticated": True}

    async def test_data_routes_require_session_when_enabled(self, client, monkeypatch):
        monkeypatch.setattr(
            "copilot_value.core.dependencies.get_settings",
            lambda: SimpleNamespace(auth_enabled=True),
        )

        response = await client.get("/api/settings")

        assert response.status_code == 401


# =============================================================================
# TEST: WEBHOOKS
# =============================================================================


class TestWebhookRoute:
    """Tests for /api/github/webhooks."""

    @pytest.fixture(autouse=True)
    def fresh_guard(self, monkeypatch):
        monkeypatch.setattr(webhooks_api, "delivery_guard", DuplicateDeliveryGuard())

    @pytest.fixture
    def handle(self, monkeypatch) -> AsyncMock:
        handle = AsyncMock(return_value=True)
        monkeypatch.setattr(webhooks_api.WebhookHandler, "handle", handle)
        return handle

    async def test_bad_signature(self, client, github_app, handle):
        github_app.webhook_secret = "secret"

        response = await client.post(
            "/api/github/webhooks",
            content=b"{}",
            headers={"X-GitHub-Event": "ping", "X-Hub-Signature-256": "sha256=00"},
        )

        assert response.status_code == 401
        handle.assert_not_awaited()

    async def test_signed_delivery_is_handled_once(self, client, github_app, handle):
        github_app.webhook_secret = "secret"
        body = json.dumps({"action": "created", "installation": {"id": 3}}).encode()
        headers = {
            "X-GitHub-Event": "installation",
            "X-GitHub-Delivery": "delivery-1",
            "X-Hub-Signature-256": sign_webhook_payload(body, "secret"),
        }

        first = await client.post("/api/github/webhooks", content=body, headers=headers)
        second = await client.post("/api/github/webhooks", content=body, headers=headers)

        assert first.json() == {"handled": True, "duplicate": False}
        assert second.json() == {"handled": False, "duplicate": True}
        handle.assert_awaited_once_with("installation", {"action": "created", "installation": {"id": 3}})

    async def test_missing_event_header(self, client, handle):
        response = await client.post("/api/github/webhooks", content=b"{}")

        assert response.status_code == 400
