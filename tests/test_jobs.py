"""Tests for the metrics polling job."""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from copilot_value.jobs import metrics_cron
from copilot_value.jobs import query as query_module
from copilot_value.jobs.query import MetricsQuery
from copilot_value.services.teams import EPOCH, NO_TEAM_ID


class TestMetricsQuery:
    """Tests for one organization's polling run."""

    async def test_failing_step_does_not_stop_the_others(self):
        query = MetricsQuery("octo-org", AsyncMock())
        query.query_copilot_seats = AsyncMock(side_effect=RuntimeError("rate limited"))
        query.query_copilot_usage_metrics = AsyncMock(return_value=28)
        query.query_teams_and_members = AsyncMock(return_value=True)

        results = await query.run(force_teams=True)

        assert results["seats"] is None
        assert results["metrics"] == 28
        assert results["teams"] is True
        assert results["errors"] == ["octo-org seats query failed: rate limited"]
        query.query_teams_and_members.assert_awaited_once_with(force=True)
        assert query.last_run_at is not None


class TestTeamsSync:
    """Tests for when a polling run syncs teams and members."""

    @pytest.fixture
    def stores(self, monkeypatch) -> SimpleNamespace:
        """Stores where seat polls write members the way the seats service does."""
        state = SimpleNamespace(members_updated_at=EPOCH, teams=MagicMock())

        async def insert_seats(org, query_at, seats, days_inactive=30):
            if state.members_updated_at == EPOCH:
                state.members_updated_at = datetime.now(timezone.utc)

        @asynccontextmanager
        async def session_context():
            yield AsyncMock()

        state.teams.get_last_updated_at = AsyncMock(side_effect=lambda org: state.members_updated_at)
        state.teams.update_teams = AsyncMock()
        state.teams.update_members = AsyncMock()
        state.teams.add_member_to_team = AsyncMock()

        settings_service = MagicMock()
        settings_service.get_setting = AsyncMock(return_value=30)
        monkeypatch.setattr(query_module, "get_mongo_db", MagicMock)
        monkeypatch.setattr(query_module, "get_session_context", session_context)
        monkeypatch.setattr(query_module, "SettingsService", lambda session: settings_service)
        monkeypatch.setattr(query_module, "SeatsService", lambda db: SimpleNamespace(insert_seats=insert_seats))
        monkeypatch.setattr(
            query_module, "MetricsService", lambda db, session: SimpleNamespace(insert_metrics=AsyncMock())
        )
        monkeypatch.setattr(query_module, "TeamsService", lambda db: state.teams)
        return state

    @pytest.fixture
    def client(self) -> AsyncMock:
        pages = {
            "/orgs/octo-org/copilot/billing/seats": [{"assignee": {"id": 1, "login": "alice"}}],
            "/orgs/octo-org/teams": [{"id": 10, "slug": "core"}],
            "/orgs/octo-org/teams/core/members": [{"id": 1, "login": "alice"}],
            "/orgs/octo-org/members": [{"id": 1, "login": "alice"}, {"id": 2, "login": "bob"}],
        }
        client = AsyncMock()
        client.paginate.side_effect = lambda path, **kwargs: pages[path]
        client.get.return_value = []
        return client

    async def test_first_run_syncs_teams_after_seats(self, stores, client):
        results = await MetricsQuery("octo-org", client).run()

        paths = [call.args[0] for call in client.paginate.await_args_list]
        assert results["errors"] == []
        assert results["seats"] == 1
        assert results["teams"] is True
        assert paths[0] == "/orgs/octo-org/copilot/billing/seats"
        assert "/orgs/octo-org/teams" in paths
        assert "/orgs/octo-org/members" in paths
        stores.teams.add_member_to_team.assert_any_await(NO_TEAM_ID, 2)

    async def test_recent_sync_is_skipped(self, stores, client):
        stores.members_updated_at = datetime.now(timezone.utc) - timedelta(hours=2)

        results = await MetricsQuery("octo-org", client).run()

        paths = [call.args[0] for call in client.paginate.await_args_list]
        assert results["teams"] is False
        assert paths == ["/orgs/octo-org/copilot/billing/seats"]

    async def test_day_old_sync_is_refreshed(self, stores, client):
        stores.members_updated_at = datetime.now(timezone.utc) - timedelta(days=2)

        results = await MetricsQuery("octo-org", client).run()

        assert results["teams"] is True


class TestRunMetricsJob:
    """Tests for the job across installations."""

    @pytest.fixture
    def send_alert(self, monkeypatch) -> AsyncMock:
        send_alert = AsyncMock()
        monkeypatch.setattr(metrics_cron, "send_alert", send_alert)
        return send_alert

    async def test_totals_across_installations(self, send_alert):
        app = MagicMock()
        app.installations = [object(), object()]
        app.run_queries = AsyncMock(
            return_value=[
                {"seats": 10, "metrics": 28, "teams": True, "errors": []},
                {"seats": 5, "metrics": None, "teams": False, "errors": ["b metrics query failed: 404"]},
            ]
        )

        results = await metrics_cron.run_metrics_job(app)

        assert results["installations"] == 2
        assert results["seats"] == 15
        assert results["metrics_days"] == 28
        assert results["teams_synced"] == 1
        assert results["errors"] == ["b metrics query failed: 404"]
        assert send_alert.await_args.kwargs["severity"] == "warning"

    async def test_crash_alerts_and_raises(self, send_alert):
        app = MagicMock()
        app.installations = []
        app.run_queries = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await metrics_cron.run_metrics_job(app)

        assert send_alert.await_args.kwargs["severity"] == "critical"

    async def test_alert_without_webhook_only_logs(self, monkeypatch):
        monkeypatch.delenv("ALERT_WEBHOOK_URL", raising=False)
        post = AsyncMock()
        monkeypatch.setattr(metrics_cron, "_send_webhook_alert", post)

        await metrics_cron.send_alert("Title", "Message")

        post.assert_not_awaited()
