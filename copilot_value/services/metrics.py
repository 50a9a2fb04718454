"""Metrics service: Copilot usage metrics per day.

Raw days from ``GET /orgs/{org}/copilot/metrics`` go to the document store
with section totals added; a flat per-day rollup goes to ``metrics_daily``.
"""

import copy
import logging
from datetime import date, datetime, timezone
from typing import Any

from pymongo.asynchronous.database import AsyncDatabase
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import MetricDaily
from .activity import parse_datetime

logger = logging.getLogger(__name__)

ROLLUP_COLUMNS = (
    "total_active_users",
    "total_engaged_users",
    "code_suggestions",
    "code_acceptances",
    "code_lines_suggested",
    "code_lines_accepted",
    "ide_chats",
    "ide_chat_copy_events",
    "ide_chat_insertion_events",
    "dotcom_chats",
    "pr_summaries_created",
)

COMPLETION_KEYS = (
    "total_code_suggestions",
    "total_code_acceptances",
    "total_code_lines_suggested",
    "total_code_lines_accepted",
)
IDE_CHAT_KEYS = ("total_chats", "total_chat_copy_events", "total_chat_insertion_events")


# =============================================================================
# PURE HELPERS
# =============================================================================


def _sum(items: list[dict[str, Any]] | None, key: str) -> int:
    return sum((item.get(key) or 0) for item in items or [])


def _models(parents: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    return [model for parent in parents or [] for model in parent.get("models") or []]


def _languages(models: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [language for model in models for language in model.get("languages") or []]


def add_section_totals(day: dict[str, Any]) -> dict[str, Any]:
    """Copy of a metrics day with totals on each section, summed from its breakdown."""
    day = copy.deepcopy(day)

    completions = day.get("copilot_ide_code_completions") or {}
    completion_models = _models(completions.get("editors"))
    for editor in completions.get("editors") or []:
        for model in editor.get("models") or []:
            for key in COMPLETION_KEYS:
                model[key] = _sum(model.get("languages"), key)
        for key in COMPLETION_KEYS:
            editor[key] = _sum(editor.get("models"), key)
    for key in COMPLETION_KEYS:
        completions[key] = _sum(_languages(completion_models), key)
    day["copilot_ide_code_completions"] = completions

    ide_chat = day.get("copilot_ide_chat") or {}
    for editor in ide_chat.get("editors") or []:
        for key in IDE_CHAT_KEYS:
            editor[key] = _sum(editor.get("models"), key)
    for key in IDE_CHAT_KEYS:
        ide_chat[key] = _sum(_models(ide_chat.get("editors")), key)
    day["copilot_ide_chat"] = ide_chat

    dotcom_chat = day.get("copilot_dotcom_chat") or {}
    dotcom_chat["total_chats"] = _sum(dotcom_chat.get("models"), "total_chats")
    day["copilot_dotcom_chat"] = dotcom_chat

    pull_requests = day.get("copilot_dotcom_pull_requests") or {}
    for repository in pull_requests.get("repositories") or []:
        repository["total_pr_summaries_created"] = _sum(repository.get("models"), "total_pr_summaries_created")
    pull_requests["total_pr_summaries_created"] = _sum(
        _models(pull_requests.get("repositories")), "total_pr_summaries_created"
    )
    day["copilot_dotcom_pull_requests"] = pull_requests

    return day


def summarize_day(day: dict[str, Any]) -> dict[str, int]:
    """Flat totals for one metrics day, matching the ``metrics_daily`` columns."""
    completions = day.get("copilot_ide_code_completions") or {}
    completion_languages = _languages(_models(completions.get("editors")))
    ide_chat_models = _models((day.get("copilot_ide_chat") or {}).get("editors"))
    dotcom_models = (day.get("copilot_dotcom_chat") or {}).get("models")
    pr_models = _models((day.get("copilot_dotcom_pull_requests") or {}).get("repositories"))

    return {
        "total_active_users": day.get("total_active_users") or 0,
        "total_engaged_users": day.get("total_engaged_users") or 0,
        "code_suggestions": _sum(completion_languages, "total_code_suggestions"),
        "code_acceptances": _sum(completion_languages, "total_code_acceptances"),
        "code_lines_suggested": _sum(completion_languages, "total_code_lines_suggested"),
        "code_lines_accepted": _sum(completion_languages, "total_code_lines_accepted"),
        "ide_chats": _sum(ide_chat_models, "total_chats"),
        "ide_chat_copy_events": _sum(ide_chat_models, "total_chat_copy_events"),
        "ide_chat_insertion_events": _sum(ide_chat_models, "total_chat_insertion_events"),
        "dotcom_chats": _sum(dotcom_models, "total_chats"),
        "pr_summaries_created": _sum(pr_models, "total_pr_summaries_created"),
    }


def _day_start(value: Any) -> datetime:
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError("Metrics day has no date")
    return parsed.replace(hour=0, minute=0, second=0, microsecond=0)


class MetricsService:
    """Stores and queries usage metrics in both stores."""

    def __init__(self, db: AsyncDatabase, session: AsyncSession):
        self.db = db
        self.session = session

    async def insert_metrics(
        self,
        org: str,
        days: list[dict[str, Any]],
        team: str | None = None,
    ) -> list[MetricDaily]:
        """Upsert raw metrics days and their relational rollup rows."""
        now = datetime.now(timezone.utc)
        rollups: list[MetricDaily] = []

        for raw_day in days:
            day_start = _day_start(raw_day.get("date"))
            document = add_section_totals(raw_day)
            document.update(org=org, team=team, date=day_start, updatedAt=now)
            await self.db.metrics.update_one(
                {"org": org, "team": team, "date": day_start},
                {"$set": document, "$setOnInsert": {"createdAt": now}},
                upsert=True,
            )
            rollups.append(await self._upsert_rollup(org, team or "", day_start.date(), summarize_day(raw_day)))

        await self.session.flush()
        logger.info(f"Stored {len(days)} metrics days for {org}{f'/{team}' if team else ''}")
        return rollups

    async def _upsert_rollup(
        self,
        org: str,
        team: str,
        day: date,
        totals: dict[str, int],
    ) -> MetricDaily:
        result = await self.session.execute(
            select(MetricDaily).where(
                MetricDaily.org == org,
                MetricDaily.team == team,
                MetricDaily.date == day,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = MetricDaily(org=org, team=team, date=day, **totals)
            self.session.add(row)
        else:
            for column, value in totals.items():
                setattr(row, column, value)
        return row

    async def get_metrics(
        self,
        org: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        team: str | None = None,
    ) -> list[dict[str, Any]]:
        """Raw metrics days ordered by date; org-wide days unless ``team`` is given."""
        query: dict[str, Any] = {"team": team}
        if org:
            query["org"] = org
        if since or until:
            query["date"] = {}
            if since:
                query["date"]["$gte"] = since
            if until:
                query["date"]["$lte"] = until
        cursor = self.db.metrics.find(query, {"_id": 0}).sort("date", 1)
        return await cursor.to_list()

    async def get_metrics_totals(
        self,
        org: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        team: str | None = None,
    ) -> dict[str, int]:
        """Sum of each rollup column over the period."""
        query = select(
            *(func.coalesce(func.sum(getattr(MetricDaily, column)), 0).label(column) for column in ROLLUP_COLUMNS)
        ).where(MetricDaily.team == (team or ""))
        if org:
            query = query.where(MetricDaily.org == org)
        if since:
            query = query.where(MetricDaily.date >= since.date())
        if until:
            query = query.where(MetricDaily.date <= until.date())

        result = await self.session.execute(query)
        row = result.one()
        return {column: int(getattr(row, column)) for column in ROLLUP_COLUMNS}
