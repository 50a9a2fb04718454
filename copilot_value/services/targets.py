"""Target values: the configured current/target/max per metric."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import TargetValues

logger = logging.getLogger(__name__)

TARGET_GROUPS = ("org", "user", "impact")


def default_targets(adoptions: list[dict[str, Any]] | None = None) -> dict[str, dict[str, dict[str, float]]]:
    """Starting targets derived from the ten best adoption snapshots."""
    top = sorted(adoptions or [], key=lambda a: a.get("totalActive") or 0, reverse=True)[:10]
    count = len(top) or 1
    avg_seats = round(sum(a.get("totalSeats") or 0 for a in top) / count)
    avg_active = round(sum(a.get("totalActive") or 0 for a in top) / count)
    adopted_percent = round(avg_active / avg_seats * 100) if avg_seats else 0

    def target(current: float = 0, goal: float = 0, max_value: float = 0) -> dict[str, float]:
        return {"current": current, "target": goal, "max": max_value}

    return {
        "org": {
            "seats": target(avg_seats, avg_seats, avg_seats),
            "adoptedDevs": target(avg_active, avg_active, avg_seats),
            "monthlyDevsReportingTimeSavings": target(max_value=avg_seats),
            "percentOfSeatsReportingTimeSavings": target(max_value=100),
            "percentOfSeatsAdopted": target(adopted_percent, adopted_percent, 100),
            "percentOfMaxAdopted": target(max_value=100),
        },
        "user": {
            "dailySuggestions": target(),
            "dailyAcceptances": target(),
            "dailyChatTurns": target(),
            "dailyDotComChats": target(),
            "weeklyPRSummaries": target(),
            "weeklyTimeSavedHrs": target(),
        },
        "impact": {
            "monthlyTimeSavingsHrs": target(),
            "annualTimeSavingsAsDollars": target(),
            "productivityOrThroughputBoostPercent": target(max_value=100),
        },
    }


class TargetsService:
    """Reads and writes the single targets row."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_row(self) -> TargetValues | None:
        result = await self.session.execute(select(TargetValues).order_by(TargetValues.id).limit(1))
        return result.scalar_one_or_none()

    async def get_targets(self) -> dict[str, Any] | None:
        row = await self._get_row()
        return row.to_dict() if row else None

    async def update_targets(self, data: dict[str, Any]) -> dict[str, Any]:
        """Upsert the targets row; groups missing from ``data`` are kept."""
        row = await self._get_row()
        if row is None:
            row = TargetValues(**{group: data.get(group) or {} for group in TARGET_GROUPS})
            self.session.add(row)
        else:
            for group in TARGET_GROUPS:
                if group in data and data[group] is not None:
                    setattr(row, group, data[group])
        await self.session.flush()
        await self.session.refresh(row)
        logger.info("Target values updated")
        return row.to_dict()

    async def initialize(self, adoptions: list[dict[str, Any]] | None = None) -> None:
        """Seed default targets when none are stored."""
        if await self._get_row() is None:
            await self.update_targets(default_targets(adoptions))
            logger.info("Seeded default target values")
