"""Adoption snapshots: how many seats were active at each poll."""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from pymongo.asynchronous.database import AsyncDatabase

from .activity import as_utc, parse_datetime

logger = logging.getLogger(__name__)

DEFAULT_DAYS_INACTIVE = 30


def calculate_adoption_totals(
    query_at: datetime,
    seats: Iterable[dict[str, Any]],
    days_inactive: int = DEFAULT_DAYS_INACTIVE,
) -> dict[str, int]:
    """Count active and inactive seats as of ``query_at``.

    A seat is active when its ``last_activity_at`` is at most
    ``days_inactive`` days before the query time.
    """
    cutoff = as_utc(query_at) - timedelta(days=days_inactive)
    total = active = 0
    for seat in seats:
        total += 1
        last_activity_at = parse_datetime(seat.get("last_activity_at"))
        if last_activity_at is not None and last_activity_at >= cutoff:
            active += 1
    return {
        "totalSeats": total,
        "totalActive": active,
        "totalInactive": total - active,
    }


class AdoptionService:
    """Read and write adoption documents."""

    def __init__(self, db: AsyncDatabase):
        self.db = db

    async def create_adoption(self, adoption: dict[str, Any]) -> dict[str, Any]:
        """Upsert on (enterprise, org, team, date)."""
        now = datetime.now(timezone.utc)
        logger.debug(
            f"Upserting adoption for org={adoption.get('org')} at {adoption['date']}: "
            f"{adoption.get('totalActive')}/{adoption.get('totalSeats')} active"
        )
        key = {
            "enterprise": adoption.get("enterprise"),
            "org": adoption.get("org"),
            "team": adoption.get("team"),
            "date": adoption["date"],
        }
        await self.db.adoptions.update_one(
            key,
            {"$set": {**adoption, "updatedAt": now}, "$setOnInsert": {"createdAt": now}},
            upsert=True,
        )
        return adoption

    async def get_all_adoptions(
        self,
        enterprise: str | None = None,
        org: str | None = None,
        team: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        include_seats: bool = False,
    ) -> list[dict[str, Any]]:
        query: dict[str, Any] = {}
        if enterprise:
            query["enterprise"] = enterprise
        if org:
            query["org"] = org
        if team:
            query["team"] = team
        if since or until:
            query["date"] = {}
            if since:
                query["date"]["$gte"] = since
            if until:
                query["date"]["$lte"] = until

        projection: dict[str, int] = {"_id": 0}
        if not include_seats:
            projection["seats"] = 0

        cursor = self.db.adoptions.find(query, projection).sort("date", 1)
        return await cursor.to_list()
