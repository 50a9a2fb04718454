"""Seats service: Copilot seat snapshots, members and activity rollups."""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from pymongo import InsertOne, UpdateOne
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import BulkWriteError

from ..schemas.base import ActivityPrecision
from .activity import (
    activity_total_update,
    bucket_member_activity,
    parse_datetime,
    rank_activity_totals,
    start_of_day,
)
from .adoption import DEFAULT_DAYS_INACTIVE, AdoptionService, calculate_adoption_totals

logger = logging.getLogger(__name__)

MEMBER_FIELDS = (
    "login",
    "node_id",
    "avatar_url",
    "gravatar_id",
    "url",
    "html_url",
    "followers_url",
    "following_url",
    "gists_url",
    "starred_url",
    "subscriptions_url",
    "organizations_url",
    "repos_url",
    "events_url",
    "received_events_url",
    "type",
    "site_admin",
)

SEAT_DATE_FIELDS = ("created_at", "updated_at", "pending_cancellation_date", "last_activity_at")

ASSIGNEE_PROJECTION = {"_id": 0, "login": 1, "id": 1, "avatar_url": 1, "name": 1, "url": 1, "html_url": 1}


def _date_range(field: str, since: datetime | None, until: datetime | None) -> dict[str, Any]:
    if not since and not until:
        return {}
    bounds: dict[str, datetime] = {}
    if since:
        bounds["$gte"] = since
    if until:
        bounds["$lte"] = until
    return {field: bounds}


class SeatsService:
    """Stores seat polls and answers activity questions about them."""

    def __init__(self, db: AsyncDatabase):
        self.db = db

    # =========================================================================
    # INGESTION
    # =========================================================================

    async def insert_seats(
        self,
        org: str,
        query_at: datetime,
        seats: list[dict[str, Any]],
        team: str | None = None,
        days_inactive: int = DEFAULT_DAYS_INACTIVE,
    ) -> dict[str, Any]:
        """Store one poll of ``GET /orgs/{org}/copilot/billing/seats``.

        Members are upserted, one seat document is inserted per assignment,
        members point at their newest seat, the adoption snapshot for
        ``query_at`` is written and the per-day activity totals are updated.
        """
        logger.info(f"Inserting {len(seats)} seat assignments for {org}")
        if not seats:
            return {"seats": [], "members": [], "adoption": None}

        now = datetime.now(timezone.utc)
        assignee_ids = [seat["assignee"]["id"] for seat in seats]

        member_ops = []
        for seat in seats:
            assignee = seat["assignee"]
            fields = {key: assignee.get(key) for key in MEMBER_FIELDS}
            fields["gravatar_id"] = fields["gravatar_id"] or ""
            fields.update(org=org, id=assignee["id"])
            if team:
                fields["team"] = team
            # updatedAt tracks the teams and members sync, not seat polls
            member_ops.append(
                UpdateOne(
                    {"org": org, "id": assignee["id"]},
                    {"$set": fields, "$setOnInsert": {"createdAt": now, "updatedAt": now}},
                    upsert=True,
                )
            )
        logger.debug(f"Writing {len(member_ops)} members")
        await self.db.members.bulk_write(member_ops)

        members = await self.db.members.find({"org": org, "id": {"$in": assignee_ids}}).to_list()
        member_ids = {member["id"]: member["_id"] for member in members}

        seat_docs = []
        for seat in seats:
            doc = {key: value for key, value in seat.items() if key != "assignee"}
            for key in SEAT_DATE_FIELDS:
                if key in doc:
                    doc[key] = parse_datetime(doc[key])
            doc.update(
                queryAt=query_at,
                org=org,
                team=team,
                assignee=member_ids.get(seat["assignee"]["id"]),
                assignee_id=seat["assignee"]["id"],
                assignee_login=seat["assignee"].get("login"),
                createdAt=now,
                updatedAt=now,
            )
            seat_docs.append(doc)

        try:
            result = await self.db.seats.bulk_write(
                [InsertOne(doc) for doc in seat_docs], ordered=False
            )
            logger.debug(f"Inserted {result.inserted_count} seats")
        except BulkWriteError as e:
            # Re-running a poll for the same queryAt hits the unique index
            logger.warning(
                f"Seat insert for {org} at {query_at.isoformat()} partially failed: "
                f"{len(e.details.get('writeErrors', []))} errors"
            )

        stored_seats = await (
            self.db.seats.find({"queryAt": query_at, "org": org, "assignee_id": {"$in": assignee_ids}})
            .sort("createdAt", -1)
            .limit(len(seat_docs))
            .to_list()
        )

        await self.db.members.bulk_write(
            [
                UpdateOne({"org": org, "id": seat["assignee_id"]}, {"$set": {"seat": seat["_id"]}})
                for seat in stored_seats
            ]
        )

        adoption = {
            "enterprise": None,
            "org": org,
            "team": None,
            "date": query_at,
            **calculate_adoption_totals(query_at, seat_docs, days_inactive),
            "seats": [
                {
                    "login": seat.get("assignee_login"),
                    "last_activity_at": seat.get("last_activity_at"),
                    "last_activity_editor": seat.get("last_activity_editor"),
                    "_assignee": seat.get("assignee"),
                    "_seat": seat["_id"],
                }
                for seat in stored_seats
            ],
        }
        logger.debug(f"Writing adoption with {len(adoption['seats'])} seats")
        await AdoptionService(self.db).create_adoption(adoption)

        day = start_of_day(query_at)
        activity_ops = [
            UpdateOne(
                {
                    "org": org,
                    "assignee": seat.get("assignee"),
                    "assignee_id": seat["assignee_id"],
                    "assignee_login": seat.get("assignee_login"),
                    "date": day,
                },
                activity_total_update(
                    seat.get("last_activity_at"),
                    seat.get("last_activity_editor"),
                    day,
                ),
                upsert=True,
            )
            for seat in stored_seats
        ]
        if activity_ops:
            logger.debug(f"Writing {len(activity_ops)} activity updates")
            await self.db.activity_totals.bulk_write(activity_ops)

        return {"seats": stored_seats, "members": members, "adoption": adoption}

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_all_seats(self, org: str | None = None) -> list[dict[str, Any]]:
        """Members with their newest seat, most recently active first."""
        pipeline: list[dict[str, Any]] = [
            {"$match": {"org": org} if org else {}},
            {
                "$lookup": {
                    "from": "seats",
                    "localField": "seat",
                    "foreignField": "_id",
                    "as": "seat",
                }
            },
            {"$unwind": {"path": "$seat", "preserveNullAndEmptyArrays": True}},
            {"$sort": {"seat.last_activity_at": -1}},
            {
                "$project": {
                    "_id": 0,
                    "org": 1,
                    "login": 1,
                    "id": 1,
                    "name": 1,
                    "url": 1,
                    "avatar_url": 1,
                    "seat": 1,
                }
            },
            {"$project": {"seat._id": 0}},
        ]
        cursor = await self.db.members.aggregate(pipeline)
        return await cursor.to_list()

    async def _find_member_id(self, identifier: str) -> int | None:
        if identifier.isdigit():
            return int(identifier)
        member = await self.db.members.find_one({"login": identifier})
        if member is None:
            pattern = re.compile(f"^{re.escape(identifier)}$", re.IGNORECASE)
            member = await self.db.members.find_one({"login": pattern})
        return member["id"] if member else None

    async def get_seat(
        self,
        identifier: str,
        since: datetime | None = None,
        until: datetime | None = None,
        org: str | None = None,
    ) -> list[dict[str, Any]]:
        """Seat history of one member, looked up by GitHub id or login."""
        assignee_id = await self._find_member_id(identifier)
        if assignee_id is None:
            logger.debug(f"No member found for {identifier}")
            return []

        query: dict[str, Any] = {"assignee_id": assignee_id}
        if org:
            query["org"] = org
        query.update(_date_range("createdAt", since, until))

        cursor = await self.db.seats.aggregate(
            [
                {"$match": query},
                {"$sort": {"createdAt": 1}},
                {
                    "$lookup": {
                        "from": "members",
                        "localField": "assignee",
                        "foreignField": "_id",
                        "pipeline": [{"$project": ASSIGNEE_PROJECTION}],
                        "as": "assignee",
                    }
                },
                {"$unwind": {"path": "$assignee", "preserveNullAndEmptyArrays": True}},
            ]
        )
        results = await cursor.to_list()
        logger.debug(f"Found {len(results)} seat records for {identifier}")
        return results

    async def get_members_activity(
        self,
        org: str | None = None,
        days_inactive: int = DEFAULT_DAYS_INACTIVE,
        precision: ActivityPrecision | str = ActivityPrecision.DAY,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> dict[str, dict[str, Any]]:
        """Active/inactive member counts per day, hour or minute."""
        match: dict[str, Any] = {"last_activity_at": {"$ne": None}}
        if org:
            match["org"] = org
        match.update(_date_range("createdAt", since, until))

        cursor = await self.db.seats.aggregate(
            [
                {"$match": match},
                {"$sort": {"createdAt": 1}},
                {
                    "$lookup": {
                        "from": "members",
                        "localField": "assignee",
                        "foreignField": "_id",
                        "as": "memberDetails",
                    }
                },
                {"$unwind": "$memberDetails"},
                {
                    "$group": {
                        "_id": "$memberDetails._id",
                        "login": {"$first": "$memberDetails.login"},
                        "id": {"$first": "$memberDetails.id"},
                        "activity": {
                            "$push": {
                                "last_activity_at": "$last_activity_at",
                                "createdAt": "$createdAt",
                                "last_activity_editor": "$last_activity_editor",
                            }
                        },
                    }
                },
            ]
        )
        members = await cursor.to_list()
        return bucket_member_activity(members, days_inactive, precision)

    async def get_members_activity_totals(
        self,
        org: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[tuple[str, int]]:
        """Estimated active milliseconds per member, from raw seat snapshots."""
        seat_match: dict[str, Any] = {"$expr": {"$eq": ["$assignee", "$$member_id"]}}
        seat_match.update(_date_range("createdAt", since, until))

        cursor = await self.db.members.aggregate(
            [
                {"$match": {"org": org} if org else {}},
                {
                    "$lookup": {
                        "from": "seats",
                        "let": {"member_id": "$_id"},
                        "pipeline": [
                            {"$match": seat_match},
                            {"$sort": {"createdAt": 1}},
                            {"$project": {"_id": 0, "last_activity_at": 1}},
                        ],
                        "as": "activity",
                    }
                },
                {"$project": {"_id": 0, "login": 1, "activity": 1}},
            ]
        )
        return rank_activity_totals(await cursor.to_list())

    async def get_members_activity_totals_from_daily(
        self,
        org: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Per-member totals summed from the daily ``activity_totals`` rollup."""
        match: dict[str, Any] = {}
        if org:
            match["org"] = org
        match.update(_date_range("date", since, until))

        cursor = await self.db.activity_totals.aggregate(
            [
                {"$match": match},
                {
                    "$group": {
                        "_id": {"date": "$date", "login": "$assignee_login"},
                        "daily_time": {"$sum": "$total_active_time_ms"},
                        "last_activity_at": {"$max": "$last_activity_at"},
                        "last_activity_editor": {"$last": "$last_activity_editor"},
                        "assignee_id": {"$first": "$assignee_id"},
                    }
                },
                {
                    "$lookup": {
                        "from": "members",
                        "localField": "_id.login",
                        "foreignField": "login",
                        "as": "memberDetails",
                    }
                },
                {"$unwind": {"path": "$memberDetails", "preserveNullAndEmptyArrays": True}},
                {
                    "$group": {
                        "_id": "$_id.login",
                        "total_time": {"$sum": "$daily_time"},
                        "last_activity_at": {"$max": "$last_activity_at"},
                        "last_activity_editor": {"$last": "$last_activity_editor"},
                        "assignee_id": {"$first": "$assignee_id"},
                        "avatar_url": {"$first": "$memberDetails.avatar_url"},
                        "name": {"$first": "$memberDetails.name"},
                        "url": {"$first": "$memberDetails.url"},
                        "html_url": {"$first": "$memberDetails.html_url"},
                        "team": {"$first": "$memberDetails.team"},
                        "org": {"$first": "$memberDetails.org"},
                        "type": {"$first": "$memberDetails.type"},
                    }
                },
                {"$sort": {"total_time": -1}},
                {"$limit": limit},
                {
                    "$project": {
                        "_id": 0,
                        "login": "$_id",
                        "total_time": 1,
                        "last_activity_at": 1,
                        "last_activity_editor": 1,
                        "assignee_id": 1,
                        "avatar_url": 1,
                        "name": 1,
                        "url": 1,
                        "html_url": 1,
                        "team": 1,
                        "org": 1,
                        "type": 1,
                    }
                },
            ]
        )
        return await cursor.to_list()

    async def get_oldest_seat(self) -> dict[str, Any] | None:
        return await self.db.seats.find_one({}, sort=[("createdAt", 1)])
