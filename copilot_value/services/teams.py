"""Teams service: GitHub teams, organization members and team membership."""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from pymongo import UpdateOne
from pymongo.asynchronous.database import AsyncDatabase

logger = logging.getLogger(__name__)

NO_TEAM_ID = -1
MEMBER_SEARCH_LIMIT = 10
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

MEMBER_SUMMARY = {"_id": 0, "login": 1, "avatar_url": 1}


# =============================================================================
# EXCEPTIONS
# =============================================================================


class TeamsError(Exception):
    """Base exception for team and member operations."""
    pass


class TeamNotFoundError(TeamsError):
    """Team does not exist."""
    pass


class MemberNotFoundError(TeamsError):
    """Member does not exist."""
    pass


class TeamsService:
    """Keeps the teams, members and team_members collections in sync with GitHub."""

    def __init__(self, db: AsyncDatabase):
        self.db = db

    # =========================================================================
    # SYNC
    # =========================================================================

    async def update_teams(self, org: str, teams: list[dict[str, Any]]) -> None:
        """Upsert teams by GitHub id, then link parents, then the "No Team" record."""
        now = datetime.now(timezone.utc)
        for team in teams:
            fields = {key: value for key, value in team.items() if key not in ("id", "parent")}
            fields.update(org=org, githubId=team["id"], updatedAt=now)
            await self.db.teams.update_one(
                {"githubId": team["id"]},
                {"$set": fields, "$setOnInsert": {"createdAt": now}},
                upsert=True,
            )

        for team in teams:
            parent_id = (team.get("parent") or {}).get("id")
            if not parent_id:
                continue
            parent = await self.db.teams.find_one({"githubId": parent_id}, {"_id": 1})
            if parent:
                await self.db.teams.update_one({"githubId": team["id"]}, {"$set": {"parent": parent["_id"]}})

        await self.db.teams.update_one(
            {"githubId": NO_TEAM_ID},
            {
                "$set": {
                    "org": org,
                    "name": "No Team",
                    "slug": "no-team",
                    "description": "No team assigned",
                    "node_id": "",
                    "permission": "",
                    "url": "",
                    "html_url": "",
                    "members_url": "",
                    "repositories_url": "",
                    "githubId": NO_TEAM_ID,
                    "updatedAt": now,
                },
                "$setOnInsert": {"createdAt": now},
            },
            upsert=True,
        )
        logger.info(f"Updated {len(teams)} teams for {org}")

    async def update_members(self, org: str, members: list[dict[str, Any]]) -> None:
        if not members:
            return
        now = datetime.now(timezone.utc)
        operations = [
            UpdateOne(
                {"org": org, "id": member["id"]},
                {"$set": {**member, "org": org, "updatedAt": now}, "$setOnInsert": {"createdAt": now}},
                upsert=True,
            )
            for member in members
        ]
        await self.db.members.bulk_write(operations, ordered=False)
        logger.debug(f"Upserted {len(members)} members for {org}")

    async def add_member_to_team(self, team_id: int, member_id: int) -> dict[str, Any] | None:
        """Link a member to a team, both given by GitHub id."""
        team = await self.db.teams.find_one({"githubId": team_id}, {"_id": 1})
        member = await self.db.members.find_one({"id": member_id}, {"_id": 1})
        if not team or not member:
            logger.error(f"Team {team_id} or member {member_id} not found")
            return None

        link = {"team": team["_id"], "member": member["_id"]}
        await self.db.team_members.update_one(link, {"$set": link}, upsert=True)
        return link

    async def delete_member_from_team(self, team_id: int, member_id: int) -> bool:
        team = await self.db.teams.find_one({"githubId": team_id}, {"_id": 1})
        member = await self.db.members.find_one({"id": member_id}, {"_id": 1})
        deleted = 0
        if team and member:
            result = await self.db.team_members.delete_one({"team": team["_id"], "member": member["_id"]})
            deleted = result.deleted_count
        if deleted == 0:
            raise MemberNotFoundError(f"Member {member_id} is not part of team {team_id}")
        return True

    async def delete_member(self, member_id: int) -> bool:
        member = await self.db.members.find_one({"id": member_id}, {"_id": 1})
        if member:
            await self.db.team_members.delete_many({"member": member["_id"]})
        result = await self.db.members.delete_one({"id": member_id})
        if result.deleted_count == 0:
            raise MemberNotFoundError(f"Member with ID {member_id} not found")
        return True

    async def delete_team(self, team_id: int) -> bool:
        team = await self.db.teams.find_one({"githubId": team_id}, {"_id": 1})
        if team:
            await self.db.team_members.delete_many({"team": team["_id"]})
        result = await self.db.teams.delete_one({"githubId": team_id})
        if result.deleted_count == 0:
            raise TeamNotFoundError(f"Team with ID {team_id} not found")
        return True

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_last_updated_at(self, org: str | None = None) -> datetime:
        """When members were last synced; the epoch when never."""
        member = await self.db.members.find_one(
            {"org": org} if org else {},
            {"updatedAt": 1},
            sort=[("updatedAt", -1)],
        )
        if member and member.get("updatedAt"):
            return member["updatedAt"]
        return EPOCH

    async def get_member_by_login(self, login: str, exact: bool = True) -> dict[str, Any] | None:
        if exact:
            query: dict[str, Any] = {"login": login}
        else:
            query = {"login": re.compile(f"^{re.escape(login)}$", re.IGNORECASE)}
        return await self.db.members.find_one(
            query, {"_id": 0, "login": 1, "name": 1, "url": 1, "avatar_url": 1}
        )

    async def get_all_members(self, org: str | None = None) -> list[dict[str, Any]]:
        """Members sorted by login, each with their latest seat."""
        cursor = await self.db.members.aggregate(
            [
                {"$match": {"org": org} if org else {}},
                {
                    "$lookup": {
                        "from": "seats",
                        "localField": "seat",
                        "foreignField": "_id",
                        "pipeline": [{"$project": {"_id": 0, "__v": 0}}],
                        "as": "seat",
                    }
                },
                {"$unwind": {"path": "$seat", "preserveNullAndEmptyArrays": True}},
                {"$project": {"_id": 0, "login": 1, "org": 1, "name": 1, "url": 1, "avatar_url": 1, "seat": 1}},
                {"$sort": {"login": 1}},
            ]
        )
        return await cursor.to_list()

    async def get_teams(self, org: str | None = None) -> list[dict[str, Any]]:
        """Teams with their members and child teams, sorted by name."""
        members_lookup = {
            "$lookup": {
                "from": "team_members",
                "localField": "_id",
                "foreignField": "team",
                "pipeline": [
                    {
                        "$lookup": {
                            "from": "members",
                            "localField": "member",
                            "foreignField": "_id",
                            "pipeline": [{"$project": MEMBER_SUMMARY}],
                            "as": "member",
                        }
                    },
                    {"$unwind": "$member"},
                    {"$replaceRoot": {"newRoot": "$member"}},
                    {"$sort": {"login": 1}},
                ],
                "as": "members",
            }
        }
        cursor = await self.db.teams.aggregate(
            [
                {"$match": {"org": org} if org else {}},
                members_lookup,
                {
                    "$lookup": {
                        "from": "teams",
                        "localField": "_id",
                        "foreignField": "parent",
                        "pipeline": [
                            members_lookup,
                            {
                                "$project": {
                                    "_id": 0,
                                    "name": 1,
                                    "org": 1,
                                    "slug": 1,
                                    "description": 1,
                                    "html_url": 1,
                                    "members": 1,
                                }
                            },
                        ],
                        "as": "children",
                    }
                },
                {"$sort": {"name": 1}},
            ]
        )
        return await cursor.to_list()

    async def search_members_by_login(self, query: str) -> list[dict[str, Any]]:
        """Case-insensitive substring search on login."""
        if not query:
            return []
        cursor = self.db.members.find(
            {"login": {"$regex": re.escape(query), "$options": "i"}},
            {"_id": 0, "login": 1, "id": 1, "avatar_url": 1, "name": 1, "org": 1},
        ).limit(MEMBER_SEARCH_LIMIT)
        return await cursor.to_list()
