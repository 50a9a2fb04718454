"""Survey service: developer feedback on how much Copilot helped on a PR."""

import logging
from datetime import datetime, timezone
from typing import Any

from pymongo.asynchronous.database import AsyncDatabase

from ..core.mongo import next_sequence
from ..schemas.base import SurveyStatus

logger = logging.getLogger(__name__)

SURVEY_SEQUENCE = "survey-sequence"
GOOD_REASON_LENGTH = 40
RECENT_SURVEYS_LIMIT = 20
SURVEY_PROJECTION = {"_id": 0, "__v": 0}


# =============================================================================
# EXCEPTIONS
# =============================================================================


class SurveyError(Exception):
    """Base exception for survey operations."""
    pass


class SurveyNotFoundError(SurveyError):
    """Survey does not exist."""
    pass


class InvalidSurveyError(SurveyError):
    """Survey payload or query parameter is not acceptable."""
    pass


class SurveyNotModifiedError(SurveyError):
    """An update matched nothing or changed nothing."""
    pass


class SurveyService:
    """Service for managing Copilot surveys."""

    def __init__(self, db: AsyncDatabase):
        self.db = db

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_survey(self, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a survey with the next sequence id."""
        now = datetime.now(timezone.utc)
        survey = {
            **data,
            "id": await next_sequence(self.db, SURVEY_SEQUENCE),
            "createdAt": now,
            "updatedAt": now,
        }
        await self.db.surveys.insert_one(survey)
        survey.pop("_id", None)
        logger.info(f"Survey created: {survey['id']} for {survey.get('userId')}")
        return survey

    async def update_survey(self, data: dict[str, Any]) -> dict[str, Any]:
        """Apply ``data`` to the survey identified by ``data["id"]``."""
        survey_id = data.get("id") if data else None
        if not isinstance(survey_id, int) or isinstance(survey_id, bool) or survey_id <= 0:
            raise InvalidSurveyError("Invalid survey data provided")

        fields = {key: value for key, value in data.items() if key not in ("_id", "createdAt")}
        fields["updatedAt"] = datetime.now(timezone.utc)
        result = await self.db.surveys.update_one({"id": survey_id}, {"$set": fields})
        if result.modified_count == 0:
            raise SurveyNotModifiedError("Survey update failed: no document was modified")

        survey = await self.db.surveys.find_one({"id": survey_id}, SURVEY_PROJECTION)
        if survey is None:
            raise SurveyNotFoundError("Survey update failed: survey not found")

        logger.info(f"Survey updated: {survey_id}")
        return survey

    async def get_survey(self, survey_id: int) -> dict[str, Any]:
        survey = await self.db.surveys.find_one({"id": survey_id}, SURVEY_PROJECTION)
        if survey is None:
            raise SurveyNotFoundError(f"Survey {survey_id} not found")
        return survey

    async def delete_survey(self, survey_id: int) -> None:
        result = await self.db.surveys.delete_one({"id": survey_id})
        if result.deleted_count == 0:
            raise SurveyNotFoundError(f"Survey {survey_id} not found")
        logger.info(f"Survey deleted: {survey_id}")

    async def count_surveys(self) -> int:
        return await self.db.surveys.count_documents({})

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_all_surveys(
        self,
        org: str | None = None,
        team: str | None = None,
        reason_length: bool = False,
        since: datetime | None = None,
        until: datetime | None = None,
        status: SurveyStatus | str | None = None,
    ) -> list[dict[str, Any]]:
        """Surveys matching every given filter.

        ``reason_length`` keeps only surveys whose reason is longer than 40
        characters.
        """
        query: dict[str, Any] = {}
        if org:
            query["org"] = str(org)
        if team:
            query["team"] = str(team)
        if reason_length:
            query["$expr"] = {
                "$and": [
                    {"$gt": [{"$strLenCP": {"$ifNull": ["$reason", ""]}}, GOOD_REASON_LENGTH]},
                    {"$ne": ["$reason", None]},
                ]
            }
        if since or until:
            query["createdAt"] = {}
            if since:
                query["createdAt"]["$gte"] = since
            if until:
                query["createdAt"]["$lte"] = until
        if status:
            query["status"] = SurveyStatus(status).value

        return await self.db.surveys.find(query, SURVEY_PROJECTION).to_list()

    async def get_recent_surveys_with_good_reasons(self, min_reason_length: int) -> list[dict[str, Any]]:
        """The 20 most recently updated surveys with a reason of at least ``min_reason_length``."""
        if not isinstance(min_reason_length, int) or min_reason_length < 1:
            raise InvalidSurveyError("Invalid minReasonLength provided")

        query = {
            "reason": {"$nin": [None, ""]},
            "$expr": {"$gte": [{"$strLenCP": {"$ifNull": ["$reason", ""]}}, min_reason_length]},
        }
        cursor = (
            self.db.surveys.find(query, SURVEY_PROJECTION)
            .sort("updatedAt", -1)
            .limit(RECENT_SURVEYS_LIMIT)
        )
        return await cursor.to_list()

    # =========================================================================
    # PULL REQUEST FLOW
    # =========================================================================

    async def create_pending_survey(
        self,
        user_id: str,
        org: str,
        repo: str,
        pr_number: int,
    ) -> dict[str, Any]:
        """Create the placeholder survey for a newly opened pull request."""
        return await self.create_survey(
            {
                "userId": user_id,
                "org": org,
                "repo": repo,
                "prNumber": pr_number,
                "status": SurveyStatus.PENDING.value,
                "hits": 0,
            }
        )
