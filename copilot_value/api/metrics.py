"""API routes for Copilot usage metrics."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends

from ..core.dependencies import MongoDep, SessionDep
from ..core.mongo import serialize
from ..services import MetricsService

router = APIRouter(prefix="/metrics", tags=["metrics"])


def get_metrics_service(db: MongoDep, session: SessionDep) -> MetricsService:
    return MetricsService(db, session)


MetricsServiceDep = Annotated[MetricsService, Depends(get_metrics_service)]


@router.get("")
async def get_metrics(
    service: MetricsServiceDep,
    org: str | None = None,
    team: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
):
    """Daily usage metrics as reported by GitHub, oldest first."""
    return serialize(await service.get_metrics(org=org, since=since, until=until, team=team))


@router.get("/totals")
async def get_metrics_totals(
    service: MetricsServiceDep,
    org: str | None = None,
    team: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
):
    """Rollup totals (suggestions, acceptances, chats...) over the period."""
    return await service.get_metrics_totals(org=org, since=since, until=until, team=team)
