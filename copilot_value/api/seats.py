"""API routes for Copilot seats and member activity."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.dependencies import MongoDep
from ..core.mongo import serialize
from ..schemas import ActivityPrecision
from ..services import AdoptionService, SeatsService

router = APIRouter(prefix="/seats", tags=["seats"])


def get_seats_service(db: MongoDep) -> SeatsService:
    return SeatsService(db)


def get_adoption_service(db: MongoDep) -> AdoptionService:
    return AdoptionService(db)


SeatsServiceDep = Annotated[SeatsService, Depends(get_seats_service)]
AdoptionServiceDep = Annotated[AdoptionService, Depends(get_adoption_service)]


@router.get("")
async def get_all_seats(service: SeatsServiceDep, org: str | None = None):
    """Every member with their latest seat."""
    return serialize(await service.get_all_seats(org))


@router.get("/activity")
async def get_activity(
    service: AdoptionServiceDep,
    enterprise: str | None = None,
    org: str | None = None,
    team: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    seats: int = Query(0, description="1 to include the per-seat breakdown"),
):
    """Adoption snapshots (total, active and inactive seats) over time."""
    return serialize(
        await service.get_all_adoptions(
            enterprise=enterprise,
            org=org,
            team=team,
            since=since,
            until=until,
            include_seats=seats == 1,
        )
    )


@router.get("/activity/daily")
async def get_daily_activity(
    service: SeatsServiceDep,
    org: str | None = None,
    days_inactive: int | None = Query(None, alias="daysInactive"),
    precision: ActivityPrecision = ActivityPrecision.DAY,
    since: datetime | None = None,
    until: datetime | None = None,
):
    """Active/inactive members bucketed by day, hour or minute."""
    if days_inactive is None:
        raise HTTPException(status_code=400, detail="daysInactive query parameter is required")
    return await service.get_members_activity(
        org=org,
        days_inactive=days_inactive,
        precision=precision,
        since=since,
        until=until,
    )


@router.get("/activity/totals")
async def get_activity_totals(
    service: SeatsServiceDep,
    org: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = Query(100, ge=1),
    source: str = Query("daily", pattern="^(daily|seats)$"),
):
    """Estimated active time per member, most active first.

    ``source=seats`` recomputes from the raw seat snapshots instead of the
    daily totals.
    """
    if source == "seats":
        totals = await service.get_members_activity_totals(org=org, since=since, until=until)
        return [{"login": login, "total_time": total} for login, total in totals[:limit]]
    return serialize(
        await service.get_members_activity_totals_from_daily(org=org, since=since, until=until, limit=limit)
    )


@router.get("/{identifier}")
async def get_seat(
    identifier: str,
    service: SeatsServiceDep,
    org: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
):
    """Seat history of a member, by GitHub id or login."""
    return serialize(await service.get_seat(identifier, since=since, until=until, org=org))
