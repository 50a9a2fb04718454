"""API routes for teams and organization members."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.dependencies import MongoDep
from ..core.mongo import serialize
from ..services import TeamsService

router = APIRouter(tags=["teams"])


def get_teams_service(db: MongoDep) -> TeamsService:
    return TeamsService(db)


TeamsServiceDep = Annotated[TeamsService, Depends(get_teams_service)]


@router.get("/teams")
async def get_teams(service: TeamsServiceDep, org: str | None = None):
    """Teams with their members and child teams."""
    return serialize(await service.get_teams(org))


@router.get("/members")
async def get_members(service: TeamsServiceDep, org: str | None = None):
    return serialize(await service.get_all_members(org))


@router.get("/members/search")
async def search_members(service: TeamsServiceDep, query: str = Query("", alias="query")):
    """Up to ten members whose login contains ``query``."""
    return serialize(await service.search_members_by_login(query))


@router.get("/members/{login}")
async def get_member(
    login: str,
    service: TeamsServiceDep,
    exact: bool = True,
):
    member = await service.get_member_by_login(login, exact=exact)
    if member is None:
        raise HTTPException(status_code=404, detail="Member not found")
    return serialize(member)
