"""API routes for target values."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ..core.dependencies import MongoDep, SessionDep
from ..schemas import CalculatedTargetsResponse, TargetValuesPayload
from ..services import TargetsService, default_targets, fetch_and_calculate

router = APIRouter(prefix="/targets", tags=["targets"])


def get_targets_service(session: SessionDep) -> TargetsService:
    return TargetsService(session)


TargetsServiceDep = Annotated[TargetsService, Depends(get_targets_service)]


@router.get("", response_model=TargetValuesPayload)
async def get_targets(service: TargetsServiceDep):
    """Stored targets, or the zeroed defaults before any were saved."""
    return await service.get_targets() or default_targets()


@router.post("", response_model=TargetValuesPayload)
async def update_targets(data: TargetValuesPayload, service: TargetsServiceDep):
    return await service.update_targets(data.model_dump(exclude_unset=True))


@router.get("/calculate", response_model=CalculatedTargetsResponse, response_model_exclude_none=True)
async def calculate_targets(
    session: SessionDep,
    db: MongoDep,
    org: str | None = None,
    enable_logging: bool = Query(False, alias="enableLogging"),
):
    """Suggested targets computed from adoption, metrics and survey data."""
    return await fetch_and_calculate(session, db, org=org, enable_logging=enable_logging)
