"""API routes for application settings."""

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ..core.dependencies import SessionDep
from ..jobs.schedule import InvalidCronExpressionError
from ..services import SettingsNotFoundError, SettingsService

router = APIRouter(prefix="/settings", tags=["settings"])


def get_settings_service(session: SessionDep) -> SettingsService:
    return SettingsService(session)


SettingsServiceDep = Annotated[SettingsService, Depends(get_settings_service)]


async def _apply(service: SettingsService, values: dict[str, Any]) -> dict[str, Any]:
    try:
        return await service.update_settings(values)
    except InvalidCronExpressionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("")
async def get_all_settings(service: SettingsServiceDep):
    return await service.get_all_settings()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_settings(service: SettingsServiceDep, values: dict[str, Any] = Body(...)):
    """Store every name/value pair in the body."""
    return await _apply(service, values)


@router.put("")
async def update_settings(service: SettingsServiceDep, values: dict[str, Any] = Body(...)):
    return await _apply(service, values)


@router.get("/{name}")
async def get_setting(name: str, service: SettingsServiceDep):
    try:
        return {"name": name, "value": await service.get_setting(name)}
    except SettingsNotFoundError:
        raise HTTPException(status_code=404, detail="Settings not found")


@router.put("/{name}")
async def update_setting(name: str, service: SettingsServiceDep, value: Any = Body(..., embed=True)):
    await _apply(service, {name: value})
    return {"name": name, "value": value}


@router.delete("/{name}")
async def delete_setting(name: str, service: SettingsServiceDep):
    try:
        await service.delete_setting(name)
    except SettingsNotFoundError:
        raise HTTPException(status_code=404, detail="Settings not found")
    return {"deleted": name}
