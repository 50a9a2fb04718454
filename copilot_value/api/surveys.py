"""API routes for Copilot surveys."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response, status

from ..core.dependencies import GitHubAppDep, MongoDep
from ..integrations.github.comments import thank_for_survey
from ..schemas import SurveyCreate, SurveyResponse, SurveyStatus, SurveyUpdate
from ..services import (
    InvalidSurveyError,
    SurveyNotFoundError,
    SurveyNotModifiedError,
    SurveyService,
)

router = APIRouter(prefix="/survey", tags=["surveys"])


def get_survey_service(db: MongoDep) -> SurveyService:
    return SurveyService(db)


SurveyServiceDep = Annotated[SurveyService, Depends(get_survey_service)]


async def _update(service: SurveyService, survey_id: int, data: SurveyUpdate) -> dict:
    payload = data.model_dump(by_alias=True, exclude_unset=True, mode="json")
    payload["id"] = survey_id
    try:
        return await service.update_survey(payload)
    except InvalidSurveyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (SurveyNotFoundError, SurveyNotModifiedError):
        raise HTTPException(status_code=404, detail="Survey not found")


@router.get("", response_model=list[SurveyResponse])
async def list_surveys(
    service: SurveyServiceDep,
    org: str | None = None,
    team: str | None = None,
    reason_length: bool = Query(False, alias="reasonLength"),
    since: datetime | None = None,
    until: datetime | None = None,
    survey_status: SurveyStatus | None = Query(None, alias="status"),
):
    """List surveys; filters combine."""
    return await service.get_all_surveys(
        org=org,
        team=team,
        reason_length=reason_length,
        since=since,
        until=until,
        status=survey_status,
    )


@router.post("", response_model=SurveyResponse, status_code=status.HTTP_201_CREATED)
async def create_survey(
    data: SurveyCreate,
    service: SurveyServiceDep,
    github_app: GitHubAppDep,
    background_tasks: BackgroundTasks,
):
    """Create a survey and thank the author on the pull request."""
    survey = await service.create_survey(data.model_dump(by_alias=True, exclude_none=True, mode="json"))
    background_tasks.add_task(thank_for_survey, github_app, survey)
    return survey


@router.get("/recent", response_model=list[SurveyResponse])
async def recent_surveys(
    service: SurveyServiceDep,
    min_reason_length: int = Query(..., alias="minReasonLength"),
):
    """The latest surveys with a meaningful reason."""
    try:
        return await service.get_recent_surveys_with_good_reasons(min_reason_length)
    except InvalidSurveyError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{survey_id}", response_model=SurveyResponse)
async def get_survey(survey_id: int, service: SurveyServiceDep):
    try:
        return await service.get_survey(survey_id)
    except SurveyNotFoundError:
        raise HTTPException(status_code=404, detail="Survey not found")


@router.put("/{survey_id}", response_model=SurveyResponse)
async def update_survey(survey_id: int, data: SurveyUpdate, service: SurveyServiceDep):
    return await _update(service, survey_id, data)


@router.post("/{survey_id}/github", response_model=SurveyResponse)
async def complete_github_survey(
    survey_id: int,
    data: SurveyUpdate,
    service: SurveyServiceDep,
    github_app: GitHubAppDep,
    background_tasks: BackgroundTasks,
):
    """Complete the pending survey created when the pull request was opened."""
    if data.status is None:
        data.status = SurveyStatus.COMPLETED
    survey = await _update(service, survey_id, data)
    background_tasks.add_task(thank_for_survey, github_app, survey)
    return survey


@router.delete("/{survey_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_survey(survey_id: int, service: SurveyServiceDep):
    try:
        await service.delete_survey(survey_id)
    except SurveyNotFoundError:
        raise HTTPException(status_code=404, detail="Survey not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
