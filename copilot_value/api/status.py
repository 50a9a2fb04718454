"""API routes for component status and health checks."""

from fastapi import APIRouter, HTTPException, Request

from ..core.dependencies import GitHubAppDep, StatusManagerDep
from ..core.mongo import DocumentStoreUnavailableError, get_mongo_db
from ..schemas import (
    ComponentStatusInfo,
    HealthCheckResponse,
    HealthCheckResult,
    StatusHistoryEntry,
    SystemStatus,
)
from ..services import StatusService

router = APIRouter(prefix="/status", tags=["status"])


@router.get("", response_model=SystemStatus)
async def get_system_status(
    request: Request,
    status_manager: StatusManagerDep,
    github_app: GitHubAppDep,
):
    """Every component's status plus data freshness and installations.

    Data details are left out until the document store is connected.
    """
    try:
        details = await StatusService(get_mongo_db()).get_status(github_app, request.headers)
    except DocumentStoreUnavailableError:
        details = {"seatsHistory": None, "surveyCount": 0, "installations": None}
    return SystemStatus(
        status=status_manager.get_all_component_statuses(),
        component_details={
            name: ComponentStatusInfo.model_validate(info)
            for name, info in status_manager.get_all_component_details().items()
        },
        is_ready=status_manager.is_system_ready(),
        uptime=status_manager.get_uptime(),
        start_time=status_manager.get_start_time(),
        seats_history=details["seatsHistory"],
        survey_count=details["surveyCount"],
        installations=details["installations"],
        github=github_app.is_connected,
        auth=details.get("auth"),
    )


@router.post("/healthcheck", response_model=HealthCheckResponse)
async def run_health_checks(status_manager: StatusManagerDep):
    results = await status_manager.run_health_checks()
    return HealthCheckResponse(
        success=status_manager.is_system_healthy(),
        results={
            name: HealthCheckResult(status=result.status, message=result.message)
            for name, result in results.items()
        },
    )


@router.get("/{component_name}", response_model=ComponentStatusInfo)
async def get_component_status(component_name: str, status_manager: StatusManagerDep):
    info = status_manager.get_component_status(component_name)
    if info is None:
        raise HTTPException(status_code=404, detail=f"Component '{component_name}' not found")
    return ComponentStatusInfo.model_validate(info)


@router.get("/{component_name}/history", response_model=list[StatusHistoryEntry])
async def get_component_history(component_name: str, status_manager: StatusManagerDep):
    if status_manager.get_component_status(component_name) is None:
        raise HTTPException(status_code=404, detail=f"Component '{component_name}' not found")
    return [StatusHistoryEntry.model_validate(entry) for entry in status_manager.get_status_history(component_name)]
