"""API routes for first-run setup: GitHub App registration and document store."""

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse
from pymongo.errors import PyMongoError

from ..core.config import get_settings, persist_env
from ..core.dependencies import GitHubAppDep, SessionDep, StatusManagerDep, WebhookProxyDep
from ..core.mongo import DocumentStoreUnavailableError, connect_mongo, is_mongo_connected, serialize
from ..integrations.github.app import GitHubAppError, InstallationNotFoundError
from ..integrations.github.client import GitHubAPIError
from ..jobs.schedule import metrics_scheduler
from ..schemas import (
    ComponentStatus,
    DatabaseSetupRequest,
    ExistingAppRequest,
    ExistingAppResponse,
    SetupStatusResponse,
)
from ..services import SettingsNotFoundError, SettingsService, auth_info
from ..services.status_manager import DOCUMENT_STORE, GITHUB_APP

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/setup", tags=["setup"])


async def _base_url(session) -> str:
    try:
        return await SettingsService(session).get_setting("baseUrl") or get_settings().base_url
    except SettingsNotFoundError:
        return get_settings().base_url


# =============================================================================
# APP REGISTRATION
# =============================================================================


@router.get("/manifest")
async def get_manifest(session: SessionDep, github_app: GitHubAppDep, proxy: WebhookProxyDep):
    """Manifest used to register a new GitHub App for this deployment."""
    return github_app.get_app_manifest(await _base_url(session), webhook_url=proxy.url)


@router.get("/registration/complete")
async def registration_complete(code: str, github_app: GitHubAppDep):
    """GitHub redirects here after the app was registered from the manifest."""
    try:
        data = await github_app.create_app_from_manifest(code)
    except (GitHubAPIError, GitHubAppError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return RedirectResponse(url=f"{data['html_url']}/installations/new", status_code=302)


@router.get("/install/complete")
async def install_complete(
    session: SessionDep,
    github_app: GitHubAppDep,
    status_manager: StatusManagerDep,
):
    """GitHub redirects here after the app was installed on an organization."""
    try:
        await github_app.connect()
    except (GitHubAPIError, GitHubAppError) as e:
        status_manager.update_status(GITHUB_APP, ComponentStatus.ERROR, str(e))
        raise HTTPException(status_code=400, detail=str(e))
    status_manager.update_status(
        GITHUB_APP, ComponentStatus.RUNNING, f"{len(github_app.installations)} installations"
    )
    return RedirectResponse(url=await _base_url(session), status_code=302)


@router.post("/existing-app", response_model=ExistingAppResponse)
async def add_existing_app(
    data: ExistingAppRequest,
    github_app: GitHubAppDep,
    status_manager: StatusManagerDep,
):
    """Connect an app that was registered by hand."""
    if not data.app_id or not data.private_key or not data.webhook_secret:
        raise HTTPException(status_code=400, detail="All fields are required")
    try:
        await github_app.connect(
            app_id=data.app_id,
            private_key=data.private_key,
            webhook_secret=data.webhook_secret,
        )
        install_url = await github_app.get_installation_url()
    except (GitHubAPIError, GitHubAppError) as e:
        status_manager.update_status(GITHUB_APP, ComponentStatus.ERROR, str(e))
        raise HTTPException(status_code=400, detail=str(e))
    status_manager.update_status(
        GITHUB_APP, ComponentStatus.RUNNING, f"{len(github_app.installations)} installations"
    )
    return ExistingAppResponse(install_url=install_url)


@router.get("/install")
async def get_install(
    github_app: GitHubAppDep,
    id: int | None = None,
    owner: str | None = None,
):
    """An installation by id or by account login."""
    if id is None and not owner:
        raise HTTPException(status_code=400, detail="id or owner is required")
    try:
        installation = github_app.get_installation(id if id is not None else owner)
    except InstallationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GitHubAppError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize(installation.data)


# =============================================================================
# DOCUMENT STORE
# =============================================================================


@router.post("/db")
async def setup_db(data: DatabaseSetupRequest, status_manager: StatusManagerDep):
    """Connect the document store, storing the URI for the next start."""
    if await is_mongo_connected():
        return {"message": "Database already connected"}
    try:
        await connect_mongo(data.uri)
    except DocumentStoreUnavailableError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PyMongoError as e:
        logger.error(f"Failed to connect document store: {e}")
        status_manager.update_status(DOCUMENT_STORE, ComponentStatus.ERROR, str(e))
        raise HTTPException(status_code=400, detail=f"Failed to connect to database: {e}")
    if data.uri:
        persist_env({"MONGODB_URI": data.uri})
    status_manager.update_status(DOCUMENT_STORE, ComponentStatus.RUNNING, "Connected")
    return {"message": "Database setup completed"}


# =============================================================================
# STATUS
# =============================================================================


@router.get("/status", response_model=SetupStatusResponse, response_model_exclude_none=True)
async def setup_status(github_app: GitHubAppDep):
    return SetupStatusResponse(
        is_setup=github_app.is_connected,
        db_connected=await is_mongo_connected(),
        installations=[serialize(i.data) for i in github_app.installations],
    )


@router.get("/status/details")
async def setup_status_details(
    request: Request,
    github_app: GitHubAppDep,
    proxy: WebhookProxyDep,
    status_manager: StatusManagerDep,
):
    """Setup state plus scheduler, webhook proxy and forwarded auth details."""
    next_run = metrics_scheduler.next_run() if metrics_scheduler.running else None
    return {
        "isSetup": github_app.is_connected,
        "dbConnected": await is_mongo_connected(),
        "app": {
            "slug": github_app.slug,
            "connectedAt": github_app.connected_at,
            "installations": [
                {
                    "id": i.id,
                    "login": i.login,
                    "lastQueryAt": i.query.last_run_at,
                }
                for i in github_app.installations
            ],
        },
        "metricsCron": {
            "expression": metrics_scheduler.expression,
            "running": metrics_scheduler.running,
            "lastRunAt": metrics_scheduler.last_run_at,
            "nextRunAt": next_run,
        },
        "webhookProxy": proxy.status(),
        "components": status_manager.get_all_component_statuses(),
        "auth": auth_info(request.headers),
    }


@router.get("/validate")
async def validate_installations(github_app: GitHubAppDep):
    """Diagnostics for every installation of the app."""
    return await github_app.validate_installations()
