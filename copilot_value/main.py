"""Copilot Value: Main FastAPI Application.

Tracks GitHub Copilot seats, usage metrics and developer surveys for the
organizations a GitHub App is installed on, and estimates the value of
the time Copilot saves.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .api import api_router
from .core import (
    DocumentStoreUnavailableError,
    close_db,
    close_mongo,
    configure_logging,
    connect_mongo,
    engine,
    get_session_context,
    get_mongo_db,
    get_settings,
    init_db,
    is_mongo_connected,
    persist_env,
)
from .integrations.github import github_app, webhook_proxy
from .integrations.github.client import GitHubAPIError
from .integrations.github.app import GitHubAppError
from .integrations.github.smee import WebhookProxyError
from .jobs.metrics_cron import run_metrics_job
from .jobs.schedule import InvalidCronExpressionError, metrics_scheduler
from .schemas import ComponentStatus, ErrorResponse
from .services import AdoptionService, SettingsService, TargetsService, status_manager
from .services.status_manager import (
    DATABASE,
    DOCUMENT_STORE,
    GITHUB_APP,
    METRICS_CRON,
    WEBHOOK_PROXY,
    HealthCheckResult,
)

logger = logging.getLogger(__name__)

settings = get_settings()


# =============================================================================
# HEALTH CHECKS
# =============================================================================


async def check_database() -> HealthCheckResult:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return HealthCheckResult(status=ComponentStatus.ERROR, message=str(e))
    return HealthCheckResult(status=ComponentStatus.RUNNING, message="Connected")


async def check_document_store() -> HealthCheckResult:
    if await is_mongo_connected():
        return HealthCheckResult(status=ComponentStatus.RUNNING, message="Connected")
    return HealthCheckResult(status=ComponentStatus.STOPPED, message="Not connected")


async def check_github_app() -> HealthCheckResult:
    if not github_app.is_connected:
        return HealthCheckResult(status=ComponentStatus.STOPPED, message="Not connected")
    return HealthCheckResult(
        status=ComponentStatus.RUNNING,
        message=f"{len(github_app.installations)} installations",
    )


async def check_metrics_cron() -> HealthCheckResult:
    if not metrics_scheduler.running:
        return HealthCheckResult(status=ComponentStatus.STOPPED, message="Not scheduled")
    return HealthCheckResult(
        status=ComponentStatus.RUNNING,
        message=f"Next run at {metrics_scheduler.next_run().isoformat()}",
    )


async def check_webhook_proxy() -> HealthCheckResult:
    if webhook_proxy.url is None:
        return HealthCheckResult(status=ComponentStatus.STOPPED, message="No webhook URL")
    return HealthCheckResult(status=ComponentStatus.RUNNING, message=webhook_proxy.url)


HEALTH_CHECKS = {
    DATABASE: check_database,
    DOCUMENT_STORE: check_document_store,
    GITHUB_APP: check_github_app,
    METRICS_CRON: check_metrics_cron,
    WEBHOOK_PROXY: check_webhook_proxy,
}


# =============================================================================
# STARTUP
# =============================================================================


async def scheduled_metrics_job() -> None:
    if not github_app.is_connected:
        logger.info("Skipping metrics job, GitHub App is not connected")
        return
    await run_metrics_job(github_app)


async def _start_stores() -> None:
    try:
        await init_db()
        status_manager.update_status(DATABASE, ComponentStatus.RUNNING, "Connected")
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Could not initialize database: {e}")
        status_manager.update_status(DATABASE, ComponentStatus.ERROR, str(e))

    if not settings.mongodb_uri:
        logger.info("MONGODB_URI is not set, waiting for database setup")
        return
    try:
        await connect_mongo()
        status_manager.update_status(DOCUMENT_STORE, ComponentStatus.RUNNING, "Connected")
    except (DocumentStoreUnavailableError, PyMongoError) as e:
        logger.error(f"Could not connect document store: {e}")
        status_manager.update_status(DOCUMENT_STORE, ComponentStatus.ERROR, str(e))


async def _load_settings() -> dict:
    """Seed settings and targets, returning the settings in effect."""
    try:
        async with get_session_context() as session:
            service = SettingsService(session)
            await service.initialize_settings()
            adoptions = None
            if await is_mongo_connected():
                adoptions = await AdoptionService(get_mongo_db()).get_all_adoptions()
            await TargetsService(session).initialize(adoptions)
            return await service.get_all_settings()
    except (SQLAlchemyError, PyMongoError) as e:
        logger.error(f"Could not load settings: {e}")
        return {}


async def _start_github_app() -> None:
    if not settings.github_app_configured:
        logger.info("GitHub App is not configured, waiting for setup")
        return
    try:
        await github_app.connect()
        status_manager.update_status(
            GITHUB_APP, ComponentStatus.RUNNING, f"{len(github_app.installations)} installations"
        )
    except (GitHubAPIError, GitHubAppError) as e:
        logger.error(f"Could not connect GitHub App: {e}")
        status_manager.update_status(GITHUB_APP, ComponentStatus.ERROR, str(e))


def _start_scheduler(app_settings: dict) -> None:
    try:
        metrics_scheduler.start(
            scheduled_metrics_job,
            expression=app_settings.get("metricsCronExpression"),
            tz=app_settings.get("timezone"),
        )
        status_manager.update_status(METRICS_CRON, ComponentStatus.RUNNING, metrics_scheduler.expression)
    except InvalidCronExpressionError as e:
        logger.error(f"Invalid metrics cron expression: {e}")
        status_manager.update_status(METRICS_CRON, ComponentStatus.ERROR, str(e))


async def _start_webhook_proxy() -> None:
    webhook_proxy.port = settings.port
    configured = settings.webhook_proxy_url
    try:
        url = await webhook_proxy.connect(configured)
    except WebhookProxyError as e:
        logger.error(f"Could not start webhook proxy: {e}")
        status_manager.update_status(WEBHOOK_PROXY, ComponentStatus.ERROR, str(e))
        return
    if url != configured:
        persist_env({"WEBHOOK_PROXY_URL": url})
    status_manager.update_status(WEBHOOK_PROXY, ComponentStatus.RUNNING, url)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bring the stores, the GitHub App and the schedulers up, then down in reverse."""
    configure_logging()
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    for name in HEALTH_CHECKS:
        status_manager.register_component(name)

    await _start_stores()
    app_settings = await _load_settings()
    await _start_github_app()
    _start_scheduler(app_settings)
    await _start_webhook_proxy()

    for name, check in HEALTH_CHECKS.items():
        status_manager.monitor_component(name, check)
    status_manager.start_health_checks(settings.health_check_interval_seconds)

    yield

    # Shutdown
    await status_manager.stop_health_checks()
    metrics_scheduler.stop()
    await webhook_proxy.disconnect()
    await github_app.disconnect()
    await close_mongo()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Copilot Value API

    Measures **GitHub Copilot adoption and value** across organizations.

    ### What it tracks

    - **Seats & Activity**: Copilot seat assignments and daily active/inactive adoption snapshots.
    - **Usage Metrics**: Daily Copilot metrics per organization and team.
    - **Developer Surveys**: Pull request surveys on time saved with Copilot.
    - **Value Targets**: Current, target and max values for the ROI dashboard.

    ### Sign-in

    When GitHub OAuth is configured, data endpoints require a session from `/auth/github`.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


# Anything a router did not map to an HTTP error
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Report unmapped errors as a 500 ErrorResponse."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=f"Internal error: {str(exc)[:200]}",
            details=[],
        ).model_dump(),
    )


# Liveness probe
@app.get("/health", tags=["health"])
async def health_check():
    """Liveness probe; component health lives under /api/status."""
    return {"status": "healthy", "version": settings.app_version}


# Routers under the API prefix
app.include_router(api_router, prefix=settings.api_prefix)


def main():
    import uvicorn

    uvicorn.run(
        "copilot_value.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
