"""API routes for Copilot Value."""

from fastapi import APIRouter, Depends

from ..core.dependencies import require_user
from .auth import router as auth_router
from .metrics import router as metrics_router
from .seats import router as seats_router
from .settings import router as settings_router
from .setup import router as setup_router
from .status import router as status_router
from .surveys import router as surveys_router
from .targets import router as targets_router
from .teams import router as teams_router
from .webhooks import router as webhooks_router

# Main API router
api_router = APIRouter()

# Open routes: login, first-run setup, status and GitHub deliveries
api_router.include_router(auth_router)
api_router.include_router(setup_router)
api_router.include_router(status_router)
api_router.include_router(webhooks_router)

# Dashboard data requires a session when OAuth is configured
protected = [Depends(require_user)]
api_router.include_router(surveys_router, dependencies=protected)
api_router.include_router(metrics_router, dependencies=protected)
api_router.include_router(seats_router, dependencies=protected)
api_router.include_router(teams_router, dependencies=protected)
api_router.include_router(settings_router, dependencies=protected)
api_router.include_router(targets_router, dependencies=protected)

__all__ = ["api_router"]
