"""GitHub webhook delivery endpoint."""

import json
import logging

from fastapi import APIRouter, Header, HTTPException, Request, status

from ..core.config import get_settings
from ..core.dependencies import GitHubAppDep, MongoDep, SessionDep
from ..core.security import verify_webhook_signature
from ..integrations.github.webhooks import WebhookHandler
from ..services import DuplicateDeliveryGuard, SettingsNotFoundError, SettingsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/github", tags=["webhooks"])

# GitHub (and the smee relay) may deliver the same event more than once
delivery_guard = DuplicateDeliveryGuard()


@router.post("/webhooks")
async def receive_webhook(
    request: Request,
    github_app: GitHubAppDep,
    db: MongoDep,
    session: SessionDep,
    x_github_event: str | None = Header(default=None),
    x_github_delivery: str | None = Header(default=None),
    x_hub_signature_256: str | None = Header(default=None),
):
    """Verify, de-duplicate and dispatch one webhook delivery."""
    body = await request.body()

    secret = github_app.webhook_secret or get_settings().github_webhook_secret
    if secret and not verify_webhook_signature(body, secret, x_hub_signature_256):
        logger.warning(f"Rejected webhook delivery {x_github_delivery}: bad signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    if not x_github_event:
        raise HTTPException(status_code=400, detail="Missing X-GitHub-Event header")

    if x_github_delivery and delivery_guard.is_duplicate(x_github_delivery):
        logger.info(f"Skipping duplicate webhook delivery {x_github_delivery}")
        return {"handled": False, "duplicate": True}

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    try:
        base_url = await SettingsService(session).get_setting("baseUrl")
    except SettingsNotFoundError:
        base_url = get_settings().base_url

    handled = await WebhookHandler(github_app, db, base_url).handle(x_github_event, payload)
    if x_github_delivery:
        delivery_guard.register(x_github_delivery)
    return {"handled": handled, "duplicate": False}
