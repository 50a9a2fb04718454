"""Security utilities: session tokens and webhook signatures."""

from datetime import datetime, timedelta, timezone
from typing import Any
import hashlib
import hmac
import logging

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

SESSION_COOKIE = "copilot_value_session"


class SessionUser(BaseModel):
    """GitHub user stored in the session cookie."""

    id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    profile_url: str | None = None
    email: str | None = None
    provider: str = "github"


def create_session_token(
    user: SessionUser,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed session token for a logged in user."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.session_expire_hours))

    payload: dict[str, Any] = {
        "sub": user.id,
        "user": user.model_dump(),
        "exp": expire,
        "iat": now,
        "type": "session",
    }
    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_session_token(token: str) -> SessionUser | None:
    """Decode a session token, returning None when invalid or expired."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
    if payload.get("type") != "session":
        return None
    return SessionUser(**payload["user"])


def sign_webhook_payload(body: bytes, secret: str) -> str:
    """Compute the X-Hub-Signature-256 header value for a payload."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_webhook_signature(body: bytes, secret: str, signature: str | None) -> bool:
    """
    Verify a GitHub webhook signature using HMAC-SHA256.

    See: https://docs.github.com/en/webhooks/using-webhooks/validating-webhook-deliveries
    """
    if not signature:
        logger.warning("Webhook request is missing X-Hub-Signature-256")
        return False
    return hmac.compare_digest(sign_webhook_payload(body, secret), signature)
