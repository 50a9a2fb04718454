"""Configuration, stores and security helpers."""

from .config import Settings, get_settings, persist_env
from .database import (
    async_session_factory,
    close_db,
    engine,
    get_session,
    get_session_context,
    init_db,
)
from .logging import configure_logging
from .mongo import (
    DocumentStoreUnavailableError,
    close_mongo,
    connect_mongo,
    get_mongo_db,
    is_mongo_connected,
)
from .security import (
    SESSION_COOKIE,
    SessionUser,
    create_session_token,
    decode_session_token,
    verify_webhook_signature,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "persist_env",
    "configure_logging",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Document store
    "DocumentStoreUnavailableError",
    "connect_mongo",
    "close_mongo",
    "get_mongo_db",
    "is_mongo_connected",
    # Security
    "SESSION_COOKIE",
    "SessionUser",
    "create_session_token",
    "decode_session_token",
    "verify_webhook_signature",
]
