"""Document store connection for GitHub-shaped data (members, seats, metrics...)."""

import logging
from typing import Any

from bson import ObjectId
from pymongo import ASCENDING, AsyncMongoClient, ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from .config import get_settings

logger = logging.getLogger(__name__)

_client: AsyncMongoClient | None = None
_db: AsyncDatabase | None = None

# (collection, keys, unique)
INDEXES: list[tuple[str, list[tuple[str, int]], bool]] = [
    ("members", [("org", ASCENDING), ("login", ASCENDING), ("id", ASCENDING)], True),
    ("members", [("login", ASCENDING)], False),
    ("seats", [("org", ASCENDING), ("team", ASCENDING), ("queryAt", ASCENDING), ("assignee_id", ASCENDING)], True),
    ("seats", [("org", ASCENDING), ("createdAt", ASCENDING)], False),
    ("seats", [("assignee", ASCENDING)], False),
    ("teams", [("githubId", ASCENDING)], True),
    ("team_members", [("team", ASCENDING), ("member", ASCENDING)], True),
    ("adoptions", [("enterprise", ASCENDING), ("org", ASCENDING), ("team", ASCENDING), ("date", ASCENDING)], True),
    ("activity_totals", [("org", ASCENDING), ("date", ASCENDING), ("assignee", ASCENDING)], True),
    ("metrics", [("org", ASCENDING), ("team", ASCENDING), ("date", ASCENDING)], True),
    ("surveys", [("id", ASCENDING)], True),
]


class DocumentStoreUnavailableError(Exception):
    """Raised when the document store has not been connected."""


async def connect_mongo(uri: str | None = None) -> AsyncDatabase:
    """Connect to the document store and make sure indexes exist."""
    global _client, _db

    settings = get_settings()
    uri = uri or settings.mongodb_uri
    if not uri:
        raise DocumentStoreUnavailableError("MONGODB_URI is not set")

    await close_mongo()
    _client = AsyncMongoClient(uri, tz_aware=True)
    _db = _client[settings.mongodb_database]
    await _client.admin.command("ping")
    logger.info(f"Connected to document store database {settings.mongodb_database}")
    await ensure_indexes(_db)
    return _db


async def close_mongo() -> None:
    """Close the document store client."""
    global _client, _db
    if _client is not None:
        await _client.close()
    _client = None
    _db = None


def get_mongo_db() -> AsyncDatabase:
    """Dependency returning the connected document store database."""
    if _db is None:
        raise DocumentStoreUnavailableError("Document store is not connected")
    return _db


async def is_mongo_connected() -> bool:
    """Ping the document store."""
    if _client is None:
        return False
    try:
        await _client.admin.command("ping")
        return True
    except PyMongoError as e:
        logger.warning(f"Document store ping failed: {e}")
        return False


async def ensure_indexes(db: AsyncDatabase) -> None:
    """Create the indexes backing the uniqueness rules of each collection."""
    for collection, keys, unique in INDEXES:
        await db[collection].create_index(keys, unique=unique)
    logger.debug(f"Ensured {len(INDEXES)} indexes")


async def next_sequence(db: AsyncDatabase, name: str) -> int:
    """Atomically increment and return the named counter."""
    counter = await db.counters.find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def serialize(value: Any) -> Any:
    """Convert documents to JSON friendly values (ObjectId becomes str)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: serialize(item) for key, item in value.items() if key != "__v"}
    if isinstance(value, (list, tuple)):
        return [serialize(item) for item in value]
    return value
