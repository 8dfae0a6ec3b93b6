"""
MongoDB connection handling.

A single MongoClient is shared by the whole process; pymongo pools connections
internally and the client is safe to use from FastAPI's worker threads.
"""
import logging
from typing import Optional

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings

log = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def connect(settings: Settings) -> Database:
    global _client
    if _client is None:
        # timeoutMS bounds every operation, so a stalled aggregation is
        # aborted instead of holding the request open.
        _client = MongoClient(
            settings.database_url,
            tz_aware=True,
            timeoutMS=settings.mongo_timeout_ms,
        )
        log.info("MongoDB client created for database %s", settings.database_name)
    return _client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True, name="uniq_email")
    db["wishlistitem"].create_index(
        [("user_id", ASCENDING), ("product_id", ASCENDING)],
        unique=True,
        name="uniq_user_product",
    )
    db["product"].create_index([("category_id", ASCENDING)])
    db["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])


def close() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
        log.info("MongoDB client closed")
