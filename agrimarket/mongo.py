# agrimarket/mongo.py
from __future__ import annotations

import logging
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from agrimarket.app_config import AppConfig

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def init_mongo(config: AppConfig) -> Optional[Database]:
    """
    Initializes the shared MongoClient from config.mongo_uri.
    Call this during app startup; returns None when Mongo is disabled.
    """
    global _client, _db

    if config.disable_mongo:
        logger.warning("Mongo disabled by DISABLE_MONGO=1")
        return None

    if _db is not None:
        return _db

    try:
        _client = MongoClient(config.mongo_uri)
        _db = _client.get_database()
        logger.info("Mongo initialized (database=%s)", _db.name)
    except PyMongoError as e:
        logger.error("Mongo init failed: %s", e)
        _client, _db = None, None
        raise

    return _db


def get_db() -> Optional[Database]:
    """
    Returns the initialized database, else None.
    Safe to call anywhere (won't crash at import time).
    """
    return _db


def close_mongo() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
        logger.info("Mongo connection closed")
    _client, _db = None, None
