# agrimarket/services/store/document_store.py
"""
Document store client used by discovery and traceability.

The services only read. They depend on the abstract DocumentStore so a test
double (or another backend) can be injected; MongoDocumentStore is the
production client. pymongo is blocking, so every call runs on a thread pool
and is awaited, which makes store calls the only suspension points.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from agrimarket.errors import StoreError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

# Collection names
LISTINGS = "listings"
ORDERS = "orders"
CROPS = "crops"
FARMS = "farms"

# Field sub-collection records point back to their parent with
PARENT_FIELD = "parentId"


def parse_order_by(order_by: Optional[str]):
    """'createdAt' -> ('createdAt', asc); '-createdAt' -> ('createdAt', desc)."""
    if not order_by:
        return None
    if order_by.startswith("-"):
        return order_by[1:], DESCENDING
    return order_by, ASCENDING


class DocumentStore(ABC):

    @abstractmethod
    async def get_by_id(self, collection: str, record_id: str) -> Optional[Record]:
        """Point lookup; None when the record does not exist."""

    @abstractmethod
    async def query_range(self, collection: str, field: str, start: str, end: str) -> List[Record]:
        """Records whose ``field`` is in the half-open range [start, end)."""

    @abstractmethod
    async def list_subcollection(
        self,
        parent_id: str,
        name: str,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """Ordered records of sub-collection ``name`` belonging to ``parent_id``."""

    @abstractmethod
    async def query_equal(
        self,
        collection: str,
        field: str,
        value: Any,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """Records whose ``field`` equals ``value``, optionally ordered and limited."""


def _to_record(doc: Dict[str, Any]) -> Record:
    out = dict(doc)
    raw_id = out.pop("_id", None)
    if not out.get("id"):
        out["id"] = str(raw_id) if raw_id is not None else ""
    return out


def _id_query(record_id: str) -> Dict[str, Any]:
    # records may carry an app-level "id" or only a Mongo _id
    candidates: List[Dict[str, Any]] = [{"id": record_id}, {"_id": record_id}]
    if ObjectId.is_valid(record_id):
        candidates.append({"_id": ObjectId(record_id)})
    return {"$or": candidates}


class MongoDocumentStore(DocumentStore):
    """DocumentStore over a pymongo Database."""

    def __init__(self, db: Database, max_workers: int = 8):
        self.db = db
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mongo-store")

    async def _run(self, what: str, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self.executor, fn)
        except PyMongoError as e:
            logger.error("Mongo %s failed: %s", what, e)
            raise StoreError(f"{what} failed: {e}") from e

    async def get_by_id(self, collection: str, record_id: str) -> Optional[Record]:
        doc = await self._run(
            f"get_by_id({collection})",
            lambda: self.db[collection].find_one(_id_query(record_id)),
        )
        return _to_record(doc) if doc else None

    async def query_range(self, collection: str, field: str, start: str, end: str) -> List[Record]:
        docs = await self._run(
            f"query_range({collection}.{field})",
            lambda: list(self.db[collection].find({field: {"$gte": start, "$lt": end}})),
        )
        return [_to_record(d) for d in docs]

    async def list_subcollection(
        self,
        parent_id: str,
        name: str,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        return await self.query_equal(name, PARENT_FIELD, parent_id, order_by=order_by, limit=limit)

    async def query_equal(
        self,
        collection: str,
        field: str,
        value: Any,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        def _find():
            cur = self.db[collection].find({field: value})
            sort = parse_order_by(order_by)
            if sort:
                cur = cur.sort([sort])
            if limit:
                cur = cur.limit(limit)
            return list(cur)

        docs = await self._run(f"query_equal({collection}.{field})", _find)
        return [_to_record(d) for d in docs]

    def ensure_indexes(self, subcollections: List[str]) -> None:
        """Create the indexes point lookups, range scans and recent-order lookups rely on."""
        for name in (LISTINGS, ORDERS, CROPS, FARMS):
            self.db[name].create_index([("id", ASCENDING)])
        self.db[LISTINGS].create_index([("geohash", ASCENDING)])
        self.db[ORDERS].create_index([("listingId", ASCENDING), ("createdAt", DESCENDING)])
        for name in subcollections:
            self.db[name].create_index([(PARENT_FIELD, ASCENDING), ("createdAt", ASCENDING)])
        logger.info("Indexes ensured for %s, %s and %d sub-collections", LISTINGS, ORDERS, len(subcollections))

    def close(self) -> None:
        self.executor.shutdown(wait=False)
