"""Shared fixtures: an in-memory DocumentStore that records every call."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import pytest

from agrimarket.errors import StoreError
from agrimarket.models.marketplace.marketplace_models import index_listing_location
from agrimarket.services.access.policy import Actor
from agrimarket.services.store.document_store import (
    CROPS,
    FARMS,
    LISTINGS,
    ORDERS,
    PARENT_FIELD,
    DocumentStore,
    parse_order_by,
)

T0 = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


class InMemoryStore(DocumentStore):

    def __init__(self, data: Optional[Dict[str, Iterable[Dict[str, Any]]]] = None, delay: float = 0.0, fail: bool = False):
        self.collections: Dict[str, List[Dict[str, Any]]] = {}
        for name, recs in (data or {}).items():
            self.collections[name] = [dict(r) for r in recs]
        self.delay = delay
        self.fail = fail
        self.calls: List[tuple] = []

    def add(self, collection: str, *records: Dict[str, Any]) -> None:
        self.collections.setdefault(collection, []).extend(dict(r) for r in records)

    async def _tick(self, call: tuple) -> None:
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise StoreError("connection refused")

    @staticmethod
    def _ordered(recs: List[Dict[str, Any]], order_by: Optional[str], limit: Optional[int]):
        sort = parse_order_by(order_by)
        if sort:
            key, direction = sort
            recs = sorted(recs, key=lambda r: r.get(key) or T0 - timedelta(days=36500), reverse=direction < 0)
        if limit:
            recs = recs[:limit]
        return [dict(r) for r in recs]

    async def get_by_id(self, collection, record_id):
        await self._tick(("get_by_id", collection, record_id))
        for r in self.collections.get(collection, []):
            if r.get("id") == record_id:
                return dict(r)
        return None

    async def query_range(self, collection, field, start, end):
        await self._tick(("query_range", collection, start, end))
        return [
            dict(r) for r in self.collections.get(collection, [])
            if isinstance(r.get(field), str) and start <= r[field] < end
        ]

    async def list_subcollection(self, parent_id, name, order_by=None, limit=None):
        await self._tick(("list_subcollection", name, parent_id))
        recs = [r for r in self.collections.get(name, []) if r.get(PARENT_FIELD) == parent_id]
        return self._ordered(recs, order_by, limit)

    async def query_equal(self, collection, field, value, order_by=None, limit=None):
        await self._tick(("query_equal", collection, field, value))
        recs = [r for r in self.collections.get(collection, []) if r.get(field) == value]
        return self._ordered(recs, order_by, limit)


def make_listing(
    listing_id: str,
    lat: Optional[float] = -1.2833,
    lng: Optional[float] = 36.8167,
    status: str = "active",
    seller_id: str = "seller-1",
    category: str = "fresh_produce",
    crop_id: Optional[str] = None,
) -> Dict[str, Any]:
    rec: Dict[str, Any] = {
        "id": listing_id,
        "sellerId": seller_id,
        "category": category,
        "categoryData": {"cropId": crop_id} if crop_id else {},
        "price": 120.0,
        "status": status,
        "createdAt": T0,
    }
    if lat is not None and lng is not None:
        rec["location"] = {"lat": lat, "lng": lng}
    return index_listing_location(rec)


@pytest.fixture
def buyer():
    return Actor(id="u1", roles=frozenset({"buyer"}))


@pytest.fixture
def stranger():
    return Actor(id="u2", roles=frozenset({"buyer"}))


@pytest.fixture
def admin():
    return Actor(id="ops-1", roles=frozenset({"admin"}))


@pytest.fixture
def provenance_store():
    """
    order-1 (u1 buys from seller-1) -> listing-1 (sold, fresh produce) -> crop-1 (no farm)
    listing-2 (active, fresh produce) -> crop-2 -> farm-2, with 7 orders
    listing-3 (active, agro inputs)
    """
    store = InMemoryStore()
    store.add(ORDERS, {
        "id": "order-1", "listingId": "listing-1", "buyerId": "u1", "sellerId": "seller-1",
        "status": "paid", "createdAt": T0,
    })
    store.add(ORDERS, {"id": "order-9", "buyerId": "u1", "sellerId": "seller-1", "status": "paid"})
    store.add(ORDERS, *[
        {
            "id": f"o2-{i}", "listingId": "listing-2", "buyerId": f"b{i}", "sellerId": "seller-2",
            "status": "completed", "createdAt": T0 + timedelta(days=i),
        }
        for i in range(7)
    ])
    store.add(
        LISTINGS,
        make_listing("listing-1", status="sold", crop_id="crop-1"),
        make_listing("listing-2", seller_id="seller-2", crop_id="crop-2"),
        make_listing("listing-3", category="agro_inputs"),
        make_listing("listing-4", status="inactive", seller_id="seller-4"),
    )
    store.add(CROPS, {"id": "crop-1", "cropType": "maize"})
    store.add(CROPS, {"id": "crop-2", "cropType": "beans", "farmId": "farm-2"})
    store.add(FARMS, {"id": "farm-2", "ownerId": "seller-2", "name": "Kiambu Greens", "location": {"lat": -1.17, "lng": 36.83}})
    store.add(
        "pestsDiseasesEncountered",
        {"id": "p2", "parentId": "crop-1", "name": "fall armyworm", "createdAt": T0 + timedelta(days=9)},
        {"id": "p1", "parentId": "crop-1", "name": "maize streak", "createdAt": T0 + timedelta(days=2)},
    )
    store.add(
        "fertilizationHistory",
        {"id": "f1", "parentId": "crop-1", "product": "DAP", "createdAt": T0},
    )
    return store
