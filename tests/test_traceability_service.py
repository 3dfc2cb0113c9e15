"""Tests for the provenance resolver (order/listing -> crop -> farm)."""

import asyncio

import pytest

from agrimarket.errors import (
    DeadlineExceededError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    StoreError,
)
from agrimarket.models.traceability.traceability_models import IdentifierKind, NodeStatus
from agrimarket.services.access.policy import Actor
from agrimarket.services.store.document_store import CROPS, LISTINGS, ORDERS
from agrimarket.services.traceability.traceability_services import TraceabilityService
from tests.conftest import InMemoryStore, make_listing

RESOLVED = NodeStatus.RESOLVED
ABSENT = NodeStatus.ABSENT


@pytest.mark.asyncio
async def test_order_participant_gets_full_chain(provenance_store, buyer):
    service = TraceabilityService(provenance_store)
    report = await service.build_traceability(buyer, "order-1", "order")

    assert report.rootKind == IdentifierKind.ORDER
    assert report.order.status == RESOLVED
    assert report.order.data["id"] == "order-1"
    assert report.listing.status == RESOLVED
    assert report.listing.data["id"] == "listing-1"
    assert report.crop.status == RESOLVED
    assert report.crop.data["id"] == "crop-1"
    assert [p["id"] for p in report.crop.pestsDiseasesEncountered] == ["p1", "p2"]
    assert [f["id"] for f in report.crop.fertilizationHistory] == ["f1"]
    # crop-1 has no farmId
    assert report.farm.status == ABSENT
    assert report.recentOrders is None
    assert len(provenance_store.calls) == 5


@pytest.mark.asyncio
async def test_non_participant_is_denied_after_one_read(provenance_store, stranger):
    service = TraceabilityService(provenance_store)
    with pytest.raises(PermissionDeniedError):
        await service.build_traceability(stranger, "order-1", "order")
    assert provenance_store.calls == [("get_by_id", ORDERS, "order-1")]


@pytest.mark.asyncio
async def test_admin_can_trace_any_order(provenance_store, admin):
    service = TraceabilityService(provenance_store)
    report = await service.build_traceability(admin, "order-1", "order")
    assert report.order.status == RESOLVED
    assert report.crop.status == RESOLVED


@pytest.mark.asyncio
async def test_listing_root_resolves_farm_and_recent_orders(provenance_store, stranger):
    service = TraceabilityService(provenance_store)
    report = await service.build_traceability(stranger, "listing-2", "listing")

    assert report.order is None
    assert report.listing.status == RESOLVED
    assert report.crop.data["id"] == "crop-2"
    assert report.farm.status == RESOLVED
    assert report.farm.data["name"] == "Kiambu Greens"
    assert [o.id for o in report.recentOrders] == ["o2-6", "o2-5", "o2-4", "o2-3", "o2-2"]
    assert len(provenance_store.calls) == 6


@pytest.mark.asyncio
async def test_recent_orders_limit_is_configurable(provenance_store, stranger):
    service = TraceabilityService(provenance_store, recent_orders_limit=2)
    report = await service.build_traceability(stranger, "listing-2", "listing")
    assert [o.id for o in report.recentOrders] == ["o2-6", "o2-5"]

    provenance_store.calls.clear()
    service = TraceabilityService(provenance_store, recent_orders_limit=0)
    report = await service.build_traceability(stranger, "listing-2", "listing")
    assert report.recentOrders == []
    assert not any(c[0] == "query_equal" for c in provenance_store.calls)


@pytest.mark.asyncio
async def test_non_produce_listing_has_no_crop(provenance_store, stranger):
    service = TraceabilityService(provenance_store)
    report = await service.build_traceability(stranger, "listing-3", "listing")

    assert report.listing.status == RESOLVED
    assert report.crop.status == ABSENT
    assert report.crop.pestsDiseasesEncountered == []
    assert report.farm.status == ABSENT
    assert report.recentOrders == []
    assert not any(c[1] == CROPS for c in provenance_store.calls if c[0] == "get_by_id")


@pytest.mark.asyncio
async def test_inactive_listing_only_for_its_seller(provenance_store, stranger):
    service = TraceabilityService(provenance_store)
    with pytest.raises(PermissionDeniedError):
        await service.build_traceability(stranger, "listing-4", "listing")

    report = await service.build_traceability(Actor("seller-4"), "listing-4", "listing")
    assert report.listing.status == RESOLVED
    assert report.crop.status == ABSENT


@pytest.mark.asyncio
async def test_order_without_listing(provenance_store, buyer):
    service = TraceabilityService(provenance_store)
    report = await service.build_traceability(buyer, "order-9", "order")

    assert report.order.status == RESOLVED
    assert report.listing.status == ABSENT
    assert report.crop.status == ABSENT
    assert report.farm.status == ABSENT
    assert len(provenance_store.calls) == 1


@pytest.mark.asyncio
async def test_dangling_links_degrade_to_absent(buyer):
    store = InMemoryStore()
    store.add(ORDERS, {"id": "o", "listingId": "gone", "buyerId": "u1", "sellerId": "s"})
    store.add(LISTINGS, make_listing("l", crop_id="crop-gone"))
    service = TraceabilityService(store)

    report = await service.build_traceability(buyer, "o", "order")
    assert report.listing.status == ABSENT

    report = await service.build_traceability(buyer, "l", "listing")
    assert report.listing.status == RESOLVED
    assert report.crop.status == ABSENT
    assert report.farm.status == ABSENT


@pytest.mark.asyncio
async def test_malformed_downstream_record_is_absent(buyer):
    store = InMemoryStore()
    store.add(LISTINGS, make_listing("l", crop_id="crop-bad"))
    store.add(CROPS, {"id": "crop-bad", "farmId": {"not": "a string"}})
    service = TraceabilityService(store)

    report = await service.build_traceability(buyer, "l", "listing")
    assert report.listing.status == RESOLVED
    assert report.crop.status == ABSENT
    assert report.farm.status == ABSENT


@pytest.mark.asyncio
async def test_malformed_root_is_internal(buyer):
    store = InMemoryStore()
    store.add(ORDERS, {"id": "o", "buyerId": ["u1"], "sellerId": "s"})
    service = TraceabilityService(store)
    with pytest.raises(InternalError):
        await service.build_traceability(buyer, "o", "order")


@pytest.mark.asyncio
async def test_unknown_root_is_not_found(provenance_store, admin):
    service = TraceabilityService(provenance_store)
    with pytest.raises(NotFoundError):
        await service.build_traceability(admin, "order-404", "order")
    with pytest.raises(NotFoundError):
        await service.build_traceability(admin, "listing-404", "listing")


@pytest.mark.asyncio
@pytest.mark.parametrize("identifier, kind", [
    ("", "order"),
    ("   ", "order"),
    (None, "order"),
    ("orders/order-1", "order"),
    ("x" * 129, "listing"),
    ("order-1", "crop"),
    ("order-1", None),
])
async def test_invalid_input_makes_no_store_calls(provenance_store, buyer, identifier, kind):
    service = TraceabilityService(provenance_store)
    with pytest.raises(InvalidArgumentError):
        await service.build_traceability(buyer, identifier, kind)
    assert provenance_store.calls == []


@pytest.mark.asyncio
async def test_store_failure_is_internal(buyer):
    service = TraceabilityService(InMemoryStore(fail=True))
    with pytest.raises(InternalError):
        await service.build_traceability(buyer, "order-1", "order")


@pytest.mark.asyncio
async def test_slow_store_times_out(buyer):
    service = TraceabilityService(InMemoryStore(delay=0.5), timeout_s=0.05)
    with pytest.raises(DeadlineExceededError):
        await service.build_traceability(buyer, "order-1", "order")


@pytest.mark.asyncio
async def test_report_serialization(provenance_store, buyer, stranger):
    service = TraceabilityService(provenance_store)

    by_order = (await service.build_traceability(buyer, "order-1", "order")).to_dict()
    assert by_order["rootKind"] == "order"
    assert by_order["farm"] == {"status": "absent", "data": None}
    assert "recentOrders" not in by_order
    assert isinstance(by_order["order"]["data"]["createdAt"], str)

    by_listing = (await service.build_traceability(stranger, "listing-2", "listing")).to_dict()
    assert "order" not in by_listing
    assert by_listing["recentOrders"][0]["id"] == "o2-6"


@pytest.mark.asyncio
async def test_unreadable_descriptive_fields_do_not_break_the_chain(provenance_store, buyer, stranger):
    for rec in provenance_store.collections[LISTINGS]:
        rec["price"] = "120 KES"
        rec["createdAt"] = "last season"
    for rec in provenance_store.collections[ORDERS]:
        rec["createdAt"] = "yesterday"
    service = TraceabilityService(provenance_store)

    by_listing = await service.build_traceability(stranger, "listing-2", "listing")
    assert by_listing.listing.status == RESOLVED
    assert by_listing.listing.data["price"] == "120 KES"
    assert by_listing.crop.status == RESOLVED
    assert by_listing.farm.status == RESOLVED
    assert len(by_listing.recentOrders) == 5
    assert all(o.createdAt is None for o in by_listing.recentOrders)

    by_order = await service.build_traceability(buyer, "order-1", "order")
    assert by_order.order.data["createdAt"] == "yesterday"
    assert by_order.listing.status == RESOLVED
    assert by_order.listing.data["createdAt"] == "last season"
    assert by_order.crop.status == RESOLVED


@pytest.mark.asyncio
async def test_failed_fan_out_cancels_sibling_reads(buyer):
    class FailingSubEvents(InMemoryStore):
        def __init__(self):
            super().__init__()
            self.cancelled = []

        async def list_subcollection(self, parent_id, name, order_by=None, limit=None):
            if name == "pestsDiseasesEncountered":
                raise StoreError("replica lost")
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                self.cancelled.append(name)
                raise
            return []

    store = FailingSubEvents()
    store.add(LISTINGS, make_listing("l", crop_id="c"))
    store.add(CROPS, {"id": "c"})
    service = TraceabilityService(store)

    with pytest.raises(InternalError):
        await service.build_traceability(buyer, "l", "listing")
    assert store.cancelled == ["fertilizationHistory"]
