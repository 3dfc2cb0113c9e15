# agrimarket/services/traceability/traceability_services.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from agrimarket.errors import (
    DeadlineExceededError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    StoreError,
)
from agrimarket.models.farmer.crop_models import (
    FERTILIZATION_COLLECTION,
    PESTS_DISEASES_COLLECTION,
    CropModel,
    FarmModel,
)
from agrimarket.models.marketplace.marketplace_models import (
    FreshProduceData,
    Listing,
    Order,
    OrderSummary,
)
from agrimarket.models.traceability.traceability_models import (
    CropNode,
    IdentifierKind,
    NodeStatus,
    ReportNode,
    TraceabilityReport,
)
from agrimarket.services.access.policy import Actor, Decision, RecordKind, decide
from agrimarket.services.fanout import gather_or_cancel
from agrimarket.services.store.document_store import (
    CROPS,
    FARMS,
    LISTINGS,
    ORDERS,
    DocumentStore,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

MAX_IDENTIFIER_LENGTH = 128
SUB_EVENT_ORDER = "createdAt"


@dataclass(frozen=True)
class AuthorizedRoot:
    """Start node that passed the authorization gate, whatever its kind."""
    kind: IdentifierKind
    decision: Decision
    listing_record: Optional[Dict[str, Any]] = None
    order_record: Optional[Dict[str, Any]] = None


class TraceabilityService:
    """
    Compose the provenance report of a product:
      Order -> Listing -> Crop (+ pest/disease and fertilization events) -> Farm

    Only the start node can fail the request (not-found / permission-denied).
    Every later hop that is missing, unlinked or withheld is reported as
    "absent". At most 6 store calls are made per request.
    """

    def __init__(self, store: DocumentStore, recent_orders_limit: int = 5, timeout_s: float = 10.0):
        self.store = store
        self.recent_orders_limit = recent_orders_limit
        self.timeout_s = timeout_s
        self._start_handlers = {
            IdentifierKind.ORDER: self._start_from_order,
            IdentifierKind.LISTING: self._start_from_listing,
        }

    # -------------------------
    # Public API
    # -------------------------
    async def build_traceability(
        self,
        actor: Actor,
        identifier: Any,
        identifier_kind: Any,
        timeout_s: Optional[float] = None,
    ) -> TraceabilityReport:
        identifier = self._validate_identifier(identifier)
        kind = self._parse_kind(identifier_kind)

        timeout = timeout_s if timeout_s is not None else self.timeout_s
        try:
            return await asyncio.wait_for(self._resolve(actor, identifier, kind), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Traceability for %s %s timed out after %.2fs", kind.value, identifier, timeout)
            raise DeadlineExceededError("Traceability request timed out.")
        except StoreError as e:
            raise InternalError("Unable to build traceability report.") from e

    # -------------------------
    # Input validation
    # -------------------------
    @staticmethod
    def _validate_identifier(identifier: Any) -> str:
        if not isinstance(identifier, str) or not identifier.strip():
            raise InvalidArgumentError("identifier is required.")
        identifier = identifier.strip()
        if len(identifier) > MAX_IDENTIFIER_LENGTH or "/" in identifier:
            raise InvalidArgumentError("identifier is malformed.")
        return identifier

    @staticmethod
    def _parse_kind(identifier_kind: Any) -> IdentifierKind:
        try:
            return IdentifierKind(identifier_kind)
        except ValueError:
            raise InvalidArgumentError("identifierKind must be 'order' or 'listing'.")

    # -------------------------
    # Traversal
    # -------------------------
    async def _resolve(self, actor: Actor, identifier: str, kind: IdentifierKind) -> TraceabilityReport:
        root = await self._start_handlers[kind](actor, identifier)

        report = TraceabilityReport(rootKind=kind, identifier=identifier)
        if root.order_record is not None:
            report.order = ReportNode.resolved(root.order_record)

        if kind == IdentifierKind.LISTING:
            chain, recent = await gather_or_cancel(
                self._resolve_chain(actor, root),
                self._recent_orders(identifier),
            )
            report.recentOrders = recent
        else:
            chain = await self._resolve_chain(actor, root)

        report.listing, report.crop, report.farm = chain
        return report

    async def _start_from_order(self, actor: Actor, order_id: str) -> AuthorizedRoot:
        rec = await self.store.get_by_id(ORDERS, order_id)
        if rec is None:
            raise NotFoundError(f"Order {order_id} not found.")

        order = self._parse_root(Order, rec, "order")
        decision = decide(actor, RecordKind.ORDER, order)
        if not decision.allow:
            logger.info("Actor %s denied traceability of order %s (%s)", actor.id, order_id, decision.reason)
            raise PermissionDeniedError()

        listing_rec = None
        if order.listingId:
            listing_rec = await self.store.get_by_id(LISTINGS, order.listingId)
        return AuthorizedRoot(IdentifierKind.ORDER, decision, listing_record=listing_rec, order_record=rec)

    async def _start_from_listing(self, actor: Actor, listing_id: str) -> AuthorizedRoot:
        rec = await self.store.get_by_id(LISTINGS, listing_id)
        if rec is None:
            raise NotFoundError(f"Listing {listing_id} not found.")

        listing = self._parse_root(Listing, rec, "listing")
        decision = decide(actor, RecordKind.LISTING, listing)
        if not decision.allow:
            logger.info("Actor %s denied traceability of listing %s (%s)", actor.id, listing_id, decision.reason)
            raise PermissionDeniedError()
        return AuthorizedRoot(IdentifierKind.LISTING, decision, listing_record=rec)

    async def _resolve_chain(self, actor: Actor, root: AuthorizedRoot) -> Tuple[ReportNode, CropNode, ReportNode]:
        """Listing step -> Crop step -> Farm; shared by every start kind."""
        absent = (ReportNode.absent(), CropNode(), ReportNode.absent())

        listing = self._parse_hop(Listing, root.listing_record, "listing")
        if listing is None:
            return absent

        if root.kind == IdentifierKind.LISTING:
            listing_decision = root.decision
        else:
            listing_decision = decide(actor, RecordKind.LISTING, listing, referrer=root.decision)
        if not listing_decision.allow:
            return absent
        listing_node = ReportNode.resolved(root.listing_record)

        payload = listing.categoryData
        if not isinstance(payload, FreshProduceData) or not payload.cropId:
            # agro inputs, services and unlinked produce carry no crop provenance
            return listing_node, CropNode(), ReportNode.absent()

        crop_rec = await self.store.get_by_id(CROPS, payload.cropId)
        crop = self._parse_hop(CropModel, crop_rec, "crop")
        if crop is None:
            return listing_node, CropNode(), ReportNode.absent()

        crop_decision = decide(actor, RecordKind.CROP, crop, referrer=listing_decision)
        if not crop_decision.allow:
            return listing_node, CropNode(), ReportNode.absent()

        pests, fertilization, farm_rec = await gather_or_cancel(
            self.store.list_subcollection(crop.id, PESTS_DISEASES_COLLECTION, order_by=SUB_EVENT_ORDER),
            self.store.list_subcollection(crop.id, FERTILIZATION_COLLECTION, order_by=SUB_EVENT_ORDER),
            self._get_optional(FARMS, crop.farmId),
        )
        crop_node = CropNode(
            status=NodeStatus.RESOLVED,
            data=crop_rec,
            pestsDiseasesEncountered=pests,
            fertilizationHistory=fertilization,
        )

        farm = self._parse_hop(FarmModel, farm_rec, "farm")
        if farm is None or not decide(actor, RecordKind.FARM, farm, referrer=crop_decision).allow:
            return listing_node, crop_node, ReportNode.absent()
        return listing_node, crop_node, ReportNode.resolved(farm_rec)

    async def _recent_orders(self, listing_id: str) -> List[OrderSummary]:
        if self.recent_orders_limit <= 0:
            return []
        recs = await self.store.query_equal(
            ORDERS, "listingId", listing_id, order_by="-createdAt", limit=self.recent_orders_limit,
        )
        out: List[OrderSummary] = []
        for r in recs:
            try:
                out.append(OrderSummary.from_record(r))
            except ValidationError as e:
                logger.warning("Skipping malformed order %s in recent orders: %s", r.get("id"), e)
        return out

    # -------------------------
    # Helpers
    # -------------------------
    async def _get_optional(self, collection: str, record_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not record_id:
            return None
        return await self.store.get_by_id(collection, record_id)

    @staticmethod
    def _parse_root(model: Type[M], rec: Dict[str, Any], label: str) -> M:
        try:
            return model.model_validate(rec)
        except ValidationError as e:
            logger.error("Stored %s %s is malformed: %s", label, rec.get("id"), e)
            raise InternalError(f"Stored {label} is malformed.") from e

    @staticmethod
    def _parse_hop(model: Type[M], rec: Optional[Dict[str, Any]], label: str) -> Optional[M]:
        if rec is None:
            return None
        try:
            return model.model_validate(rec)
        except ValidationError as e:
            logger.warning("Stored %s %s is malformed; reported as absent: %s", label, rec.get("id"), e)
            return None
