# agrimarket/models/marketplace/marketplace_models.py

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, WrapValidator, model_validator
from typing_extensions import Annotated

from agrimarket.services.discovery.geohash import geohash_for_location


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lng", "longitude", "lon"))


def none_if_invalid(value: Any, handler) -> Any:
    try:
        return handler(value)
    except ValidationError:
        return None


# Descriptive fields nothing traverses on. Legacy records carry all sorts of
# shapes here ("120 KES", free-text dates); an unreadable value becomes None
# and the raw record is still reported as stored.
LenientStr = Annotated[Optional[str], WrapValidator(none_if_invalid)]
LenientFloat = Annotated[Optional[float], WrapValidator(none_if_invalid)]
LenientDatetime = Annotated[Optional[datetime], WrapValidator(none_if_invalid)]
LenientGeoPoint = Annotated[Optional[GeoPoint], WrapValidator(none_if_invalid)]


class ListingCategory(str, Enum):
    FRESH_PRODUCE = "fresh_produce"
    AGRO_INPUTS = "agro_inputs"
    SERVICE = "service"


class ListingStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SOLD = "sold"


# ----- categoryData variants (one payload shape per category) -----
class FreshProduceData(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["fresh_produce"] = "fresh_produce"
    cropId: Optional[str] = None
    harvestDate: LenientStr = None
    grade: LenientStr = None
    unit: LenientStr = None


class AgroInputsData(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["agro_inputs"] = "agro_inputs"
    brand: LenientStr = None
    inputType: LenientStr = None


class ServiceData(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["service"] = "service"
    serviceType: LenientStr = None
    serviceArea: LenientStr = None


class OtherCategoryData(BaseModel):
    """Payload of any category this service does not traverse."""
    model_config = ConfigDict(extra="allow")

    kind: Literal["other"] = "other"


CategoryData = Annotated[
    Union[FreshProduceData, AgroInputsData, ServiceData, OtherCategoryData],
    Field(discriminator="kind"),
]

_KNOWN_CATEGORIES = {c.value for c in ListingCategory}


class Listing(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    sellerId: str
    category: str
    categoryData: CategoryData
    price: LenientFloat = None
    status: str = ListingStatus.INACTIVE.value
    location: LenientGeoPoint = None
    geohash: LenientStr = None
    createdAt: LenientDatetime = None
    updatedAt: LenientDatetime = None

    @model_validator(mode="before")
    @classmethod
    def _tag_category_data(cls, data: Any) -> Any:
        # stored payloads are untagged; the category decides the variant
        if not isinstance(data, dict):
            return data
        payload = data.get("categoryData")
        if isinstance(payload, BaseModel):
            return data
        data = dict(data)
        payload = dict(payload) if isinstance(payload, dict) else {}
        category = data.get("category")
        known = isinstance(category, str) and category in _KNOWN_CATEGORIES
        payload["kind"] = category if known else "other"
        data["categoryData"] = payload
        return data


def index_listing_location(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recompute the derived ``geohash`` of a stored listing record.
    Writers call this whenever ``location`` changes; a record without a
    usable location loses its geohash so it never matches a range query.
    """
    out = dict(record)
    try:
        point = GeoPoint.model_validate(out.get("location") or {})
    except ValueError:
        out.pop("geohash", None)
        return out
    out["geohash"] = geohash_for_location(point.lat, point.lng)
    return out


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Order(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    listingId: Optional[str] = None
    buyerId: Optional[str] = None
    sellerId: Optional[str] = None
    status: LenientStr = OrderStatus.PENDING_PAYMENT.value
    createdAt: LenientDatetime = None
    updatedAt: LenientDatetime = None


class OrderSummary(BaseModel):
    id: str
    status: str = OrderStatus.PENDING_PAYMENT.value
    buyerId: LenientStr = None
    createdAt: LenientDatetime = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "OrderSummary":
        return cls(
            id=str(record.get("id") or ""),
            status=str(record.get("status") or OrderStatus.PENDING_PAYMENT.value),
            buyerId=record.get("buyerId"),
            createdAt=record.get("createdAt"),
        )


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Offer(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    listingId: str
    buyerId: str
    sellerId: str
    proposedPrice: float = Field(..., gt=0)
    proposedQuantity: float = Field(..., gt=0)
    status: OfferStatus = OfferStatus.PENDING
