# agrimarket/models/traceability/traceability_models.py
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from agrimarket.models.marketplace.marketplace_models import OrderSummary


class IdentifierKind(str, Enum):
    ORDER = "order"
    LISTING = "listing"


class NodeStatus(str, Enum):
    RESOLVED = "resolved"
    ABSENT = "absent"    # missing link, missing record or withheld; not an error


class ReportNode(BaseModel):
    status: NodeStatus = NodeStatus.ABSENT
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def resolved(cls, data: Dict[str, Any]) -> "ReportNode":
        return cls(status=NodeStatus.RESOLVED, data=data)

    @classmethod
    def absent(cls) -> "ReportNode":
        return cls()


class CropNode(ReportNode):
    pestsDiseasesEncountered: List[Dict[str, Any]] = Field(default_factory=list)
    fertilizationHistory: List[Dict[str, Any]] = Field(default_factory=list)


class TraceabilityReport(BaseModel):
    """
    Nested provenance report.
      order         only for order-rooted requests
      listing/crop/farm always present, each tagged resolved/absent
      recentOrders  only for listing-rooted requests
    """
    rootKind: IdentifierKind
    identifier: str
    order: Optional[ReportNode] = None
    listing: ReportNode = Field(default_factory=ReportNode)
    crop: CropNode = Field(default_factory=CropNode)
    farm: ReportNode = Field(default_factory=ReportNode)
    recentOrders: Optional[List[OrderSummary]] = None

    def to_dict(self) -> Dict[str, Any]:
        skip = {name for name in ("order", "recentOrders") if getattr(self, name) is None}
        return self.model_dump(mode="json", exclude=skip)
