# agrimarket/fastapi/traceability_api.py
# Product provenance report: order/listing -> crop -> farm.

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from agrimarket.fastapi.auth import current_actor
from agrimarket.services.access.policy import Actor
from agrimarket.services.traceability.traceability_services import TraceabilityService

router = APIRouter(prefix="/api/v1/traceability", tags=["traceability"])


class TraceabilityRequest(BaseModel):
    identifier: str = Field(..., description="Order or listing ID")
    identifierKind: str = Field(..., description="'order' or 'listing'")


def get_traceability_service(request: Request) -> TraceabilityService:
    return request.app.state.traceability_service


@router.post("/product")
async def product_traceability(
    req: TraceabilityRequest,
    actor: Actor = Depends(current_actor),
    service: TraceabilityService = Depends(get_traceability_service),
) -> Dict[str, Any]:
    report = await service.build_traceability(actor, req.identifier, req.identifierKind)
    return {"ok": True, "report": report.to_dict()}
