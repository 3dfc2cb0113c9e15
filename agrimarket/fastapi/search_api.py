# agrimarket/fastapi/search_api.py
# Nearby-listings search for the marketplace map and "near me" feeds.

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from agrimarket.fastapi.auth import current_actor
from agrimarket.services.access.policy import Actor
from agrimarket.services.discovery.search_service import ListingSearchService

router = APIRouter(prefix="/api/v1/marketplace", tags=["marketplace"])


class NearbySearchRequest(BaseModel):
    latitude: float
    longitude: float
    radiusMeters: float
    sortByDistance: bool = Field(default=False, description="Sort results nearest first")


def get_search_service(request: Request) -> ListingSearchService:
    return request.app.state.search_service


@router.post("/search/nearby")
async def search_nearby(
    req: NearbySearchRequest,
    actor: Actor = Depends(current_actor),
    service: ListingSearchService = Depends(get_search_service),
) -> Dict[str, Any]:
    listings = await service.search_by_location(
        actor,
        req.latitude,
        req.longitude,
        req.radiusMeters,
        sort_by_distance=req.sortByDistance,
    )
    return {"ok": True, "count": len(listings), "listings": listings}
