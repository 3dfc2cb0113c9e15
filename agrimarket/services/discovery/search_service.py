# agrimarket/services/discovery/search_service.py

import asyncio
import logging
from typing import Any, Dict, List, Optional

from agrimarket.errors import DeadlineExceededError, InternalError, StoreError
from agrimarket.services.access.policy import Actor, RecordKind, decide
from agrimarket.services.discovery.distance import refine_candidates
from agrimarket.services.discovery.geohash import (
    KeyRange,
    geohash_query_bounds,
    validate_location,
    validate_radius,
)
from agrimarket.services.fanout import gather_or_cancel
from agrimarket.services.store.document_store import LISTINGS, DocumentStore

logger = logging.getLogger(__name__)

GEOHASH_FIELD = "geohash"


class ListingSearchService:
    """
    Nearby-listings search:
      plan geohash ranges -> query every range concurrently -> exact distance
      filter + dedup -> listing visibility policy.
    """

    def __init__(self, store: DocumentStore, timeout_s: float = 10.0):
        self.store = store
        self.timeout_s = timeout_s

    # -------------------------
    # Public API
    # -------------------------
    async def search_by_location(
        self,
        actor: Actor,
        latitude: Any,
        longitude: Any,
        radius_m: Any,
        sort_by_distance: bool = False,
        timeout_s: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """
        Listings within radius_m of (latitude, longitude) visible to actor.
        Each returned record is the stored listing plus ``distanceMeters``.
        Order is unspecified unless sort_by_distance is set.

        Raises InvalidArgumentError, InternalError, DeadlineExceededError.
        """
        lat, lng = validate_location(latitude, longitude)
        radius = validate_radius(radius_m)
        ranges = geohash_query_bounds(lat, lng, radius)

        timeout = timeout_s if timeout_s is not None else self.timeout_s
        try:
            candidates = await asyncio.wait_for(self._fan_out(ranges), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Nearby search timed out after %.2fs (%d ranges)", timeout, len(ranges))
            raise DeadlineExceededError("Nearby search timed out.")
        except StoreError as e:
            raise InternalError("Error querying listings.") from e

        matches = refine_candidates(candidates, (lat, lng), radius)

        out: List[Dict[str, Any]] = []
        for rec, distance in matches:
            if not decide(actor, RecordKind.LISTING, rec).allow:
                continue
            out.append({**rec, "distanceMeters": round(distance, 3)})

        if sort_by_distance:
            out.sort(key=lambda r: r["distanceMeters"])

        logger.debug(
            "Nearby search (%.5f, %.5f, %.0fm): %d ranges, %d candidates, %d returned",
            lat, lng, radius, len(ranges), len(candidates), len(out),
        )
        return out

    # -------------------------
    # Store reads
    # -------------------------
    async def _fan_out(self, ranges: List[KeyRange]) -> List[Dict[str, Any]]:
        results = await gather_or_cancel(*(
            self.store.query_range(LISTINGS, GEOHASH_FIELD, r.start, r.end) for r in ranges
        ))
        return [rec for batch in results for rec in batch]
