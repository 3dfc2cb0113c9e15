# agrimarket/services/discovery/distance.py

import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from agrimarket.services.discovery.geohash import EARTH_RADIUS_M

logger = logging.getLogger(__name__)


def distance_between(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Great-circle (haversine) distance in meters between two (lat, lng) points."""
    lat1, lng1 = math.radians(a[0]), math.radians(a[1])
    lat2, lng2 = math.radians(b[0]), math.radians(b[1])
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def record_location(record: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """
    Reads (lat, lng) from record["location"].
    Accepts {lat, lng} and {latitude, longitude}; anything else is None.
    """
    loc = record.get("location")
    if not isinstance(loc, dict):
        return None

    lat = loc.get("lat", loc.get("latitude"))
    lng = loc.get("lng", loc.get("longitude"))
    for v in (lat, lng):
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            return None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return float(lat), float(lng)


def refine_candidates(
    candidates: Iterable[Dict[str, Any]],
    center: Tuple[float, float],
    radius_m: float,
) -> List[Tuple[Dict[str, Any], float]]:
    """
    Drop range-query false positives and duplicates.

    Keeps a candidate iff its exact distance to ``center`` is <= radius_m.
    Candidates without a usable location are skipped (logged, not fatal).
    The same id returned by overlapping ranges is kept once (first seen).
    Returns (record, distance_m) pairs.
    """
    seen = set()
    out: List[Tuple[Dict[str, Any], float]] = []

    for rec in candidates:
        rec_id = rec.get("id")
        if rec_id in seen:
            continue

        point = record_location(rec)
        if point is None:
            logger.warning("Listing %s is missing location data; skipped", rec_id)
            continue

        distance = distance_between(point, center)
        if distance <= radius_m:
            seen.add(rec_id)
            out.append((rec, distance))

    return out
