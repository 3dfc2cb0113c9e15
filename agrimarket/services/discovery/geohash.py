# agrimarket/services/discovery/geohash.py
"""
Geohash encoding and covering-range planning for proximity search.

Listings store a 10 character geohash of their location. A search for
"everything within R meters of C" is answered by a handful of half-open
string ranges ``[start, end)`` over that field:

  - the cell size is picked from the radius so that one cell is at least as
    large as the radius on both axes (coarser cells for larger radii),
  - the bounding box of the circle is sampled at 3 x 3 points; since a cell
    is never smaller than the spacing between samples, every cell touching
    the box contains a sample,
  - each sampled cell becomes one range; duplicates are dropped.

Ranges may cover area outside the circle (false positives); exact
inclusion is decided afterwards by the distance refinement.
"""
from __future__ import annotations

import math
from typing import List, NamedTuple, Tuple

from agrimarket.errors import InvalidArgumentError

BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
BITS_PER_CHAR = 5

# Precision of the geohash stored on every listing
GEOHASH_PRECISION = 10
MAXIMUM_BITS_PRECISION = GEOHASH_PRECISION * BITS_PER_CHAR

# Shortest meridian degree (at the equator), so latitude deltas err on the large side
METERS_PER_DEGREE_LATITUDE = 110574.0
EARTH_RADIUS_M = 6371008.8

# Near a pole every longitude band is swept; this caps how fine that sweep gets
POLE_MAX_BITS = 6

# Sorts after every base32 character
RANGE_END = "~"

_BOX_MARGIN = 1.0001


class KeyRange(NamedTuple):
    start: str
    end: str

    def contains(self, key: str) -> bool:
        return self.start <= key < self.end


def _require_number(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgumentError(f"{name} must be a number")
    value = float(value)
    if not math.isfinite(value):
        raise InvalidArgumentError(f"{name} must be finite")
    return value


def validate_location(latitude, longitude) -> Tuple[float, float]:
    lat = _require_number("latitude", latitude)
    lng = _require_number("longitude", longitude)
    if not -90.0 <= lat <= 90.0:
        raise InvalidArgumentError("latitude must be within [-90, 90]")
    if not -180.0 <= lng <= 180.0:
        raise InvalidArgumentError("longitude must be within [-180, 180]")
    return lat, lng


def validate_radius(radius_m) -> float:
    radius = _require_number("radiusMeters", radius_m)
    if radius <= 0:
        raise InvalidArgumentError("radiusMeters must be greater than 0")
    return radius


def geohash_for_location(latitude: float, longitude: float, precision: int = GEOHASH_PRECISION) -> str:
    """Standard base32 geohash; longitude takes the first (even) bit."""
    lat, lng = validate_location(latitude, longitude)
    if not 1 <= precision <= 22:
        raise InvalidArgumentError("precision must be within [1, 22]")

    lat_lo, lat_hi = -90.0, 90.0
    lng_lo, lng_hi = -180.0, 180.0
    chars: List[str] = []
    value = 0
    bits = 0
    even = True

    while len(chars) < precision:
        if even:
            mid = (lng_lo + lng_hi) / 2
            if lng > mid:
                value = (value << 1) + 1
                lng_lo = mid
            else:
                value = value << 1
                lng_hi = mid
        else:
            mid = (lat_lo + lat_hi) / 2
            if lat > mid:
                value = (value << 1) + 1
                lat_lo = mid
            else:
                value = value << 1
                lat_hi = mid

        even = not even
        bits += 1
        if bits == BITS_PER_CHAR:
            chars.append(BASE32[value])
            bits = 0
            value = 0

    return "".join(chars)


def wrap_longitude(longitude: float) -> float:
    if -180.0 <= longitude <= 180.0:
        return longitude
    adjusted = longitude + 180.0
    if adjusted > 0:
        return (adjusted % 360.0) - 180.0
    return 180.0 - (-adjusted % 360.0)


def _bits_for_extent(total_degrees: float, delta_degrees: float) -> int:
    # largest n such that total / 2**n is still >= delta
    if delta_degrees <= 0:
        return MAXIMUM_BITS_PRECISION
    if delta_degrees >= total_degrees:
        return 0
    return max(0, int(math.floor(math.log2(total_degrees / delta_degrees))))


def _longitude_delta_degrees(latitude: float, radius_m: float) -> float:
    """Half-width in longitude of the circle on the sphere; 360 once it reaches a pole."""
    angular = radius_m / EARTH_RADIUS_M
    cos_lat = math.cos(math.radians(latitude))
    if angular >= math.pi / 2 or cos_lat <= 0:
        return 360.0
    ratio = math.sin(angular) / cos_lat
    if ratio >= 1.0:
        return 360.0
    return math.degrees(math.asin(ratio)) * _BOX_MARGIN


def geohash_query(geohash: str, bits: int) -> KeyRange:
    """Half-open key range of the cell made of the first ``bits`` bits of ``geohash``."""
    precision = int(math.ceil(bits / BITS_PER_CHAR))
    if len(geohash) < precision:
        return KeyRange(geohash, geohash + RANGE_END)

    geohash = geohash[:precision]
    base = geohash[:-1]
    last_value = BASE32.index(geohash[-1])
    significant_bits = bits - len(base) * BITS_PER_CHAR
    unused_bits = BITS_PER_CHAR - significant_bits

    # clear the bits below the cell size
    start_value = (last_value >> unused_bits) << unused_bits
    end_value = start_value + (1 << unused_bits)
    if end_value > 31:
        return KeyRange(base + BASE32[start_value], base + RANGE_END)
    return KeyRange(base + BASE32[start_value], base + BASE32[end_value])


def geohash_query_bounds(latitude: float, longitude: float, radius_m: float) -> List[KeyRange]:
    """
    Covering set of geohash ranges for the circle (center, radius_m).

    Every point within radius_m of the center has its stored geohash inside
    at least one returned range. Ranges are sorted and may overlap.
    """
    lat, lng = validate_location(latitude, longitude)
    radius = validate_radius(radius_m)

    lat_delta = radius / METERS_PER_DEGREE_LATITUDE
    north = min(90.0, lat + lat_delta)
    south = max(-90.0, lat - lat_delta)
    lng_delta = _longitude_delta_degrees(lat, radius)
    lat_bits = _bits_for_extent(180.0, lat_delta)

    spans_pole = north >= 90.0 or south <= -90.0 or lng_delta >= 180.0
    if spans_pole:
        query_bits = max(1, min(lat_bits * 2, POLE_MAX_BITS))
        lng_cells = 1 << ((query_bits + 1) // 2)
        width = 360.0 / lng_cells
        longitudes = [-180.0 + width * (i + 0.5) for i in range(lng_cells)]
    else:
        lng_bits = _bits_for_extent(360.0, lng_delta)
        query_bits = max(1, min(lat_bits * 2, lng_bits * 2 - 1, MAXIMUM_BITS_PRECISION))
        longitudes = [lng, wrap_longitude(lng - lng_delta), wrap_longitude(lng + lng_delta)]

    precision = int(math.ceil(query_bits / BITS_PER_CHAR))
    ranges = {
        geohash_query(geohash_for_location(sample_lat, sample_lng, precision), query_bits)
        for sample_lat in (lat, north, south)
        for sample_lng in longitudes
    }
    return sorted(ranges)
