"""Spatial hash index: base-32 geohash encode/decode and neighbors.

A longer hash of a coordinate always extends the shorter hash of the same
coordinate, so grouping by string prefix groups by cell.
"""

from __future__ import annotations

from dataclasses import dataclass

import pygeohash as pgh

from smoothride.core.errors import InvalidInput
from smoothride.core.models import validate_coordinates

BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"

# Precision used for the stored obstacle hash (~4.8 m cells).
DEFAULT_PRECISION = 9

# Upper bound on zoom level: (max zoom, precision) bands, coarse to fine.
_ZOOM_BANDS = (
    (5, 3),    # ~156 km
    (8, 4),    # ~39 km
    (10, 5),   # ~4.9 km
    (12, 6),   # ~1.2 km
    (14, 7),   # ~153 m
    (16, 8),   # ~38 m
)


@dataclass(frozen=True)
class DecodedHash:
    lat: float
    lng: float
    lat_min: float
    lat_max: float
    lng_min: float
    lng_max: float

    @property
    def lat_delta(self) -> float:
        return self.lat_max - self.lat_min

    @property
    def lng_delta(self) -> float:
        return self.lng_max - self.lng_min


def encode(lat: float, lng: float, precision: int = DEFAULT_PRECISION) -> str:
    """Encode a coordinate into a geohash of ``precision`` characters."""
    validate_coordinates(lat, lng)
    if precision < 1:
        raise InvalidInput(f"precision must be >= 1, got {precision}")
    return pgh.encode(lat, lng, precision=precision)


def decode(geohash: str) -> DecodedHash:
    """Decode a geohash into its cell centroid and bounds."""
    if not geohash:
        raise InvalidInput("geohash must not be empty")
    bad = next((ch for ch in geohash if ch not in BASE32), None)
    if bad is not None:
        raise InvalidInput(f"invalid geohash character {bad!r}")

    lat, lng, lat_err, lng_err = pgh.decode_exactly(geohash)
    return DecodedHash(
        lat=lat,
        lng=lng,
        lat_min=lat - lat_err,
        lat_max=lat + lat_err,
        lng_min=lng - lng_err,
        lng_max=lng + lng_err,
    )


def _wrap_lng(lng: float) -> float:
    if lng > 180.0:
        return lng - 360.0
    if lng < -180.0:
        return lng + 360.0
    return lng


def _clamp_lat(lat: float) -> float:
    return max(-90.0, min(90.0, lat))


def neighbors(geohash: str) -> list[str]:
    """Return the 8 adjacent cells: N, NE, E, SE, S, SW, W, NW.

    Longitude wraps at the antimeridian. Latitude clamps at the poles, so a
    cell on the polar row may list itself as its own north (or south) neighbor.
    """
    cell = decode(geohash)
    precision = len(geohash)
    dlat, dlng = cell.lat_delta, cell.lng_delta

    offsets = (
        (dlat, 0.0),     # N
        (dlat, dlng),    # NE
        (0.0, dlng),     # E
        (-dlat, dlng),   # SE
        (-dlat, 0.0),    # S
        (-dlat, -dlng),  # SW
        (0.0, -dlng),    # W
        (dlat, -dlng),   # NW
    )
    return [
        encode(_clamp_lat(cell.lat + lat_off), _wrap_lng(cell.lng + lng_off), precision)
        for lat_off, lng_off in offsets
    ]


def precision_for_zoom(zoom: int) -> int:
    """Map a map zoom level (0-20) to a geohash precision."""
    if zoom < 0:
        raise InvalidInput(f"zoom must be >= 0, got {zoom}")
    for max_zoom, precision in _ZOOM_BANDS:
        if zoom <= max_zoom:
            return precision
    return DEFAULT_PRECISION


def common_prefix(*hashes: str) -> str:
    """Longest prefix shared by all the given hashes."""
    if not hashes:
        return ""
    shortest = min(hashes, key=len)
    for i, ch in enumerate(shortest):
        if any(h[i] != ch for h in hashes):
            return shortest[:i]
    return shortest
