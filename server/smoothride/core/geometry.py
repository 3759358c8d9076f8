"""Point and line geometry helpers.

Distances along routes are measured in a local azimuthal-equidistant
projection centered on the route, so shapely can work in meters.
Coordinates passed as sequences are (lng, lat) pairs, GeoJSON order.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from functools import lru_cache

from pyproj import CRS, Transformer
from shapely.geometry import LineString, Point
from shapely.geometry.base import BaseGeometry
from shapely.prepared import prep

from smoothride.core.errors import InvalidInput
from smoothride.core.models import Bounds

# Earth radius in meters (for Haversine).
_EARTH_R = 6_371_000.0

# Meters per degree of latitude (spherical approximation).
_M_PER_DEG_LAT = 111_320.0

# Bounding boxes built from meter margins are this much wider than asked.
_BOX_SLACK = 1.1

LngLat = tuple[float, float]


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return 2 * _EARTH_R * math.asin(math.sqrt(a))


@lru_cache(maxsize=256)
def _local_transformer(lat0: float, lng0: float) -> Transformer:
    local = CRS.from_proj4(
        f"+proj=aeqd +lat_0={lat0} +lon_0={lng0} +x_0=0 +y_0=0 +datum=WGS84 +units=m"
    )
    return Transformer.from_crs("EPSG:4326", local, always_xy=True)


class LocalFrame:
    """Projects lng/lat into meters around a fixed origin."""

    def __init__(self, origin: LngLat) -> None:
        # Rounding keeps the transformer cache effective for nearby origins.
        self._tf = _local_transformer(round(origin[1], 3), round(origin[0], 3))

    def point(self, lng: float, lat: float) -> Point:
        x, y = self._tf.transform(lng, lat)
        return Point(x, y)

    def line(self, coords: Sequence[LngLat]) -> LineString:
        xs, ys = self._tf.transform([c[0] for c in coords], [c[1] for c in coords])
        return LineString(list(zip(xs, ys)))


def validate_route(coords: Sequence[LngLat]) -> None:
    if len(coords) < 2:
        raise InvalidInput("a route line needs at least two coordinates")


def point_to_line_distance_m(lat: float, lng: float, coords: Sequence[LngLat]) -> float:
    """Shortest distance in meters from a point to a polyline."""
    validate_route(coords)
    frame = LocalFrame(coords[0])
    return frame.line(coords).distance(frame.point(lng, lat))


def buffer_line(coords: Sequence[LngLat], buffer_m: float) -> tuple[LocalFrame, BaseGeometry]:
    """Return the local frame and the corridor polygon (in meters) around a line."""
    validate_route(coords)
    frame = LocalFrame(coords[0])
    return frame, frame.line(coords).buffer(buffer_m)


def points_near_line(points: Sequence[LngLat], coords: Sequence[LngLat],
                     buffer_m: float) -> list[bool]:
    """For each (lng, lat) point, whether it lies within ``buffer_m`` of the line."""
    frame, corridor = buffer_line(coords, buffer_m)
    prepared = prep(corridor)
    return [prepared.covers(frame.point(lng, lat)) for lng, lat in points]


def line_bounds(coords: Sequence[LngLat], margin_m: float = 0.0) -> Bounds:
    """Bounding box of a line, expanded by at least ``margin_m`` meters on each side.

    The longitude margin is sized at the box edge nearest a pole, where a
    degree of longitude is shortest.
    """
    if not coords:
        raise InvalidInput("cannot compute bounds of an empty line")
    lngs = [c[0] for c in coords]
    lats = [c[1] for c in coords]

    # Spherical degrees, padded so the box never falls short of the margin.
    margin_m *= _BOX_SLACK
    dlat = margin_m / _M_PER_DEG_LAT
    min_lat = max(-90.0, min(lats) - dlat)
    max_lat = min(90.0, max(lats) + dlat)
    widest = max(abs(min_lat), abs(max_lat))
    cos_lat = max(math.cos(math.radians(widest)), 1e-6)
    dlng = margin_m / (_M_PER_DEG_LAT * cos_lat)
    return Bounds(
        min_lat=min_lat,
        max_lat=max_lat,
        min_lng=max(-180.0, min(lngs) - dlng),
        max_lng=min(180.0, max(lngs) + dlng),
    )


def bounds_around(lat: float, lng: float, radius_m: float) -> Bounds:
    """Approximate bounding box enclosing a circle of ``radius_m`` meters."""
    dlat = radius_m / _M_PER_DEG_LAT
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    dlng = radius_m / (_M_PER_DEG_LAT * cos_lat)
    return Bounds(
        min_lat=max(-90.0, lat - dlat),
        max_lat=min(90.0, lat + dlat),
        min_lng=max(-180.0, lng - dlng),
        max_lng=min(180.0, lng + dlng),
    )
