"""Route obstacle-avoidance scoring.

A route's smoothness starts at 100 and loses 10 per high, 5 per medium and
2 per low severity obstacle along it. Three variants come out of each plan:

- smooth: scored against every obstacle along the route
- standard: scored against high-severity obstacles only
- fastest: obstacles ignored
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from smoothride.core.errors import NotFound
from smoothride.core.geometry import line_bounds, points_near_line, validate_route
from smoothride.core.models import ObstacleStatus, Severity

if TYPE_CHECKING:
    from smoothride.core.geometry import LngLat
    from smoothride.core.models import Obstacle
    from smoothride.roadnet.base import RoadNetwork
    from smoothride.storage.base import ObstacleStorage

log = structlog.get_logger()

SEVERITY_DEDUCTION = {Severity.HIGH: 10, Severity.MEDIUM: 5, Severity.LOW: 2}

DEFAULT_BUFFER_M = 100.0

# Vehicles at or above this clearance roll over low-severity obstacles.
HIGH_CLEARANCE_INCHES = 6.0
# Vehicles below this clearance always get full conservative scoring.
LOW_CLEARANCE_INCHES = 4.5

MAX_DETOUR_PERCENT = 20.0

SMOOTH = "smooth"
STANDARD = "standard"
FASTEST = "fastest"
VARIANT_ORDER = (SMOOTH, STANDARD, FASTEST)


@dataclass(frozen=True)
class VehicleProfile:
    ground_clearance_inches: float
    name: str = ""
    vehicle_type: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.vehicle_type,
            "ground_clearance_inches": self.ground_clearance_inches,
        }


@dataclass(frozen=True)
class BaseRoute:
    coordinates: tuple[LngLat, ...]
    distance_m: float
    duration_s: float


@dataclass(frozen=True)
class RouteScore:
    smoothness_score: int
    obstacle_count: int
    severity_counts: dict[str, int]


@dataclass(frozen=True)
class DetourMetrics:
    detour_meters: int
    detour_percentage: float


@dataclass
class RouteVariant:
    type: str
    route: BaseRoute
    score: RouteScore
    obstacles: list[Obstacle] = field(default_factory=list)
    detour: DetourMetrics = DetourMetrics(0, 0.0)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "geometry": [{"lat": lat, "lng": lng} for lng, lat in self.route.coordinates],
            "distance_meters": _round_half_up(self.route.distance_m),
            "duration_seconds": _round_half_up(self.route.duration_s),
            "smoothness_score": self.score.smoothness_score,
            "obstacle_count": self.score.obstacle_count,
            "severity_counts": dict(self.score.severity_counts),
            "obstacles": [
                {"id": o.id, "type": o.type.value, "severity": o.severity.value,
                 "lat": o.lat, "lng": o.lng}
                for o in self.obstacles
            ],
            "detour_meters": self.detour.detour_meters,
            "detour_percentage": self.detour.detour_percentage,
        }


def _round_half_up(value: float, ndigits: int = 0) -> float | int:
    scale = 10 ** ndigits
    rounded = math.floor(value * scale + 0.5) / scale
    return int(rounded) if ndigits == 0 else rounded


def smoothness_score(obstacles: Iterable[Obstacle]) -> int:
    deduction = sum(SEVERITY_DEDUCTION.get(o.severity, 0) for o in obstacles)
    return max(0, 100 - deduction)


def find_obstacles_along_route(coordinates: Sequence[LngLat], obstacles: Sequence[Obstacle],
                               buffer_m: float = DEFAULT_BUFFER_M) -> list[Obstacle]:
    """Obstacles within ``buffer_m`` meters of the route line."""
    if not obstacles:
        return []
    near = points_near_line([(o.lng, o.lat) for o in obstacles], coordinates, buffer_m)
    return [o for o, is_near in zip(obstacles, near) if is_near]


def vehicle_filter(obstacles: Sequence[Obstacle],
                   vehicle: VehicleProfile | None) -> list[Obstacle]:
    """Drop obstacles the vehicle can safely traverse."""
    if vehicle is None or vehicle.ground_clearance_inches < LOW_CLEARANCE_INCHES:
        return list(obstacles)
    if vehicle.ground_clearance_inches >= HIGH_CLEARANCE_INCHES:
        return [o for o in obstacles if o.severity is not Severity.LOW]
    return list(obstacles)


def score_route(obstacles: Sequence[Obstacle], vehicle: VehicleProfile | None = None) -> RouteScore:
    considered = vehicle_filter(obstacles, vehicle)
    counts = {s.value: 0 for s in (Severity.HIGH, Severity.MEDIUM, Severity.LOW)}
    for o in considered:
        counts[o.severity.value] += 1
    return RouteScore(
        smoothness_score=smoothness_score(considered),
        obstacle_count=len(considered),
        severity_counts=counts,
    )


def calculate_detour_metrics(base_distance: float, alternative_distance: float) -> DetourMetrics:
    detour = max(0.0, alternative_distance - base_distance)
    pct = detour / base_distance * 100 if base_distance > 0 else 0.0
    return DetourMetrics(
        detour_meters=_round_half_up(detour),
        detour_percentage=_round_half_up(pct, 1),
    )


def is_detour_acceptable(base_distance: float, alternative_distance: float,
                         max_percent: float = MAX_DETOUR_PERCENT) -> bool:
    return calculate_detour_metrics(base_distance, alternative_distance).detour_percentage <= max_percent


def _variant_obstacles(kind: str, along: list[Obstacle]) -> list[Obstacle]:
    if kind == SMOOTH:
        return along
    if kind == STANDARD:
        return [o for o in along if o.severity is Severity.HIGH]
    return []


def _build_variant(kind: str, route: BaseRoute, along: list[Obstacle],
                   vehicle: VehicleProfile | None, base_distance: float) -> RouteVariant:
    considered = vehicle_filter(_variant_obstacles(kind, along), vehicle)
    return RouteVariant(
        type=kind,
        route=route,
        score=score_route(considered, vehicle),
        obstacles=considered,
        detour=calculate_detour_metrics(base_distance, route.distance_m),
    )


def generate_route_alternatives(base_route: BaseRoute, obstacles: Sequence[Obstacle],
                                vehicle: VehicleProfile | None = None,
                                buffer_m: float = DEFAULT_BUFFER_M) -> list[RouteVariant]:
    """Smooth, standard and fastest variants of a single base geometry."""
    along = find_obstacles_along_route(base_route.coordinates, obstacles, buffer_m)
    return [
        _build_variant(kind, base_route, along, vehicle, base_route.distance_m)
        for kind in VARIANT_ORDER
    ]


class RoutePlanner:
    """Fetches base routes from the road network and scores the variants."""

    def __init__(self, road_network: RoadNetwork, storage: ObstacleStorage,
                 buffer_m: float = DEFAULT_BUFFER_M) -> None:
        self._road_network = road_network
        self._storage = storage
        self._buffer_m = buffer_m

    async def plan(self, origin: tuple[float, float], destination: tuple[float, float],
                   vehicle: VehicleProfile | None = None) -> list[RouteVariant]:
        """Plan from ``origin`` to ``destination`` ((lat, lng) pairs)."""
        routes = await self._road_network.routes(origin, destination,
                                                 alternatives=len(VARIANT_ORDER))
        if not routes:
            raise NotFound("no route between origin and destination")
        for r in routes:
            validate_route(r.coordinates)

        all_coords = [c for r in routes for c in r.coordinates]
        bounds = line_bounds(all_coords, margin_m=self._buffer_m)
        candidates = await self._storage.find_obstacles(bounds, status=ObstacleStatus.ACTIVE)

        base = routes[0]
        if len(routes) == 1:
            variants = generate_route_alternatives(base, candidates, vehicle, self._buffer_m)
        else:
            variants = []
            for kind, route in zip(VARIANT_ORDER, routes):
                along = find_obstacles_along_route(route.coordinates, candidates, self._buffer_m)
                variants.append(_build_variant(kind, route, along, vehicle, base.distance_m))

        log.info("route_planned", routes=len(routes), candidates=len(candidates),
                 scores=[v.score.smoothness_score for v in variants])
        return variants
