"""Obstacle clustering for map rendering.

Obstacles are grouped by the first N characters of their stored geohash,
where N follows the map zoom level. Results are cached per viewport for a
short TTL and invalidated when a write lands inside a cached viewport.

Cache keys look like ``clusters:<viewport prefix>:<precision>:<bounds>:...``
where the viewport prefix is the longest geohash prefix shared by the
viewport corners. Every viewport containing a point therefore has a prefix
that is itself a prefix of the point's hash, which is what invalidation
relies on.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from smoothride.core import geohash
from smoothride.core.confidence import HIDE_THRESHOLD
from smoothride.core.errors import DependencyUnavailable
from smoothride.core.models import ObstacleStatus, ObstacleType, Severity

if TYPE_CHECKING:
    from smoothride.cache.base import CacheStore
    from smoothride.core.models import Bounds, Obstacle
    from smoothride.core.stats import EngineStats
    from smoothride.storage.base import ObstacleStorage

log = structlog.get_logger()

CLUSTER_CACHE_TTL = 300
CACHE_KEY_PREFIX = "clusters:"

# Precision of the hash used to find cache entries touched by a write.
INVALIDATION_PRECISION = 6

MAX_CLUSTER_OBSTACLES = 100


@dataclass
class Cluster:
    geohash: str
    count: int = 0
    lat: float = 0.0
    lng: float = 0.0
    avg_confidence: int = 0
    max_severity: Severity = Severity.LOW
    types: list[str] = field(default_factory=list)

    @property
    def is_single(self) -> bool:
        return self.count == 1

    def to_dict(self) -> dict:
        return {
            "geohash": self.geohash,
            "count": self.count,
            "location": {"lat": self.lat, "lng": self.lng},
            "avg_confidence": self.avg_confidence,
            "max_severity": self.max_severity.value,
            "types": list(self.types),
            "is_single": self.is_single,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Cluster:
        return cls(
            geohash=data["geohash"],
            count=data["count"],
            lat=data["location"]["lat"],
            lng=data["location"]["lng"],
            avg_confidence=data["avg_confidence"],
            max_severity=Severity(data["max_severity"]),
            types=list(data["types"]),
        )

    def to_geojson_feature(self) -> dict:
        return {
            "type": "Feature",
            "geometry": {
                "type": "Point",
                "coordinates": [round(self.lng, 6), round(self.lat, 6)],
            },
            "properties": {
                "geohash": self.geohash,
                "count": self.count,
                "avg_confidence": self.avg_confidence,
                "max_severity": self.max_severity.value,
                "types": list(self.types),
                "is_single": self.is_single,
            },
        }


@dataclass
class _ClusterAccumulator:
    prefix: str
    count: int = 0
    lat_sum: float = 0.0
    lng_sum: float = 0.0
    confidence_sum: int = 0
    max_severity: Severity = Severity.LOW
    types: set[ObstacleType] = field(default_factory=set)

    def add(self, obstacle: Obstacle) -> None:
        self.count += 1
        self.lat_sum += obstacle.lat
        self.lng_sum += obstacle.lng
        self.confidence_sum += obstacle.confidence_score
        if obstacle.severity.rank > self.max_severity.rank:
            self.max_severity = obstacle.severity
        self.types.add(obstacle.type)

    def build(self) -> Cluster:
        return Cluster(
            geohash=self.prefix,
            count=self.count,
            lat=self.lat_sum / self.count,
            lng=self.lng_sum / self.count,
            avg_confidence=round(self.confidence_sum / self.count),
            max_severity=self.max_severity,
            types=sorted(t.value for t in self.types),
        )


def aggregate_clusters(obstacles: list[Obstacle], precision: int) -> list[Cluster]:
    """Group obstacles by hash prefix, largest groups first."""
    groups: dict[str, _ClusterAccumulator] = {}
    for o in obstacles:
        prefix = o.geohash[:precision]
        acc = groups.get(prefix)
        if acc is None:
            acc = groups[prefix] = _ClusterAccumulator(prefix)
        acc.add(o)
    clusters = [acc.build() for acc in groups.values()]
    clusters.sort(key=lambda c: (-c.count, c.geohash))
    return clusters


def clusters_to_geojson(clusters: list[Cluster]) -> dict:
    """Convert clusters to a GeoJSON FeatureCollection."""
    return {
        "type": "FeatureCollection",
        "features": [c.to_geojson_feature() for c in clusters],
    }


def viewport_prefix(bounds: Bounds) -> str:
    corners = (
        geohash.encode(bounds.min_lat, bounds.min_lng, INVALIDATION_PRECISION),
        geohash.encode(bounds.min_lat, bounds.max_lng, INVALIDATION_PRECISION),
        geohash.encode(bounds.max_lat, bounds.min_lng, INVALIDATION_PRECISION),
        geohash.encode(bounds.max_lat, bounds.max_lng, INVALIDATION_PRECISION),
    )
    return geohash.common_prefix(*corners)


def _filter_token(values) -> str:
    return ",".join(sorted(v.value for v in values)) if values else "*"


def cluster_cache_key(bounds: Bounds, precision: int, min_confidence: int,
                      types: frozenset[ObstacleType] | None = None,
                      severities: frozenset[Severity] | None = None) -> str:
    return (
        f"{CACHE_KEY_PREFIX}{viewport_prefix(bounds)}:{precision}:"
        f"{bounds.min_lat}:{bounds.max_lat}:{bounds.min_lng}:{bounds.max_lng}:"
        f"{min_confidence}:{_filter_token(types)}:{_filter_token(severities)}"
    )


class ClusterService:
    """Viewport clustering with a best-effort cache in front of storage."""

    def __init__(
        self,
        storage: ObstacleStorage,
        cache: CacheStore | None = None,
        stats: EngineStats | None = None,
        ttl_seconds: int = CLUSTER_CACHE_TTL,
    ) -> None:
        self._storage = storage
        self._cache = cache
        self._stats = stats
        self._ttl = ttl_seconds

    async def _cache_get(self, key: str) -> list[Cluster] | None:
        if self._cache is None:
            return None
        try:
            raw = await self._cache.get(key)
        except DependencyUnavailable:
            log.warning("cluster_cache_read_failed", key=key)
            if self._stats:
                self._stats.record_cache_error()
            return None
        if raw is None:
            return None
        try:
            return [Cluster.from_dict(d) for d in json.loads(raw)]
        except (ValueError, KeyError, TypeError):
            log.warning("cluster_cache_corrupt", key=key)
            return None

    async def _cache_set(self, key: str, clusters: list[Cluster]) -> None:
        if self._cache is None:
            return
        payload = json.dumps([c.to_dict() for c in clusters], separators=(",", ":"))
        try:
            await self._cache.set(key, payload, self._ttl)
        except DependencyUnavailable:
            log.warning("cluster_cache_write_failed", key=key)
            if self._stats:
                self._stats.record_cache_error()

    async def get_clusters(
        self,
        bounds: Bounds,
        zoom: int,
        *,
        min_confidence: int = HIDE_THRESHOLD,
        types: frozenset[ObstacleType] | None = None,
        severities: frozenset[Severity] | None = None,
    ) -> list[Cluster]:
        precision = geohash.precision_for_zoom(zoom)
        key = cluster_cache_key(bounds, precision, min_confidence, types, severities)

        cached = await self._cache_get(key)
        if cached is not None:
            if self._stats:
                self._stats.record_cache_hit()
            return cached
        if self._stats:
            self._stats.record_cache_miss()

        obstacles = await self._storage.find_obstacles(
            bounds,
            status=ObstacleStatus.ACTIVE,
            min_confidence=min_confidence,
            types=types,
            severities=severities,
        )
        clusters = aggregate_clusters(obstacles, precision)
        await self._cache_set(key, clusters)

        log.debug("clusters_computed", precision=precision,
                  obstacles=len(obstacles), clusters=len(clusters))
        return clusters

    async def get_obstacles_in_cluster(
        self,
        prefix: str,
        *,
        min_confidence: int = HIDE_THRESHOLD,
        types: frozenset[ObstacleType] | None = None,
        severities: frozenset[Severity] | None = None,
    ) -> list[Obstacle]:
        """Individual obstacles behind a cluster, for client drill-down."""
        geohash.decode(prefix)  # validates the prefix
        return await self._storage.obstacles_with_prefix(
            prefix,
            min_confidence=min_confidence,
            types=types,
            severities=severities,
            limit=MAX_CLUSTER_OBSTACLES,
        )

    async def invalidate_cache(self, lat: float, lng: float) -> int:
        """Drop cached viewports that may contain (lat, lng).

        Over-invalidates: any viewport whose corner prefix is a prefix of
        the point's 6-character hash goes, including wide viewports whose
        corners share no prefix at all.
        """
        if self._cache is None:
            return 0
        point_hash = geohash.encode(lat, lng, INVALIDATION_PRECISION)
        removed = 0
        try:
            for n in range(len(point_hash) + 1):
                removed += await self._cache.invalidate_by_prefix(
                    f"{CACHE_KEY_PREFIX}{point_hash[:n]}:")
        except DependencyUnavailable:
            log.warning("cluster_cache_invalidation_failed", geohash=point_hash)
            if self._stats:
                self._stats.record_cache_error()
            return removed
        if removed:
            log.debug("cluster_cache_invalidated", geohash=point_hash, removed=removed)
        return removed
