"""Obstacle cluster and individual obstacle API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from smoothride.core.clustering import clusters_to_geojson
from smoothride.core.confidence import HIDE_THRESHOLD, confidence_level, should_hide
from smoothride.core.errors import NotFound
from smoothride.core.models import Bounds, ObstacleType, Severity, parse_enum

router = APIRouter(prefix="/api/v1")


def _parse_enum_list(enum_cls, raw: str | None, field_name: str):
    """Comma-separated enum values → frozenset, or None when absent."""
    if not raw:
        return None
    return frozenset(parse_enum(enum_cls, v.strip(), field_name) for v in raw.split(",") if v.strip())


@router.get("/clusters")
async def get_clusters(
    min_lat: float,
    max_lat: float,
    min_lng: float,
    max_lng: float,
    zoom: int = Query(default=12),
    min_confidence: int = Query(default=HIDE_THRESHOLD, ge=0, le=100),
    types: str | None = None,
    severities: str | None = None,
) -> JSONResponse:
    """Return clustered active obstacles in a viewport as GeoJSON.

    ``types`` and ``severities`` are comma-separated filters.
    """
    from smoothride.main import get_clusters as clusters_service

    bounds = Bounds(min_lat=min_lat, max_lat=max_lat, min_lng=min_lng, max_lng=max_lng)
    clusters = await clusters_service().get_clusters(
        bounds,
        zoom,
        min_confidence=min_confidence,
        types=_parse_enum_list(ObstacleType, types, "type"),
        severities=_parse_enum_list(Severity, severities, "severity"),
    )
    return JSONResponse(content=clusters_to_geojson(clusters), media_type="application/geo+json")


@router.get("/clusters/{prefix}/obstacles")
async def get_cluster_obstacles(
    prefix: str,
    min_confidence: int = Query(default=HIDE_THRESHOLD, ge=0, le=100),
    types: str | None = None,
    severities: str | None = None,
) -> JSONResponse:
    """Drill down into a cluster: the individual obstacles under a geohash prefix."""
    from smoothride.main import get_clusters as clusters_service

    obstacles = await clusters_service().get_obstacles_in_cluster(
        prefix,
        min_confidence=min_confidence,
        types=_parse_enum_list(ObstacleType, types, "type"),
        severities=_parse_enum_list(Severity, severities, "severity"),
    )
    return JSONResponse(content={
        "geohash": prefix,
        "obstacles": [o.to_dict() for o in obstacles],
        "total": len(obstacles),
    })


@router.get("/obstacles/{obstacle_id}")
async def get_obstacle(obstacle_id: str) -> JSONResponse:
    """One obstacle with its confidence level and status history."""
    from smoothride.main import get_storage

    storage = get_storage()
    obstacle = await storage.get_obstacle(obstacle_id)
    if obstacle is None:
        raise NotFound(f"obstacle {obstacle_id} not found")

    history = await storage.get_history(obstacle_id)
    detail = obstacle.to_dict()
    detail["confidence_level"] = confidence_level(obstacle.confidence_score)
    detail["hidden"] = should_hide(obstacle.confidence_score)
    detail["history"] = [
        {
            "action": h.action,
            "old_value": h.old_value,
            "new_value": h.new_value,
            "created_at": h.created_at.isoformat(),
        }
        for h in history
    ]
    return JSONResponse(content=detail)


@router.get("/obstacles/{obstacle_id}/reports")
async def get_obstacle_reports(obstacle_id: str) -> JSONResponse:
    """Every report filed on an obstacle, newest first."""
    from smoothride.main import get_storage

    storage = get_storage()
    if await storage.get_obstacle(obstacle_id) is None:
        raise NotFound(f"obstacle {obstacle_id} not found")

    reports = await storage.reports_for_obstacle(obstacle_id)
    return JSONResponse(content={
        "obstacle_id": obstacle_id,
        "reports": [r.to_dict() for r in reports],
        "total": len(reports),
    })
