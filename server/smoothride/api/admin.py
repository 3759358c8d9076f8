"""Moderation and maintenance endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from smoothride.api.reports import _read_json
from smoothride.core.decay import SEASONAL_WINDOW_MONTHS, detect_seasonal_patterns
from smoothride.core.errors import InvalidInput
from smoothride.core.models import (
    Bounds,
    ObstacleStatus,
    ObstacleType,
    Severity,
    parse_enum,
    utcnow,
)
from smoothride.core.trust import FLAG_THRESHOLD

router = APIRouter(prefix="/api/v1/admin")

_WORLD = Bounds(min_lat=-90.0, max_lat=90.0, min_lng=-180.0, max_lng=180.0)


def _optional_enum(enum_cls, body: dict, key: str):
    value = body.get(key)
    return parse_enum(enum_cls, value, key) if value is not None else None


@router.get("/flagged")
async def get_flagged(
    limit: int = Query(default=50, ge=1, le=100),
    kind: str = Query(default="all", pattern="^(all|low_trust|disputed)$"),
) -> JSONResponse:
    """Users below the trust flag threshold and obstacles in disputed status."""
    from smoothride.main import get_spam, get_storage

    storage = get_storage()
    spam = get_spam()
    items: list[dict] = []

    if kind in ("all", "low_trust"):
        for user in await storage.users_below_trust(FLAG_THRESHOLD, limit):
            items.append({
                "type": "low_trust_user",
                "user_id": user.id,
                "trust_score": user.trust_score,
                "reports_verified": user.reports_verified,
                "reports_disputed": user.reports_disputed,
                "flag_reason": await spam.flag_reason(user.id),
            })

    if kind in ("all", "disputed"):
        disputed = await storage.find_obstacles(_WORLD, status=ObstacleStatus.DISPUTED)
        disputed.sort(key=lambda o: (-o.disputes_count, o.confidence_score))
        for obstacle in disputed[:limit]:
            items.append({"type": "disputed_obstacle", **obstacle.to_dict()})

    return JSONResponse(content={"items": items, "total": len(items)})


@router.post("/decay/run")
async def run_decay() -> JSONResponse:
    """Trigger a decay pass now. Returns 409 if one is already running."""
    from smoothride.main import get_scheduler

    result = await get_scheduler().run_once()
    if result is None:
        return JSONResponse(content={"started": False, "error": "decay already running"},
                            status_code=409)
    return JSONResponse(content={"started": True, **result.to_dict()})


@router.put("/obstacles/{obstacle_id}")
async def update_obstacle(obstacle_id: str, request: Request) -> JSONResponse:
    """Edit an obstacle directly.

    Body: any of {"type", "severity", "status", "verified"}. ``verified``
    marks the obstacle as confirmed by the municipality.
    """
    from smoothride.main import get_moderation

    body = await _read_json(request)
    verified = body.get("verified")
    if verified is not None and not isinstance(verified, bool):
        raise InvalidInput("verified must be a boolean")
    obstacle = await get_moderation().update_obstacle(
        obstacle_id,
        obstacle_type=_optional_enum(ObstacleType, body, "type"),
        severity=_optional_enum(Severity, body, "severity"),
        status=_optional_enum(ObstacleStatus, body, "status"),
        verified=verified,
    )
    return JSONResponse(content=obstacle.to_dict())


@router.delete("/obstacles/{obstacle_id}")
async def delete_obstacle(obstacle_id: str) -> JSONResponse:
    """Hard delete an obstacle together with its reports and history."""
    from smoothride.main import get_moderation

    removed = await get_moderation().delete_obstacle(obstacle_id)
    return JSONResponse(content={"deleted": True, "id": obstacle_id, "reports_removed": removed})


@router.get("/stats")
async def get_overview() -> JSONResponse:
    """Obstacle, user and recent report counts with average confidence and trust."""
    from smoothride.main import get_moderation

    return JSONResponse(content=await get_moderation().summary())


@router.get("/seasonal-patterns")
async def get_seasonal_patterns(
    months: int = Query(default=SEASONAL_WINDOW_MONTHS, ge=1, le=36),
) -> JSONResponse:
    """Obstacles created per type and month over the last ``months`` months."""
    from smoothride.main import get_storage

    patterns = await detect_seasonal_patterns(get_storage(), utcnow(), months)
    return JSONResponse(content={"months": months, "patterns": patterns})
