"""Route planning endpoint."""

from __future__ import annotations

import json

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from smoothride.core.errors import InvalidInput
from smoothride.core.models import validate_coordinates
from smoothride.core.routing import VehicleProfile, is_detour_acceptable

router = APIRouter(prefix="/api/v1")


def _parse_point(body: dict, key: str) -> tuple[float, float]:
    point = body.get(key)
    if not isinstance(point, dict):
        raise InvalidInput(f"{key} must be an object with lat and lng")
    try:
        lat, lng = float(point["lat"]), float(point["lng"])
    except (KeyError, TypeError, ValueError):
        raise InvalidInput(f"{key} must be an object with lat and lng") from None
    validate_coordinates(lat, lng)
    return lat, lng


def _parse_vehicle(body: dict) -> VehicleProfile | None:
    raw = body.get("vehicle")
    if raw is None:
        return None
    try:
        clearance = float(raw["ground_clearance_inches"])
    except (KeyError, TypeError, ValueError):
        raise InvalidInput("vehicle.ground_clearance_inches must be a number") from None
    if clearance <= 0:
        raise InvalidInput("vehicle.ground_clearance_inches must be positive")
    return VehicleProfile(
        ground_clearance_inches=clearance,
        name=str(raw.get("name", "")),
        vehicle_type=str(raw.get("type", "")),
    )


@router.post("/routes/plan")
async def plan_route(request: Request) -> JSONResponse:
    """Plan smooth/standard/fastest routes between two points.

    Body: {"origin": {"lat", "lng"}, "destination": {"lat", "lng"},
           "vehicle": {"ground_clearance_inches", "name", "type"}}
    """
    from smoothride.main import get_config, get_planner

    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidInput("invalid JSON") from None
    if not isinstance(body, dict):
        raise InvalidInput("request body must be a JSON object")

    origin = _parse_point(body, "origin")
    destination = _parse_point(body, "destination")
    vehicle = _parse_vehicle(body)

    variants = await get_planner().plan(origin, destination, vehicle)
    max_detour = get_config().routing.max_detour_percent
    base_distance = variants[0].route.distance_m if variants else 0.0

    routes = []
    for variant in variants:
        entry = variant.to_dict()
        entry["detour_acceptable"] = is_detour_acceptable(
            base_distance, variant.route.distance_m, max_detour)
        routes.append(entry)

    return JSONResponse(content={
        "routes": routes,
        "vehicle": vehicle.to_dict() if vehicle else None,
    })
