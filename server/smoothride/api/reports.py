"""Report submission API endpoints.

This is the thin FastAPI adapter. It parses JSON bodies into internal
models and calls the report processor.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from smoothride.core.errors import InvalidInput
from smoothride.core.models import (
    ObstacleType,
    ReportSubmission,
    ReportType,
    Severity,
    parse_enum,
)

router = APIRouter(prefix="/api/v1")


async def _read_json(request: Request) -> dict:
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidInput("invalid JSON") from None
    if not isinstance(body, dict):
        raise InvalidInput("request body must be a JSON object")
    return body


def _optional_float(body: dict, key: str) -> float | None:
    value = body.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{key} must be a number") from None


def _photos(body: dict) -> tuple[str, ...]:
    photos = body.get("photos") or []
    if not isinstance(photos, list) or not all(isinstance(p, str) for p in photos):
        raise InvalidInput("photos must be a list of URLs")
    return tuple(photos)


def _parse_submission(body: dict) -> ReportSubmission:
    """Parse a report from JSON."""
    obstacle_type = body.get("type")
    severity = body.get("severity")
    return ReportSubmission(
        user_id=str(body.get("user_id", "")),
        report_type=parse_enum(ReportType, body.get("report_type"), "report_type"),
        obstacle_id=body.get("obstacle_id"),
        lat=_optional_float(body, "lat"),
        lng=_optional_float(body, "lng"),
        obstacle_type=parse_enum(ObstacleType, obstacle_type, "type") if obstacle_type else None,
        severity=parse_enum(Severity, severity, "severity") if severity else None,
        description=str(body.get("description") or ""),
        photos=_photos(body),
        sensor_data=body.get("sensor_data"),
        reported_confidence=_optional_float(body, "confidence"),
    )


@router.post("/reports")
async def submit_report(request: Request) -> JSONResponse:
    """Submit a new/confirm/dispute/fixed report.

    Spam-gated reports come back with ``accepted: false`` and the heuristic
    flags that fired.
    """
    from smoothride.main import get_processor

    sub = _parse_submission(await _read_json(request))
    outcome = await get_processor().submit(sub)

    result = {
        "accepted": outcome.accepted,
        "error": outcome.error,
        "obstacle_id": outcome.obstacle_id,
        "report_id": outcome.report_id,
        "confidence_score": outcome.confidence_score,
        "status": outcome.status.value if outcome.status else None,
    }
    if outcome.spam_flags:
        result["spam"] = outcome.spam_flags
    return JSONResponse(content=result, status_code=200 if outcome.accepted else 422)


@router.patch("/reports/{report_id}")
async def edit_report(report_id: str, request: Request) -> JSONResponse:
    """Owner edit of a report's description and photos.

    Body: {"user_id": "...", "description": "...", "photos": [...]}
    """
    from smoothride.main import get_processor

    body = await _read_json(request)
    report = await get_processor().edit_report(
        report_id,
        str(body.get("user_id", "")),
        description=body.get("description"),
        photos=_photos(body) if "photos" in body else None,
    )
    return JSONResponse(content={
        "id": report.id,
        "obstacle_id": report.obstacle_id,
        "description": report.description,
        "photos": list(report.photos),
    })
