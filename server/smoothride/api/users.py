"""User trust API endpoints."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from smoothride.core.errors import InvalidInput, NotFound
from smoothride.core.models import UserTrust, utcnow
from smoothride.core.trust import is_flagged, trust_level

router = APIRouter(prefix="/api/v1")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@router.post("/users")
async def register_user(request: Request) -> JSONResponse:
    """Register a trust aggregate for a user.

    Body (optional): {"id": "..."}. A fresh id is generated when absent.
    """
    from smoothride.main import get_storage

    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidInput("invalid JSON") from None
    if not isinstance(body, dict):
        raise InvalidInput("request body must be a JSON object")

    storage = get_storage()
    user_id = str(body.get("id") or uuid.uuid4())
    if await storage.get_user(user_id) is not None:
        raise InvalidInput(f"user {user_id} already exists")

    user = UserTrust(id=user_id, created_at=utcnow())
    await storage.add_user(user)
    return JSONResponse(
        content={"id": user.id, "trust_score": user.trust_score,
                 "created_at": user.created_at.isoformat()},
        status_code=201,
    )


@router.get("/users/{user_id}/trust-score")
async def get_trust_score(user_id: str) -> JSONResponse:
    """Current trust score, level and report statistics for a user."""
    from smoothride.main import get_spam, get_storage, get_trust

    storage = get_storage()
    user = await storage.get_user(user_id)
    if user is None:
        raise NotFound(f"user {user_id} not found")

    result = await get_trust().compute_trust(user_id)
    total = await storage.count_user_reports(user_id, _EPOCH)
    accuracy = round(user.reports_verified / total * 100, 1) if total else 0.0

    return JSONResponse(content={
        "user_id": user_id,
        "trust_score": result.score,
        "trust_level": trust_level(result.score),
        "flagged": is_flagged(result.score) or await get_spam().is_user_flagged(user_id),
        "statistics": {
            "reports_verified": user.reports_verified,
            "reports_disputed": user.reports_disputed,
            "total_reports": total,
            "accuracy": accuracy,
        },
    })


@router.get("/users/{user_id}/spam-score")
async def get_spam_score(user_id: str) -> JSONResponse:
    """0-100 spam score over the user's last 24 hours of reports."""
    from smoothride.main import get_spam, get_storage

    if await get_storage().get_user(user_id) is None:
        raise NotFound(f"user {user_id} not found")

    spam = get_spam()
    return JSONResponse(content={
        "user_id": user_id,
        "spam_score": await spam.get_user_spam_score(user_id),
        "flag_reason": await spam.flag_reason(user_id),
    })
