"""Health check and monitoring endpoints."""

from __future__ import annotations

import json
from pathlib import Path

from fastapi import APIRouter

from smoothride.core.confidence import HIDE_THRESHOLD
from smoothride.core.models import MAX_PHOTOS_PER_REPORT, ObstacleType, Severity
from smoothride.core.trust import FLAG_THRESHOLD

router = APIRouter(prefix="/api/v1")

# Load build info once at import time.
_BUILD_INFO_PATH = Path(__file__).parent.parent / "build_info.json"
_BUILD_INFO: dict = {}
if _BUILD_INFO_PATH.exists():
    try:
        _BUILD_INFO = json.loads(_BUILD_INFO_PATH.read_text())
    except (json.JSONDecodeError, OSError):
        pass


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from smoothride.main import get_config, get_scheduler, get_stats

    config = get_config()
    snapshot = get_stats().snapshot()
    result = {
        "status": "ok",
        "version": "0.1.0",
        "uptime_seconds": snapshot["uptime_seconds"],
        "storage_backend": config.storage.backend,
        "cache_backend": config.cache.backend,
        "decay_running": get_scheduler().running,
    }
    result.update(_BUILD_INFO)
    return result


@router.get("/stats")
async def stats() -> dict:
    """Detailed engine statistics.

    The ``active_reporters`` section shows:
    - ``total``: users who reported in the last N seconds (configurable window)
    - ``with_spam``: those among them with at least one spam rejection
    - ``window_seconds``: the time window used for "active" calculation
    """
    from smoothride.main import get_stats

    return get_stats().snapshot()


@router.get("/config")
async def get_client_config() -> dict:
    """Configuration endpoint for the mobile app.

    The app calls this on startup to get server-controlled parameters.
    """
    from smoothride.main import get_config

    config = get_config()
    return {
        "obstacle_types": [t.value for t in ObstacleType],
        "severities": [s.value for s in Severity],
        "max_photos_per_report": MAX_PHOTOS_PER_REPORT,
        "hide_below_confidence": HIDE_THRESHOLD,
        "flag_below_trust": FLAG_THRESHOLD,
        "cluster_ttl_seconds": config.cache.cluster_ttl_seconds,
        "max_reports_per_minute": config.spam.rapid_threshold,
        "route_buffer_meters": config.routing.buffer_meters,
        "max_detour_percent": config.routing.max_detour_percent,
    }
