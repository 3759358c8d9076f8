"""Admin moderation: direct obstacle edits, hard deletes and the store overview.

Edits bypass the report flow. Every edit that changes a field is written to
the obstacle's history as ``admin_updated``, confidence is recomputed (a
municipal verification is worth points) and the cluster cache around the
obstacle is dropped.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from smoothride.core.errors import InvalidInput, NotFound
from smoothride.core.models import ObstacleHistory, utcnow
from smoothride.core.trust import FLAG_THRESHOLD

if TYPE_CHECKING:
    from smoothride.core.clustering import ClusterService
    from smoothride.core.confidence import ConfidenceEngine
    from smoothride.core.models import Obstacle, ObstacleStatus, ObstacleType, Severity
    from smoothride.storage.base import ObstacleStorage

log = structlog.get_logger()

# Report counts in the overview cover this many recent days.
SUMMARY_REPORT_WINDOW_DAYS = 30

# Averages over an empty table fall back to the neutral score.
_NEUTRAL_AVERAGE = 50


class ModerationService:
    """Admin-side writes to obstacles and the aggregate overview."""

    def __init__(
        self,
        storage: ObstacleStorage,
        confidence: ConfidenceEngine,
        clusters: ClusterService,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._confidence = confidence
        self._clusters = clusters
        self._clock = clock

    async def _existing(self, obstacle_id: str) -> Obstacle:
        obstacle = await self._storage.get_obstacle(obstacle_id)
        if obstacle is None:
            raise NotFound(f"obstacle {obstacle_id} not found")
        return obstacle

    async def update_obstacle(
        self,
        obstacle_id: str,
        *,
        obstacle_type: ObstacleType | None = None,
        severity: Severity | None = None,
        status: ObstacleStatus | None = None,
        verified: bool | None = None,
    ) -> Obstacle:
        """Overwrite type/severity/status and the municipal verification flag.

        Raises InvalidInput when no field is given, NotFound for unknown ids.
        """
        if obstacle_type is None and severity is None and status is None and verified is None:
            raise InvalidInput("no fields to update")

        before = await self._existing(obstacle_id)
        after = await self._storage.update_obstacle(
            obstacle_id,
            obstacle_type=obstacle_type,
            severity=severity,
            status=status,
            municipal_confirmed=verified,
        )

        old_value, new_value = {}, {}
        for name, old, new in (
            ("type", before.type.value, after.type.value),
            ("severity", before.severity.value, after.severity.value),
            ("status", before.status.value, after.status.value),
            ("verified", before.municipal_confirmed, after.municipal_confirmed),
        ):
            if old != new:
                old_value[name], new_value[name] = old, new
        if new_value:
            await self._storage.add_history(ObstacleHistory(
                obstacle_id=obstacle_id,
                action="admin_updated",
                old_value=old_value,
                new_value=new_value,
                created_at=self._clock(),
            ))

        await self._confidence.update_confidence(obstacle_id)
        await self._clusters.invalidate_cache(after.lat, after.lng)
        log.info("obstacle_admin_updated", obstacle_id=obstacle_id, changed=sorted(new_value))
        return await self._existing(obstacle_id)

    async def delete_obstacle(self, obstacle_id: str) -> int:
        """Hard delete. Returns the number of reports removed with it."""
        obstacle = await self._existing(obstacle_id)
        removed = await self._storage.delete_obstacle(obstacle_id)
        await self._clusters.invalidate_cache(obstacle.lat, obstacle.lng)
        log.info("obstacle_deleted", obstacle_id=obstacle_id, reports_removed=removed)
        return removed

    async def summary(self) -> dict:
        since = self._clock() - timedelta(days=SUMMARY_REPORT_WINDOW_DAYS)
        raw = await self._storage.summarize(since, FLAG_THRESHOLD)

        def _avg(value: float | None) -> int:
            # Halves round up.
            return math.floor(value + 0.5) if value is not None else _NEUTRAL_AVERAGE

        return {
            "obstacles": {
                "total": sum(raw.obstacles_by_status.values()),
                **raw.obstacles_by_status,
                "avg_confidence": _avg(raw.avg_confidence),
            },
            "users": {
                "total": raw.users_total,
                "flagged": raw.users_flagged,
                "avg_trust": _avg(raw.avg_trust),
            },
            "reports": {
                "total": sum(raw.reports_by_type.values()),
                "window_days": SUMMARY_REPORT_WINDOW_DAYS,
                **raw.reports_by_type,
            },
        }
