"""Time decay and expiration of obstacles.

Walks every active obstacle in keyset-paged batches. Obstacles unconfirmed
for ``expiration_days`` are retired to "fixed" with an ``auto_expired``
history entry; the rest get their confidence recomputed, which applies the
age decay term. One bad row never aborts the batch.

Also counts recent obstacle creation per type and month, to surface
seasonal patterns such as spring pothole season.
"""

from __future__ import annotations

import calendar
from collections import defaultdict
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from smoothride.core.models import ObstacleHistory, ObstacleStatus, days_since, utcnow

if TYPE_CHECKING:
    from smoothride.core.clustering import ClusterService
    from smoothride.core.confidence import ConfidenceEngine
    from smoothride.core.models import Obstacle, ObstacleType
    from smoothride.storage.base import ObstacleStorage

log = structlog.get_logger()

EXPIRATION_DAYS = 180
PAGE_SIZE = 500
SEASONAL_WINDOW_MONTHS = 12


@dataclass
class DecayStats:
    processed: int = 0
    decayed: int = 0
    expired: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class DecayJob:
    """One pass of decay + expiration over the active obstacle set."""

    def __init__(
        self,
        storage: ObstacleStorage,
        confidence: ConfidenceEngine,
        clusters: ClusterService | None = None,
        *,
        expiration_days: int = EXPIRATION_DAYS,
        page_size: int = PAGE_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._confidence = confidence
        self._clusters = clusters
        self._expiration_days = expiration_days
        self._page_size = page_size
        self._clock = clock

    def should_expire(self, obstacle: Obstacle, now: datetime) -> bool:
        return days_since(obstacle.last_activity_at, now) >= self._expiration_days

    async def expire_obstacle(self, obstacle: Obstacle, now: datetime) -> None:
        await self._storage.set_status(obstacle.id, ObstacleStatus.FIXED)
        await self._storage.add_history(ObstacleHistory(
            obstacle_id=obstacle.id,
            action="auto_expired",
            old_value={"status": ObstacleStatus.ACTIVE.value},
            new_value={"status": ObstacleStatus.FIXED.value},
            created_at=now,
        ))
        if self._clusters is not None:
            await self._clusters.invalidate_cache(obstacle.lat, obstacle.lng)

    async def _process_one(self, obstacle: Obstacle, now: datetime, stats: DecayStats) -> None:
        if self.should_expire(obstacle, now):
            await self.expire_obstacle(obstacle, now)
            stats.expired += 1
            log.info("obstacle_expired", obstacle_id=obstacle.id,
                     last_activity=obstacle.last_activity_at.isoformat())
            return

        result = await self._confidence.update_confidence(obstacle.id)
        if result.defaulted:
            # Nothing was persisted; count it so the run reports the gap.
            stats.errors += 1
            return
        stats.decayed += 1

    async def process_all_obstacles(self) -> DecayStats:
        """Run one pass. Page fetch failures propagate so the scheduler can retry."""
        stats = DecayStats()
        now = self._clock()
        after_id: str | None = None

        while True:
            page = await self._storage.active_obstacles_page(after_id, self._page_size)
            if not page:
                break
            for obstacle in page:
                stats.processed += 1
                try:
                    await self._process_one(obstacle, now, stats)
                except Exception:
                    stats.errors += 1
                    log.error("decay_obstacle_failed", obstacle_id=obstacle.id, exc_info=True)
            after_id = page[-1].id
            if len(page) < self._page_size:
                break

        log.info("decay_pass_completed", **stats.to_dict())
        return stats


def _months_before(moment: datetime, months: int) -> datetime:
    year_shift, month_index = divmod(moment.month - 1 - months, 12)
    year = moment.year + year_shift
    month = month_index + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


async def detect_seasonal_patterns(
    storage: ObstacleStorage,
    now: datetime,
    months: int = SEASONAL_WINDOW_MONTHS,
) -> dict[str, list[dict]]:
    """Obstacles created in the last ``months`` months, counted per type and
    calendar month.

    Returns ``{type: [{"month": "YYYY-MM", "count": n}, ...]}`` with each
    list newest month first. Types with no obstacles are left out.
    """
    since = _months_before(now, months)
    counts: dict[tuple[ObstacleType, str], int] = defaultdict(int)
    for obstacle in await storage.obstacles_created_since(since):
        counts[(obstacle.type, obstacle.created_at.strftime("%Y-%m"))] += 1

    patterns: dict[str, list[dict]] = {}
    for (obstacle_type, month), count in sorted(
            counts.items(), key=lambda kv: (kv[0][1], kv[1]), reverse=True):
        patterns.setdefault(obstacle_type.value, []).append({"month": month, "count": count})
    return patterns
