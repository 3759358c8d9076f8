"""Abuse and spam heuristics.

All checks are soft signals: if storage or the counter store cannot answer,
the check reports "not spam". Blocking a legitimate report is worse than
letting a spammy one through.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from smoothride.config import SpamConfig
from smoothride.core.errors import DependencyUnavailable
from smoothride.core.models import ReportType, utcnow

if TYPE_CHECKING:
    from smoothride.cache.base import CacheStore
    from smoothride.core.models import ObstacleType
    from smoothride.storage.base import ObstacleStorage

log = structlog.get_logger()

# Spam score components (0-100 total).
HIGH_VOLUME_REPORTS = 20
HIGH_VOLUME_POINTS = 30
BURST_RATIO = 3
BURST_POINTS = 40
RECENT_BURST_REPORTS = 10
RECENT_BURST_POINTS = 30


@dataclass(frozen=True)
class SpamCheck:
    is_duplicate: bool = False
    is_rapid: bool = False
    is_clustering: bool = False

    @property
    def is_spam(self) -> bool:
        # Rapid reporting alone is tolerated; it must also be geographically tight.
        return self.is_duplicate or (self.is_rapid and self.is_clustering)

    def to_dict(self) -> dict[str, bool]:
        return {**asdict(self), "is_spam": self.is_spam}


class SpamDetector:
    """Duplicate, rate and clustering heuristics over report history."""

    def __init__(
        self,
        storage: ObstacleStorage,
        cache: CacheStore | None = None,
        config: SpamConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._cache = cache
        self._config = config or SpamConfig()
        self._clock = clock

    async def is_duplicate_report(self, user_id: str, obstacle_type: ObstacleType,
                                  lat: float, lng: float) -> bool:
        cfg = self._config
        since = self._clock() - timedelta(minutes=cfg.duplicate_window_minutes)
        try:
            count = await self._storage.count_user_reports(
                user_id, since, near=(lat, lng), radius_m=cfg.duplicate_radius_m,
                obstacle_type=obstacle_type,
            )
        except DependencyUnavailable:
            log.warning("spam_duplicate_check_failed", user_id=user_id, exc_info=True)
            return False
        return count > 0

    async def is_rapid_reporting(self, user_id: str) -> bool:
        """True when the user already filed ``rapid_threshold`` new reports in the window.

        Only new reports count, in both modes. The counter also sees attempts
        that were rejected as spam; the store fallback only sees persisted ones.
        """
        cfg = self._config
        if self._cache is not None:
            try:
                count = await self._cache.incr(f"rapid_report:{user_id}", cfg.rapid_window_seconds)
                # The counter includes the attempt being checked.
                return count - 1 >= cfg.rapid_threshold
            except DependencyUnavailable:
                log.warning("spam_counter_unavailable", user_id=user_id)

        since = self._clock() - timedelta(seconds=cfg.rapid_window_seconds)
        try:
            count = await self._storage.count_user_reports(
                user_id, since, report_type=ReportType.NEW)
        except DependencyUnavailable:
            log.warning("spam_rapid_check_failed", user_id=user_id, exc_info=True)
            return False
        return count >= cfg.rapid_threshold

    async def is_suspicious_clustering(self, user_id: str, lat: float, lng: float) -> bool:
        cfg = self._config
        since = self._clock() - timedelta(hours=cfg.clustering_window_hours)
        try:
            count = await self._storage.count_user_reports(
                user_id, since, near=(lat, lng), radius_m=cfg.clustering_radius_m,
            )
        except DependencyUnavailable:
            log.warning("spam_clustering_check_failed", user_id=user_id, exc_info=True)
            return False
        return count >= cfg.clustering_threshold

    async def detect_spam(self, user_id: str, obstacle_type: ObstacleType,
                          lat: float, lng: float) -> SpamCheck:
        duplicate, rapid, clustering = await asyncio.gather(
            self.is_duplicate_report(user_id, obstacle_type, lat, lng),
            self.is_rapid_reporting(user_id),
            self.is_suspicious_clustering(user_id, lat, lng),
        )
        check = SpamCheck(is_duplicate=duplicate, is_rapid=rapid, is_clustering=clustering)
        if check.is_spam:
            log.info("spam_detected", user_id=user_id, **check.to_dict())
        return check

    async def get_user_spam_score(self, user_id: str) -> int:
        """0-100, higher is more suspicious. Used by moderation, not the write path."""
        now = self._clock()
        try:
            times = await self._storage.user_report_times(user_id, now - timedelta(hours=24))
        except DependencyUnavailable:
            log.warning("spam_score_failed", user_id=user_id, exc_info=True)
            return 0

        total = len(times)
        unique_minutes = len({t.replace(second=0, microsecond=0) for t in times})
        hour_ago = now - timedelta(hours=1)
        recent = sum(1 for t in times if t > hour_ago)

        score = 0
        if total > HIGH_VOLUME_REPORTS:
            score += HIGH_VOLUME_POINTS
        if unique_minutes > 0 and total / unique_minutes > BURST_RATIO:
            score += BURST_POINTS
        if recent > RECENT_BURST_REPORTS:
            score += RECENT_BURST_POINTS
        return min(score, 100)

    async def flag_user(self, user_id: str, reason: str) -> None:
        """Mark a user for moderation review for the configured flag TTL."""
        if self._cache is None:
            return
        payload = json.dumps({"reason": reason, "flagged_at": self._clock().isoformat()})
        try:
            await self._cache.set(f"flagged_user:{user_id}", payload, self._config.flag_ttl_seconds)
        except DependencyUnavailable:
            log.warning("flag_user_failed", user_id=user_id, reason=reason)

    async def flag_reason(self, user_id: str) -> str | None:
        if self._cache is None:
            return None
        try:
            raw = await self._cache.get(f"flagged_user:{user_id}")
        except DependencyUnavailable:
            log.warning("flag_lookup_failed", user_id=user_id)
            return None
        if raw is None:
            return None
        return json.loads(raw).get("reason", "")

    async def is_user_flagged(self, user_id: str) -> bool:
        return await self.flag_reason(user_id) is not None
