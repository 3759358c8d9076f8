"""Report processor: validates, gates, persists and scores incoming reports.

This is the write path. It depends on the storage and cache ports plus the
scoring engines, not on concrete implementations.

Per report type:
- new: spam gate (at the named obstacle when one is given), then attach
  to a nearby active obstacle of the same type or create one
- confirm: +1 confirmation, creator's trust verified
- dispute: +1 dispute, creator's trust disputed, active→disputed below 30
- fixed: active→fixed once two distinct users report it fixed
Every accepted report invalidates the cluster cache around the obstacle.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from smoothride.core import geohash
from smoothride.core.confidence import should_hide
from smoothride.core.errors import InvalidInput, NotFound, PermissionDenied
from smoothride.core.models import (
    MAX_PHOTOS_PER_REPORT,
    Obstacle,
    ObstacleHistory,
    ObstacleStatus,
    Report,
    ReportOutcome,
    ReportType,
    utcnow,
)

if TYPE_CHECKING:
    from smoothride.core.clustering import ClusterService
    from smoothride.core.confidence import ConfidenceEngine
    from smoothride.core.models import ReportSubmission
    from smoothride.core.spam import SpamDetector
    from smoothride.core.stats import EngineStats
    from smoothride.core.trust import TrustEngine
    from smoothride.storage.base import ObstacleStorage

log = structlog.get_logger()

# New reports within this distance of an active obstacle of the same type
# attach to it instead of creating a new one.
MERGE_RADIUS_M = 50.0

# Distinct users reporting "fixed" before an obstacle is retired.
FIXED_REPORTS_REQUIRED = 2


class ReportProcessor:
    """Handles new/confirm/dispute/fixed reports end to end."""

    def __init__(
        self,
        storage: ObstacleStorage,
        confidence: ConfidenceEngine,
        trust: TrustEngine,
        spam: SpamDetector,
        clusters: ClusterService,
        stats: EngineStats,
        *,
        merge_radius_m: float = MERGE_RADIUS_M,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._confidence = confidence
        self._trust = trust
        self._spam = spam
        self._clusters = clusters
        self._stats = stats
        self._merge_radius_m = merge_radius_m
        self._clock = clock

    async def submit(self, sub: ReportSubmission) -> ReportOutcome:
        """Process one report. Returns an outcome; raises InvalidInput/NotFound."""
        if await self._storage.get_user(sub.user_id) is None:
            self._stats.record_rejected()
            raise NotFound(f"user {sub.user_id} not found")

        obstacle = None
        if sub.obstacle_id is not None:
            obstacle = await self._storage.get_obstacle(sub.obstacle_id)
            if obstacle is None:
                self._stats.record_rejected()
                raise NotFound(f"obstacle {sub.obstacle_id} not found")

        if sub.report_type is ReportType.NEW:
            # A new report naming an obstacle is gated at that obstacle's spot.
            if obstacle is None:
                check = await self._spam.detect_spam(
                    sub.user_id, sub.obstacle_type, sub.lat, sub.lng)
            else:
                check = await self._spam.detect_spam(
                    sub.user_id, obstacle.type, obstacle.lat, obstacle.lng)
            if check.is_spam:
                self._stats.record_spam(sub.user_id)
                await self._spam.flag_user(sub.user_id, "spam_report")
                log.info("report_rejected_spam", user=sub.user_id[:8], **check.to_dict())
                return ReportOutcome(accepted=False, error="report flagged as spam",
                                     spam_flags=check.to_dict())
            if obstacle is None:
                obstacle = await self._resolve_new_obstacle(sub)

        if sub.report_type in (ReportType.CONFIRM, ReportType.DISPUTE):
            if await self._storage.has_report(obstacle.id, sub.user_id, sub.report_type):
                self._stats.record_rejected()
                raise InvalidInput(
                    f"user already filed a {sub.report_type.value} report for this obstacle")

        report = Report(
            id=str(uuid.uuid4()),
            obstacle_id=obstacle.id,
            user_id=sub.user_id,
            report_type=sub.report_type,
            created_at=self._clock(),
            severity=sub.severity,
            description=sub.description,
            photos=tuple(sub.photos),
            sensor_data=sub.sensor_data,
            reported_confidence=sub.reported_confidence,
        )
        await self._storage.add_report(report)

        handler = {
            ReportType.NEW: self._on_new,
            ReportType.CONFIRM: self._on_confirm,
            ReportType.DISPUTE: self._on_dispute,
            ReportType.FIXED: self._on_fixed,
        }[sub.report_type]
        score, status = await handler(obstacle, sub)

        await self._clusters.invalidate_cache(obstacle.lat, obstacle.lng)
        self._stats.record_report(sub.user_id, sub.report_type.value)
        log.info("report_accepted", user=sub.user_id[:8], obstacle_id=obstacle.id,
                 report_type=sub.report_type.value, confidence=score, status=status.value)

        return ReportOutcome(
            accepted=True,
            obstacle_id=obstacle.id,
            report_id=report.id,
            confidence_score=score,
            status=status,
        )

    async def _resolve_new_obstacle(self, sub: ReportSubmission) -> Obstacle:
        existing = await self._storage.nearest_active_obstacle(
            sub.lat, sub.lng, self._merge_radius_m, sub.obstacle_type)
        if existing is not None:
            log.debug("report_merged", obstacle_id=existing.id, user=sub.user_id[:8])
            return existing

        now = self._clock()
        obstacle = Obstacle(
            id=str(uuid.uuid4()),
            type=sub.obstacle_type,
            lat=sub.lat,
            lng=sub.lng,
            severity=sub.severity,
            geohash=geohash.encode(sub.lat, sub.lng),
            created_at=now,
            created_by=sub.user_id,
            description=sub.description,
        )
        await self._storage.add_obstacle(obstacle)
        log.info("obstacle_created", obstacle_id=obstacle.id, type=obstacle.type.value,
                 geohash=obstacle.geohash)
        return obstacle

    async def _credit_creator(self, obstacle: Obstacle, reporter_id: str, *, verified: bool) -> None:
        """Adjust the obstacle creator's trust when someone else weighs in."""
        creator = obstacle.created_by
        if creator is None or creator == reporter_id:
            return
        try:
            if verified:
                await self._trust.increment_verified_reports(creator)
            else:
                await self._trust.increment_disputed_reports(creator)
        except NotFound:
            log.warning("creator_missing", obstacle_id=obstacle.id, creator=creator)

    async def _on_new(self, obstacle: Obstacle, sub: ReportSubmission):
        result = await self._confidence.update_confidence(obstacle.id)
        return result.score, obstacle.status

    async def _on_confirm(self, obstacle: Obstacle, sub: ReportSubmission):
        result = await self._confidence.increment_confirmations(obstacle.id)
        await self._credit_creator(obstacle, sub.user_id, verified=True)
        return result.score, obstacle.status

    async def _on_dispute(self, obstacle: Obstacle, sub: ReportSubmission):
        result = await self._confidence.increment_disputes(obstacle.id)
        await self._credit_creator(obstacle, sub.user_id, verified=False)

        status = obstacle.status
        if (status is ObstacleStatus.ACTIVE and not result.defaulted
                and should_hide(result.score)):
            status = await self._transition(obstacle, ObstacleStatus.DISPUTED, "auto_disputed")
        return result.score, status

    async def _on_fixed(self, obstacle: Obstacle, sub: ReportSubmission):
        status = obstacle.status
        if status is ObstacleStatus.ACTIVE:
            fixed_by = await self._storage.distinct_reporters(obstacle.id, ReportType.FIXED)
            if fixed_by >= FIXED_REPORTS_REQUIRED:
                status = await self._transition(obstacle, ObstacleStatus.FIXED, "reported_fixed")
        return obstacle.confidence_score, status

    async def _transition(self, obstacle: Obstacle, new_status: ObstacleStatus,
                          action: str) -> ObstacleStatus:
        await self._storage.set_status(obstacle.id, new_status)
        await self._storage.add_history(ObstacleHistory(
            obstacle_id=obstacle.id,
            action=action,
            old_value={"status": obstacle.status.value},
            new_value={"status": new_status.value},
            created_at=self._clock(),
        ))
        log.info("obstacle_status_changed", obstacle_id=obstacle.id,
                 old=obstacle.status.value, new=new_status.value)
        return new_status

    async def edit_report(self, report_id: str, user_id: str, *,
                          description: str | None = None,
                          photos: tuple[str, ...] | None = None) -> Report:
        """Owner edit of description/photos; every other report field is immutable."""
        report = await self._storage.get_report(report_id)
        if report is None:
            raise NotFound(f"report {report_id} not found")
        if report.user_id != user_id:
            raise PermissionDenied("only the report owner may edit it")
        if photos is not None and len(photos) > MAX_PHOTOS_PER_REPORT:
            raise InvalidInput(f"at most {MAX_PHOTOS_PER_REPORT} photos per report")
        updated = await self._storage.update_report(report_id, description=description,
                                                    photos=photos)
        if photos is not None:
            # Adding or removing photo evidence changes the obstacle's confidence.
            await self._confidence.update_confidence(report.obstacle_id)
        return updated
