"""Obstacle confidence scoring.

Confidence (0-100) estimates whether an obstacle is real and still present.
Factors, each capped independently before summing:

- base: 50
- confirmations: +6 each, max +30
- reporter trust: up to +15, from the mean trust of "new"/"confirm" reporters
- disputes: -10 each, max -40
- age: -5 per 30 days since last confirmation, max -20
- photo evidence on any report: +10
- municipal confirmation: +15

Scoring is advisory: when storage cannot be read the engine returns a
neutral 50 tagged as defaulted instead of raising.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from smoothride.core.errors import DependencyUnavailable, NotFound
from smoothride.core.models import ScoreResult, days_since, utcnow

if TYPE_CHECKING:
    from smoothride.core.models import Obstacle
    from smoothride.storage.base import ObstacleStorage

log = structlog.get_logger()

BASE_SCORE = 50
NEUTRAL_SCORE = 50
DEFAULT_REPORTER_TRUST = 50.0

CONFIRMATION_POINTS = 6
MAX_CONFIRMATION_POINTS = 30
MAX_TRUST_POINTS = 15
DISPUTE_PENALTY = 10
MAX_DISPUTE_PENALTY = 40
DECAY_PERIOD_DAYS = 30
DECAY_POINTS_PER_PERIOD = 5
MAX_DECAY_POINTS = 20
PHOTO_POINTS = 10
MUNICIPAL_POINTS = 15

# Below this an obstacle is hidden from default map queries.
HIDE_THRESHOLD = 30


def score_confidence(obstacle: Obstacle, avg_reporter_trust: float,
                     has_photos: bool, now: datetime) -> int:
    """Pure confidence formula over already-loaded inputs."""
    score = BASE_SCORE
    score += min(obstacle.confirmations_count * CONFIRMATION_POINTS, MAX_CONFIRMATION_POINTS)
    score += int(avg_reporter_trust * MAX_TRUST_POINTS / 100)
    score -= min(obstacle.disputes_count * DISPUTE_PENALTY, MAX_DISPUTE_PENALTY)

    periods = days_since(obstacle.last_activity_at, now) // DECAY_PERIOD_DAYS
    score -= min(periods * DECAY_POINTS_PER_PERIOD, MAX_DECAY_POINTS)

    if has_photos:
        score += PHOTO_POINTS
    if obstacle.municipal_confirmed:
        score += MUNICIPAL_POINTS

    return max(0, min(100, score))


def confidence_level(score: int) -> str:
    if score >= 80:
        return "very_high"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    if score >= HIDE_THRESHOLD:
        return "low"
    return "very_low"


def should_hide(score: int) -> bool:
    return score < HIDE_THRESHOLD


class ConfidenceEngine:
    """Computes and persists obstacle confidence scores."""

    def __init__(self, storage: ObstacleStorage,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self._storage = storage
        self._clock = clock

    async def compute_confidence(self, obstacle_id: str) -> ScoreResult:
        """Score an obstacle. Raises NotFound for unknown ids; storage
        failures yield ``ScoreResult(50, defaulted=True)``."""
        try:
            obstacle = await self._storage.get_obstacle(obstacle_id)
        except DependencyUnavailable:
            log.warning("confidence_defaulted", obstacle_id=obstacle_id, exc_info=True)
            return ScoreResult(NEUTRAL_SCORE, defaulted=True)
        if obstacle is None:
            raise NotFound(f"obstacle {obstacle_id} not found")
        return await self.score_obstacle(obstacle)

    async def score_obstacle(self, obstacle: Obstacle) -> ScoreResult:
        try:
            trust_scores = await self._storage.reporter_trust_scores(obstacle.id)
            has_photos = await self._storage.has_photo_evidence(obstacle.id)
        except DependencyUnavailable:
            log.warning("confidence_defaulted", obstacle_id=obstacle.id, exc_info=True)
            return ScoreResult(NEUTRAL_SCORE, defaulted=True)

        avg_trust = (sum(trust_scores) / len(trust_scores)
                     if trust_scores else DEFAULT_REPORTER_TRUST)
        return ScoreResult(score_confidence(obstacle, avg_trust, has_photos, self._clock()))

    async def update_confidence(self, obstacle_id: str) -> ScoreResult:
        """Recompute and persist. A defaulted score is returned but not written."""
        result = await self.compute_confidence(obstacle_id)
        if result.defaulted:
            return result
        await self._storage.set_confidence(obstacle_id, result.score)
        log.debug("confidence_updated", obstacle_id=obstacle_id, score=result.score)
        return result

    async def increment_confirmations(self, obstacle_id: str) -> ScoreResult:
        await self._storage.increment_confirmations(obstacle_id, self._clock())
        return await self.update_confidence(obstacle_id)

    async def increment_disputes(self, obstacle_id: str) -> ScoreResult:
        await self._storage.increment_disputes(obstacle_id)
        return await self.update_confidence(obstacle_id)
