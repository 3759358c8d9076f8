"""User trust scoring.

Trust (0-100) reflects how reliable a user's past reports have been:
base 50, up to +10 for account age (1 per month), +3 per verified report
(max +30), -4 per disputed report (max -40), and up to +10 for the share of
reports that were verified.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from smoothride.core.errors import DependencyUnavailable, NotFound
from smoothride.core.models import ScoreResult, days_since, utcnow

if TYPE_CHECKING:
    from smoothride.core.models import UserTrust
    from smoothride.storage.base import ObstacleStorage

log = structlog.get_logger()

BASE_SCORE = 50
NEUTRAL_SCORE = 50
MAX_AGE_POINTS = 10
DAYS_PER_MONTH = 30
VERIFIED_POINTS = 3
MAX_VERIFIED_POINTS = 30
DISPUTED_PENALTY = 4
MAX_DISPUTED_PENALTY = 40
MAX_ACCURACY_POINTS = 10

FLAG_THRESHOLD = 20


def score_trust(user: UserTrust, now: datetime) -> int:
    score = BASE_SCORE
    months = days_since(user.created_at, now) // DAYS_PER_MONTH
    score += min(months, MAX_AGE_POINTS)
    score += min(user.reports_verified * VERIFIED_POINTS, MAX_VERIFIED_POINTS)
    score -= min(user.reports_disputed * DISPUTED_PENALTY, MAX_DISPUTED_PENALTY)

    total = user.reports_verified + user.reports_disputed
    if total > 0:
        score += user.reports_verified * MAX_ACCURACY_POINTS // total

    return max(0, min(100, score))


def trust_level(score: int) -> str:
    if score >= 80:
        return "highly_trusted"
    if score >= 60:
        return "trusted"
    if score >= 40:
        return "neutral"
    if score >= FLAG_THRESHOLD:
        return "low_trust"
    return "flagged"


def is_flagged(score: int) -> bool:
    return score < FLAG_THRESHOLD


class TrustEngine:
    """Computes and persists user trust scores."""

    def __init__(self, storage: ObstacleStorage,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self._storage = storage
        self._clock = clock

    async def compute_trust(self, user_id: str) -> ScoreResult:
        try:
            user = await self._storage.get_user(user_id)
        except DependencyUnavailable:
            log.warning("trust_defaulted", user_id=user_id, exc_info=True)
            return ScoreResult(NEUTRAL_SCORE, defaulted=True)
        if user is None:
            raise NotFound(f"user {user_id} not found")
        return ScoreResult(score_trust(user, self._clock()))

    async def update_trust(self, user_id: str) -> ScoreResult:
        result = await self.compute_trust(user_id)
        if result.defaulted:
            return result
        await self._storage.set_trust(user_id, result.score)
        log.debug("trust_updated", user_id=user_id, score=result.score)
        return result

    async def increment_verified_reports(self, user_id: str) -> ScoreResult:
        await self._storage.increment_user_verified(user_id)
        return await self.update_trust(user_id)

    async def increment_disputed_reports(self, user_id: str) -> ScoreResult:
        await self._storage.increment_user_disputed(user_id)
        result = await self.update_trust(user_id)
        if not result.defaulted and is_flagged(result.score):
            log.info("user_trust_flagged", user_id=user_id, score=result.score)
        return result
