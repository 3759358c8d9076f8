"""In-process storage implementation.

Holds obstacles, reports, users and history in dicts. Reads return copies
so callers cannot mutate stored rows behind the store's back, matching the
behavior of a real database-backed store.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from smoothride.core.errors import NotFound
from smoothride.core.geometry import bounds_around, haversine_m
from smoothride.core.models import ObstacleStatus, ReportType, StoreSummary

if TYPE_CHECKING:
    from smoothride.core.models import (
        Bounds,
        Obstacle,
        ObstacleHistory,
        ObstacleType,
        Report,
        Severity,
        UserTrust,
    )

log = structlog.get_logger()

# Report types whose authors count as vouching for an obstacle.
_VOUCHING_TYPES = (ReportType.NEW, ReportType.CONFIRM)


def _copy(row):
    return dataclasses.replace(row) if row is not None else None


class MemoryStorage:
    """ObstacleStorage backed by in-memory dicts."""

    def __init__(self) -> None:
        self._obstacles: dict[str, Obstacle] = {}
        self._reports: dict[str, Report] = {}
        self._users: dict[str, UserTrust] = {}
        self._history: list[ObstacleHistory] = []

    # -- helpers ----------------------------------------------------------

    def _obstacle(self, obstacle_id: str) -> Obstacle:
        try:
            return self._obstacles[obstacle_id]
        except KeyError:
            raise NotFound(f"obstacle {obstacle_id} not found") from None

    def _user(self, user_id: str) -> UserTrust:
        try:
            return self._users[user_id]
        except KeyError:
            raise NotFound(f"user {user_id} not found") from None

    @staticmethod
    def _matches(o: Obstacle, min_confidence: int, types, severities) -> bool:
        if o.confidence_score < min_confidence:
            return False
        if types and o.type not in types:
            return False
        if severities and o.severity not in severities:
            return False
        return True

    # -- obstacles --------------------------------------------------------

    async def get_obstacle(self, obstacle_id: str) -> Obstacle | None:
        return _copy(self._obstacles.get(obstacle_id))

    async def add_obstacle(self, obstacle: Obstacle) -> None:
        self._obstacles[obstacle.id] = _copy(obstacle)
        log.debug("obstacle_added", obstacle_id=obstacle.id, geohash=obstacle.geohash)

    async def increment_confirmations(self, obstacle_id: str, confirmed_at: datetime) -> None:
        o = self._obstacle(obstacle_id)
        o.confirmations_count += 1
        o.last_confirmed_at = confirmed_at

    async def increment_disputes(self, obstacle_id: str) -> None:
        self._obstacle(obstacle_id).disputes_count += 1

    async def set_confidence(self, obstacle_id: str, score: int) -> None:
        self._obstacle(obstacle_id).confidence_score = score

    async def set_status(self, obstacle_id: str, status: ObstacleStatus) -> None:
        self._obstacle(obstacle_id).status = status

    async def update_obstacle(
        self,
        obstacle_id: str,
        *,
        obstacle_type: ObstacleType | None = None,
        severity: Severity | None = None,
        status: ObstacleStatus | None = None,
        municipal_confirmed: bool | None = None,
    ) -> Obstacle:
        o = self._obstacle(obstacle_id)
        if obstacle_type is not None:
            o.type = obstacle_type
        if severity is not None:
            o.severity = severity
        if status is not None:
            o.status = status
        if municipal_confirmed is not None:
            o.municipal_confirmed = municipal_confirmed
        return _copy(o)

    async def delete_obstacle(self, obstacle_id: str) -> int:
        self._obstacle(obstacle_id)
        del self._obstacles[obstacle_id]
        doomed = [rid for rid, r in self._reports.items() if r.obstacle_id == obstacle_id]
        for rid in doomed:
            del self._reports[rid]
        self._history = [h for h in self._history if h.obstacle_id != obstacle_id]
        log.debug("obstacle_deleted", obstacle_id=obstacle_id, reports=len(doomed))
        return len(doomed)

    async def obstacles_created_since(self, since: datetime) -> list[Obstacle]:
        return [_copy(o) for o in self._obstacles.values() if o.created_at > since]

    async def find_obstacles(
        self,
        bounds: Bounds,
        *,
        status: ObstacleStatus | None = None,
        min_confidence: int = 0,
        types: frozenset[ObstacleType] | None = None,
        severities: frozenset[Severity] | None = None,
    ) -> list[Obstacle]:
        return [
            _copy(o) for o in self._obstacles.values()
            if (status is None or o.status == status)
            and bounds.contains(o.lat, o.lng)
            and self._matches(o, min_confidence, types, severities)
        ]

    async def obstacles_with_prefix(
        self,
        prefix: str,
        *,
        min_confidence: int = 0,
        types: frozenset[ObstacleType] | None = None,
        severities: frozenset[Severity] | None = None,
        limit: int = 100,
    ) -> list[Obstacle]:
        rows = [
            o for o in self._obstacles.values()
            if o.status == ObstacleStatus.ACTIVE
            and o.geohash.startswith(prefix)
            and self._matches(o, min_confidence, types, severities)
        ]
        rows.sort(key=lambda o: (o.confidence_score, o.created_at), reverse=True)
        return [_copy(o) for o in rows[:limit]]

    async def nearest_active_obstacle(
        self, lat: float, lng: float, radius_m: float, obstacle_type: ObstacleType,
    ) -> Obstacle | None:
        box = bounds_around(lat, lng, radius_m)
        best, best_dist = None, radius_m
        for o in self._obstacles.values():
            if o.status != ObstacleStatus.ACTIVE or o.type != obstacle_type:
                continue
            if not box.contains(o.lat, o.lng):
                continue
            d = haversine_m(lat, lng, o.lat, o.lng)
            if d <= best_dist:
                best, best_dist = o, d
        return _copy(best)

    async def active_obstacles_page(self, after_id: str | None, limit: int) -> list[Obstacle]:
        ids = sorted(
            oid for oid, o in self._obstacles.items()
            if o.status == ObstacleStatus.ACTIVE and (after_id is None or oid > after_id)
        )
        return [_copy(self._obstacles[oid]) for oid in ids[:limit]]

    async def add_history(self, entry: ObstacleHistory) -> None:
        self._obstacle(entry.obstacle_id)
        self._history.append(entry)

    async def get_history(self, obstacle_id: str) -> list[ObstacleHistory]:
        return [h for h in self._history if h.obstacle_id == obstacle_id]

    # -- reports ----------------------------------------------------------

    async def add_report(self, report: Report) -> None:
        self._obstacle(report.obstacle_id)
        self._reports[report.id] = _copy(report)

    async def get_report(self, report_id: str) -> Report | None:
        return _copy(self._reports.get(report_id))

    async def update_report(self, report_id: str, *, description: str | None = None,
                            photos: tuple[str, ...] | None = None) -> Report:
        try:
            report = self._reports[report_id]
        except KeyError:
            raise NotFound(f"report {report_id} not found") from None
        if description is not None:
            report.description = description
        if photos is not None:
            report.photos = tuple(photos)
        return _copy(report)

    async def has_report(self, obstacle_id: str, user_id: str, report_type: ReportType) -> bool:
        return any(
            r.obstacle_id == obstacle_id and r.user_id == user_id and r.report_type == report_type
            for r in self._reports.values()
        )

    async def distinct_reporters(self, obstacle_id: str, report_type: ReportType) -> int:
        return len({
            r.user_id for r in self._reports.values()
            if r.obstacle_id == obstacle_id and r.report_type == report_type
        })

    async def reporter_trust_scores(self, obstacle_id: str) -> list[int]:
        vouchers = {
            r.user_id for r in self._reports.values()
            if r.obstacle_id == obstacle_id
            and r.report_type in _VOUCHING_TYPES
            and r.user_id in self._users
        }
        return [self._users[uid].trust_score for uid in sorted(vouchers)]

    async def reports_for_obstacle(self, obstacle_id: str) -> list[Report]:
        rows = [r for r in self._reports.values() if r.obstacle_id == obstacle_id]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return [_copy(r) for r in rows]

    async def has_photo_evidence(self, obstacle_id: str) -> bool:
        return any(
            r.obstacle_id == obstacle_id and len(r.photos) > 0
            for r in self._reports.values()
        )

    async def count_user_reports(
        self,
        user_id: str,
        since: datetime,
        *,
        near: tuple[float, float] | None = None,
        radius_m: float | None = None,
        obstacle_type: ObstacleType | None = None,
        report_type: ReportType | None = None,
    ) -> int:
        count = 0
        for r in self._reports.values():
            if r.user_id != user_id or r.created_at <= since:
                continue
            if report_type is not None and r.report_type != report_type:
                continue
            o = self._obstacles.get(r.obstacle_id)
            if o is None:
                continue
            if obstacle_type is not None and o.type != obstacle_type:
                continue
            if near is not None and radius_m is not None:
                if haversine_m(near[0], near[1], o.lat, o.lng) > radius_m:
                    continue
            count += 1
        return count

    async def user_report_times(self, user_id: str, since: datetime) -> list[datetime]:
        return sorted(
            r.created_at for r in self._reports.values()
            if r.user_id == user_id and r.created_at > since
        )

    # -- users ------------------------------------------------------------

    async def get_user(self, user_id: str) -> UserTrust | None:
        return _copy(self._users.get(user_id))

    async def add_user(self, user: UserTrust) -> None:
        self._users[user.id] = _copy(user)

    async def increment_user_verified(self, user_id: str) -> None:
        self._user(user_id).reports_verified += 1

    async def increment_user_disputed(self, user_id: str) -> None:
        self._user(user_id).reports_disputed += 1

    async def set_trust(self, user_id: str, score: int) -> None:
        self._user(user_id).trust_score = score

    async def users_below_trust(self, threshold: int, limit: int = 50) -> list[UserTrust]:
        rows = sorted(
            (u for u in self._users.values() if u.trust_score < threshold),
            key=lambda u: u.trust_score,
        )
        return [_copy(u) for u in rows[:limit]]

    # -- overview ---------------------------------------------------------

    async def summarize(self, reports_since: datetime, flag_threshold: int) -> StoreSummary:
        summary = StoreSummary(
            obstacles_by_status={s.value: 0 for s in ObstacleStatus},
            reports_by_type={t.value: 0 for t in ReportType},
        )
        for o in self._obstacles.values():
            summary.obstacles_by_status[o.status.value] += 1
        if self._obstacles:
            summary.avg_confidence = (sum(o.confidence_score for o in self._obstacles.values())
                                      / len(self._obstacles))

        summary.users_total = len(self._users)
        summary.users_flagged = sum(1 for u in self._users.values()
                                    if u.trust_score < flag_threshold)
        if self._users:
            summary.avg_trust = sum(u.trust_score for u in self._users.values()) / len(self._users)

        for r in self._reports.values():
            if r.created_at > reports_since:
                summary.reports_by_type[r.report_type.value] += 1
        return summary
