"""Storage interface (port) for obstacles, reports and user trust aggregates.

Implementations raise DependencyUnavailable when the backing store cannot
be reached, and NotFound when a mutation targets an unknown id.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from smoothride.core.models import (
        Bounds,
        Obstacle,
        ObstacleHistory,
        ObstacleStatus,
        ObstacleType,
        Report,
        ReportType,
        Severity,
        StoreSummary,
        UserTrust,
    )


class ObstacleStorage(Protocol):
    """Port: persisted obstacles, reports, users and obstacle history."""

    # Obstacles

    async def get_obstacle(self, obstacle_id: str) -> Obstacle | None: ...

    async def add_obstacle(self, obstacle: Obstacle) -> None: ...

    async def increment_confirmations(self, obstacle_id: str, confirmed_at: datetime) -> None: ...

    async def increment_disputes(self, obstacle_id: str) -> None: ...

    async def set_confidence(self, obstacle_id: str, score: int) -> None: ...

    async def set_status(self, obstacle_id: str, status: ObstacleStatus) -> None: ...

    async def update_obstacle(
        self,
        obstacle_id: str,
        *,
        obstacle_type: ObstacleType | None = None,
        severity: Severity | None = None,
        status: ObstacleStatus | None = None,
        municipal_confirmed: bool | None = None,
    ) -> Obstacle:
        """Overwrite the given fields; ``None`` leaves a field as is."""
        ...

    async def delete_obstacle(self, obstacle_id: str) -> int:
        """Remove the obstacle with its reports and history.
        Returns how many reports went with it."""
        ...

    async def obstacles_created_since(self, since: datetime) -> list[Obstacle]: ...

    async def find_obstacles(
        self,
        bounds: Bounds,
        *,
        status: ObstacleStatus | None = None,
        min_confidence: int = 0,
        types: frozenset[ObstacleType] | None = None,
        severities: frozenset[Severity] | None = None,
    ) -> list[Obstacle]: ...

    async def obstacles_with_prefix(
        self,
        prefix: str,
        *,
        min_confidence: int = 0,
        types: frozenset[ObstacleType] | None = None,
        severities: frozenset[Severity] | None = None,
        limit: int = 100,
    ) -> list[Obstacle]:
        """Active obstacles whose hash starts with ``prefix``,
        ordered by confidence desc then created_at desc."""
        ...

    async def nearest_active_obstacle(
        self, lat: float, lng: float, radius_m: float, obstacle_type: ObstacleType,
    ) -> Obstacle | None: ...

    async def active_obstacles_page(self, after_id: str | None, limit: int) -> list[Obstacle]:
        """Keyset page of active obstacles ordered by id, strictly after ``after_id``."""
        ...

    async def add_history(self, entry: ObstacleHistory) -> None: ...

    async def get_history(self, obstacle_id: str) -> list[ObstacleHistory]: ...

    # Reports

    async def add_report(self, report: Report) -> None: ...

    async def get_report(self, report_id: str) -> Report | None: ...

    async def update_report(self, report_id: str, *, description: str | None = None,
                            photos: tuple[str, ...] | None = None) -> Report: ...

    async def has_report(self, obstacle_id: str, user_id: str, report_type: ReportType) -> bool: ...

    async def distinct_reporters(self, obstacle_id: str, report_type: ReportType) -> int: ...

    async def reporter_trust_scores(self, obstacle_id: str) -> list[int]:
        """Trust scores of users holding a "new" or "confirm" report on the obstacle,
        one entry per user however many such reports they filed."""
        ...

    async def reports_for_obstacle(self, obstacle_id: str) -> list[Report]:
        """Every report filed on the obstacle, newest first."""
        ...

    async def has_photo_evidence(self, obstacle_id: str) -> bool: ...

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
        """Reports by ``user_id`` created after ``since``, optionally restricted
        to obstacles of one type within ``radius_m`` of ``near`` (lat, lng)
        and to one report type."""
        ...

    async def user_report_times(self, user_id: str, since: datetime) -> list[datetime]: ...

    # Users

    async def get_user(self, user_id: str) -> UserTrust | None: ...

    async def add_user(self, user: UserTrust) -> None: ...

    async def increment_user_verified(self, user_id: str) -> None: ...

    async def increment_user_disputed(self, user_id: str) -> None: ...

    async def set_trust(self, user_id: str, score: int) -> None: ...

    async def users_below_trust(self, threshold: int, limit: int = 50) -> list[UserTrust]: ...

    # Overview

    async def summarize(self, reports_since: datetime, flag_threshold: int) -> StoreSummary:
        """Obstacle counts per status, users below ``flag_threshold`` and
        reports per type created after ``reports_since``."""
        ...
