"""SmoothRide core internal data models.

These are plain dataclasses with no framework dependencies.
JSON payloads are converted to/from these at the API boundary.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

from smoothride.core.errors import InvalidInput


class ObstacleType(str, enum.Enum):
    SPEEDBUMP = "speedbump"
    POTHOLE = "pothole"
    CONSTRUCTION = "construction"
    STEEP_GRADE = "steep_grade"
    RAILROAD_CROSSING = "railroad_crossing"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3}


class ObstacleStatus(str, enum.Enum):
    ACTIVE = "active"
    FIXED = "fixed"
    DISPUTED = "disputed"


class ReportType(str, enum.Enum):
    NEW = "new"
    CONFIRM = "confirm"
    FIXED = "fixed"
    DISPUTE = "dispute"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def days_since(moment: datetime, now: datetime) -> int:
    """Whole days elapsed between ``moment`` and ``now`` (never negative)."""
    return max(0, (now - moment).days)


# Maximum number of photo URIs attached to a single report.
MAX_PHOTOS_PER_REPORT = 3


def parse_enum(enum_cls, value, field_name: str):
    """Convert a raw string to ``enum_cls``, raising InvalidInput on failure."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidInput(f"{field_name} must be one of: {allowed}") from None


def validate_coordinates(lat: float, lng: float) -> None:
    if not -90.0 <= lat <= 90.0:
        raise InvalidInput(f"latitude {lat} out of range [-90, 90]")
    if not -180.0 <= lng <= 180.0:
        raise InvalidInput(f"longitude {lng} out of range [-180, 180]")


@dataclass(frozen=True)
class Bounds:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def __post_init__(self) -> None:
        validate_coordinates(self.min_lat, self.min_lng)
        validate_coordinates(self.max_lat, self.max_lng)
        if self.min_lat > self.max_lat or self.min_lng > self.max_lng:
            raise InvalidInput("bounds minimum must not exceed maximum")

    def contains(self, lat: float, lng: float) -> bool:
        return (self.min_lat <= lat <= self.max_lat
                and self.min_lng <= lng <= self.max_lng)


@dataclass
class Obstacle:
    id: str
    type: ObstacleType
    lat: float
    lng: float
    severity: Severity
    geohash: str
    created_at: datetime
    status: ObstacleStatus = ObstacleStatus.ACTIVE
    confidence_score: int = 50
    confirmations_count: int = 0
    disputes_count: int = 0
    created_by: str | None = None
    last_confirmed_at: datetime | None = None
    municipal_confirmed: bool = False
    description: str = ""

    @property
    def last_activity_at(self) -> datetime:
        """Reference time for age decay: last confirmation, else creation."""
        return self.last_confirmed_at or self.created_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "location": {"lat": self.lat, "lng": self.lng},
            "severity": self.severity.value,
            "status": self.status.value,
            "confidence_score": self.confidence_score,
            "confirmations_count": self.confirmations_count,
            "disputes_count": self.disputes_count,
            "geohash": self.geohash,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "last_confirmed_at": (self.last_confirmed_at.isoformat()
                                  if self.last_confirmed_at else None),
            "municipal_confirmed": self.municipal_confirmed,
        }


@dataclass
class Report:
    id: str
    obstacle_id: str
    user_id: str
    report_type: ReportType
    created_at: datetime
    severity: Severity | None = None
    description: str = ""
    photos: tuple[str, ...] = ()
    sensor_data: dict | None = None
    reported_confidence: float | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "obstacle_id": self.obstacle_id,
            "user_id": self.user_id,
            "report_type": self.report_type.value,
            "severity": self.severity.value if self.severity else None,
            "description": self.description,
            "photos": list(self.photos),
            "confidence": self.reported_confidence,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class UserTrust:
    id: str
    created_at: datetime
    trust_score: int = 50
    reports_verified: int = 0
    reports_disputed: int = 0


@dataclass(frozen=True)
class ObstacleHistory:
    obstacle_id: str
    action: str
    old_value: dict
    new_value: dict
    created_at: datetime


@dataclass(frozen=True)
class ScoreResult:
    """A score plus whether it came from the neutral fallback."""
    score: int
    defaulted: bool = False


@dataclass(frozen=True)
class ReportSubmission:
    """An incoming report, validated but not yet persisted."""
    user_id: str
    report_type: ReportType
    obstacle_id: str | None = None
    lat: float | None = None
    lng: float | None = None
    obstacle_type: ObstacleType | None = None
    severity: Severity | None = None
    description: str = ""
    photos: tuple[str, ...] = ()
    sensor_data: dict | None = None
    reported_confidence: float | None = None

    def __post_init__(self) -> None:
        if not self.user_id:
            raise InvalidInput("user_id is required")
        if len(self.photos) > MAX_PHOTOS_PER_REPORT:
            raise InvalidInput(f"at most {MAX_PHOTOS_PER_REPORT} photos per report")
        if self.reported_confidence is not None and not 0.0 <= self.reported_confidence <= 1.0:
            raise InvalidInput("confidence must be between 0 and 1")
        if self.report_type is ReportType.NEW and self.obstacle_id is None:
            if (self.lat is None or self.lng is None
                    or self.obstacle_type is None or self.severity is None):
                raise InvalidInput(
                    "lat, lng, type and severity are required for new obstacle reports")
            validate_coordinates(self.lat, self.lng)
        elif self.report_type is not ReportType.NEW and not self.obstacle_id:
            raise InvalidInput(f"obstacle_id is required for {self.report_type.value} reports")


@dataclass
class ReportOutcome:
    accepted: bool
    obstacle_id: str | None = None
    report_id: str | None = None
    confidence_score: int | None = None
    status: ObstacleStatus | None = None
    error: str = ""
    spam_flags: dict[str, bool] = field(default_factory=dict)


@dataclass
class StoreSummary:
    """Raw counts over the whole store, for the admin overview."""
    obstacles_by_status: dict[str, int] = field(default_factory=dict)
    avg_confidence: float | None = None
    users_total: int = 0
    users_flagged: int = 0
    avg_trust: float | None = None
    reports_by_type: dict[str, int] = field(default_factory=dict)
