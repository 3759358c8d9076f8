"""Shared test fixtures."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

import smoothride.main as main_module
from smoothride.cache.memory_cache import MemoryCache
from smoothride.config import AppConfig
from smoothride.core import geohash
from smoothride.core.errors import DependencyUnavailable
from smoothride.core.models import Obstacle, ObstacleType, Severity, UserTrust
from smoothride.core.routing import BaseRoute
from smoothride.storage.memory_storage import MemoryStorage

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable UTC clock; call it like ``utcnow``."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRoadNetwork:
    """Returns canned routes and records the requests it saw."""

    def __init__(self, routes: list[BaseRoute] | None = None) -> None:
        self.routes_to_return = routes or []
        self.calls: list[tuple] = []

    async def routes(self, origin, destination, alternatives=3):
        self.calls.append((origin, destination, alternatives))
        return list(self.routes_to_return)


class FlakyStorage(MemoryStorage):
    """MemoryStorage whose reads can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = False
        self.page_failures = 0

    def _check(self) -> None:
        if self.failing:
            raise DependencyUnavailable("storage down")

    async def get_obstacle(self, obstacle_id):
        self._check()
        return await super().get_obstacle(obstacle_id)

    async def reporter_trust_scores(self, obstacle_id):
        self._check()
        return await super().reporter_trust_scores(obstacle_id)

    async def get_user(self, user_id):
        self._check()
        return await super().get_user(user_id)

    async def count_user_reports(self, user_id, since, **kwargs):
        self._check()
        return await super().count_user_reports(user_id, since, **kwargs)

    async def user_report_times(self, user_id, since):
        self._check()
        return await super().user_report_times(user_id, since)

    async def active_obstacles_page(self, after_id, limit):
        if self.page_failures > 0:
            self.page_failures -= 1
            raise DependencyUnavailable("storage down")
        return await super().active_obstacles_page(after_id, limit)


def make_obstacle(lat: float = 45.5017, lng: float = -73.5673, *,
                  type: ObstacleType = ObstacleType.POTHOLE,
                  severity: Severity = Severity.MEDIUM,
                  created_at: datetime = T0, **kwargs) -> Obstacle:
    return Obstacle(
        id=kwargs.pop("id", str(uuid.uuid4())),
        type=type,
        lat=lat,
        lng=lng,
        severity=severity,
        geohash=geohash.encode(lat, lng),
        created_at=created_at,
        **kwargs,
    )


def make_user(user_id: str | None = None, *, created_at: datetime = T0, **kwargs) -> UserTrust:
    return UserTrust(id=user_id or str(uuid.uuid4()), created_at=created_at, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def flaky_storage():
    return FlakyStorage()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def road_network():
    return FakeRoadNetwork()


@pytest.fixture(autouse=True)
def _init_server(road_network):
    """Initialize server singletons for every test, with in-memory backends."""
    config = AppConfig()
    config.logging.level = "warning"
    config.decay.enabled = False

    main_module.build_engine(config, MemoryCache(), road_network=road_network)

    yield

    # Cleanup
    for name in ("_config", "_stats", "_storage", "_confidence", "_trust", "_spam",
                 "_clusters", "_processor", "_moderation", "_scheduler", "_planner",
                 "_road_network"):
        setattr(main_module, name, None)


@pytest.fixture
async def client():
    from smoothride.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
