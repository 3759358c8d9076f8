"""Tests for the report write path."""

from __future__ import annotations

import pytest

from conftest import make_user
from smoothride.config import SpamConfig
from smoothride.core.clustering import ClusterService
from smoothride.core.confidence import ConfidenceEngine
from smoothride.core.errors import InvalidInput, NotFound, PermissionDenied
from smoothride.core.models import (
    Bounds,
    ObstacleStatus,
    ObstacleType,
    ReportSubmission,
    ReportType,
    Severity,
)
from smoothride.core.processor import ReportProcessor
from smoothride.core.spam import SpamDetector
from smoothride.core.stats import EngineStats
from smoothride.core.trust import TrustEngine

LAT, LNG = 45.5017, -73.5673
VIEW = Bounds(min_lat=45.49, max_lat=45.51, min_lng=-73.58, max_lng=-73.55)


@pytest.fixture
def stats():
    return EngineStats()


@pytest.fixture
def clusters(storage, cache, stats):
    return ClusterService(storage, cache, stats)


@pytest.fixture
def processor(storage, cache, clusters, stats, clock):
    return ReportProcessor(
        storage,
        ConfidenceEngine(storage, clock=clock),
        TrustEngine(storage, clock=clock),
        SpamDetector(storage, cache, SpamConfig(), clock=clock),
        clusters,
        stats,
        clock=clock,
    )


@pytest.fixture
async def users(storage, clock):
    created = [make_user(f"user-{i}", created_at=clock()) for i in range(4)]
    for u in created:
        await storage.add_user(u)
    return created


def _new(user_id, lat=LAT, lng=LNG, **kwargs):
    kwargs.setdefault("obstacle_type", ObstacleType.POTHOLE)
    kwargs.setdefault("severity", Severity.MEDIUM)
    return ReportSubmission(user_id=user_id, report_type=ReportType.NEW, lat=lat, lng=lng, **kwargs)


def _on(user_id, obstacle_id, report_type):
    return ReportSubmission(user_id=user_id, report_type=report_type, obstacle_id=obstacle_id)


@pytest.mark.asyncio
async def test_new_report_creates_scored_obstacle(processor, storage, users, stats):
    outcome = await processor.submit(_new(users[0].id))

    assert outcome.accepted
    assert outcome.confidence_score == 57
    assert outcome.status is ObstacleStatus.ACTIVE
    obstacle = await storage.get_obstacle(outcome.obstacle_id)
    assert obstacle.created_by == users[0].id
    assert len(obstacle.geohash) == 9
    assert obstacle.confidence_score == 57
    assert stats.snapshot()["reports_by_type"] == {"new": 1}


@pytest.mark.asyncio
async def test_nearby_new_report_attaches_to_existing(processor, users):
    first = await processor.submit(_new(users[0].id))
    # ~20 m away, same type, different user.
    second = await processor.submit(_new(users[1].id, lat=LAT + 0.00018))
    other_type = await processor.submit(_new(users[2].id, lat=LAT + 0.00018,
                                             obstacle_type=ObstacleType.SPEEDBUMP))

    assert second.obstacle_id == first.obstacle_id
    assert other_type.obstacle_id != first.obstacle_id


@pytest.mark.asyncio
async def test_duplicate_new_report_is_rejected_as_spam(processor, users, stats, clock, cache):
    await processor.submit(_new(users[0].id))
    clock.advance(minutes=2)
    outcome = await processor.submit(_new(users[0].id, lat=LAT + 0.000045))

    assert not outcome.accepted
    assert outcome.spam_flags["is_duplicate"]
    assert stats.snapshot()["spam_rejections"] == 1
    assert await cache.get(f"flagged_user:{users[0].id}") is not None


@pytest.mark.asyncio
async def test_confirm_raises_confidence_and_creator_trust(processor, storage, users):
    created = await processor.submit(_new(users[0].id))
    outcome = await processor.submit(_on(users[1].id, created.obstacle_id, ReportType.CONFIRM))

    assert outcome.accepted
    # 50 + 6 for the confirmation + 7 for two neutral reporters
    assert outcome.confidence_score == 63
    obstacle = await storage.get_obstacle(created.obstacle_id)
    assert obstacle.confirmations_count == 1
    assert obstacle.confidence_score == 63
    creator = await storage.get_user(users[0].id)
    assert creator.reports_verified == 1
    assert creator.trust_score == 63


@pytest.mark.asyncio
async def test_same_user_cannot_confirm_twice(processor, users):
    created = await processor.submit(_new(users[0].id))
    await processor.submit(_on(users[1].id, created.obstacle_id, ReportType.CONFIRM))
    with pytest.raises(InvalidInput):
        await processor.submit(_on(users[1].id, created.obstacle_id, ReportType.CONFIRM))


@pytest.mark.asyncio
async def test_disputes_hide_obstacle(processor, storage, users):
    created = await processor.submit(_new(users[0].id))
    oid = created.obstacle_id

    first = await processor.submit(_on(users[1].id, oid, ReportType.DISPUTE))
    assert first.status is ObstacleStatus.ACTIVE
    second = await processor.submit(_on(users[2].id, oid, ReportType.DISPUTE))
    third = await processor.submit(_on(users[3].id, oid, ReportType.DISPUTE))

    # The creator loses trust with each dispute: 47, then 50 - 20 + 6, then 50 - 30 + 6.
    assert first.confidence_score == 47
    assert second.confidence_score == 36
    assert second.status is ObstacleStatus.ACTIVE
    assert third.confidence_score == 26
    assert third.status is ObstacleStatus.DISPUTED
    obstacle = await storage.get_obstacle(oid)
    assert obstacle.status is ObstacleStatus.DISPUTED
    history = await storage.get_history(oid)
    assert [h.action for h in history] == ["auto_disputed"]
    assert (await storage.get_user(users[0].id)).reports_disputed == 3


@pytest.mark.asyncio
async def test_two_fixed_reports_retire_obstacle(processor, storage, users):
    created = await processor.submit(_new(users[0].id))
    oid = created.obstacle_id

    one = await processor.submit(_on(users[1].id, oid, ReportType.FIXED))
    assert one.status is ObstacleStatus.ACTIVE
    # The same user again does not count as a second voice.
    again = await processor.submit(_on(users[1].id, oid, ReportType.FIXED))
    assert again.status is ObstacleStatus.ACTIVE
    two = await processor.submit(_on(users[2].id, oid, ReportType.FIXED))
    assert two.status is ObstacleStatus.FIXED
    assert (await storage.get_obstacle(oid)).status is ObstacleStatus.FIXED


@pytest.mark.asyncio
async def test_accepted_report_invalidates_cached_clusters(processor, clusters, users):
    assert await clusters.get_clusters(VIEW, 14) == []
    await processor.submit(_new(users[0].id))
    result = await clusters.get_clusters(VIEW, 14)
    assert sum(c.count for c in result) == 1


@pytest.mark.asyncio
async def test_unknown_user_and_obstacle(processor, users, stats):
    with pytest.raises(NotFound):
        await processor.submit(_new("ghost"))
    with pytest.raises(NotFound):
        await processor.submit(_on(users[0].id, "missing", ReportType.CONFIRM))
    assert stats.snapshot()["reports_rejected"] == 2


def test_submission_validation():
    with pytest.raises(InvalidInput):
        ReportSubmission(user_id="u", report_type=ReportType.NEW, lat=LAT, lng=LNG)
    with pytest.raises(InvalidInput):
        _new("u", lat=95.0)
    with pytest.raises(InvalidInput):
        ReportSubmission(user_id="u", report_type=ReportType.CONFIRM)
    with pytest.raises(InvalidInput):
        _new("u", photos=("a", "b", "c", "d"))
    with pytest.raises(InvalidInput):
        _new("u", reported_confidence=1.5)


@pytest.mark.asyncio
async def test_owner_can_edit_report(processor, storage, users, clock):
    created = await processor.submit(_new(users[0].id))
    clock.advance(days=1)

    updated = await processor.edit_report(created.report_id, users[0].id,
                                          description="deep", photos=("https://img/1.jpg",))
    assert updated.description == "deep"
    assert updated.photos == ("https://img/1.jpg",)
    # Photo evidence adds 10.
    assert (await storage.get_obstacle(created.obstacle_id)).confidence_score == 67

    with pytest.raises(PermissionDenied):
        await processor.edit_report(created.report_id, users[1].id, description="mine now")
    with pytest.raises(NotFound):
        await processor.edit_report("missing", users[0].id, description="x")


@pytest.mark.asyncio
async def test_rapid_clustered_reporter_gets_blocked(processor, users, clock):
    types = list(ObstacleType)
    # Ten reports ~11 m apart; same-type neighbors are ~55 m apart so none merge.
    for i in range(10):
        outcome = await processor.submit(_new(users[0].id, lat=LAT + i * 0.0001,
                                              obstacle_type=types[i % 5]))
        assert outcome.accepted
        clock.advance(seconds=2)

    outcome = await processor.submit(_new(users[0].id, lat=LAT + 0.00045,
                                          obstacle_type=types[2]))
    assert not outcome.accepted
    assert outcome.spam_flags["is_rapid"]
    assert outcome.spam_flags["is_clustering"]
    assert not outcome.spam_flags["is_duplicate"]


@pytest.mark.asyncio
async def test_new_report_naming_obstacle_is_spam_gated(processor, storage, users, stats, clock):
    created = await processor.submit(_new(users[0].id))
    again = ReportSubmission(user_id=users[0].id, report_type=ReportType.NEW,
                             obstacle_id=created.obstacle_id)

    outcome = await processor.submit(again)
    assert not outcome.accepted
    assert outcome.spam_flags["is_duplicate"]
    assert stats.snapshot()["spam_rejections"] == 1

    clock.advance(minutes=31)
    outcome = await processor.submit(again)
    assert outcome.accepted
    assert outcome.obstacle_id == created.obstacle_id
    # Two "new" reports from one user still vouch once.
    assert len(await storage.reporter_trust_scores(created.obstacle_id)) == 1


@pytest.mark.asyncio
async def test_removing_photos_lowers_confidence(processor, storage, users):
    created = await processor.submit(_new(users[0].id, photos=("https://img/1.jpg",)))
    assert (await storage.get_obstacle(created.obstacle_id)).confidence_score == 67

    await processor.edit_report(created.report_id, users[0].id, photos=())
    assert (await storage.get_obstacle(created.obstacle_id)).confidence_score == 57
