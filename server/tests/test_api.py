"""Tests for the HTTP API endpoints."""

from __future__ import annotations

import pytest
import structlog

import smoothride.main as main_module
from smoothride.core.routing import BaseRoute

LAT, LNG = 45.5017, -73.5673
VIEWPORT = {"min_lat": 45.49, "max_lat": 45.51, "min_lng": -73.58, "max_lng": -73.55}


async def _register(client, user_id):
    resp = await client.post("/api/v1/users", json={"id": user_id})
    assert resp.status_code == 201
    return resp.json()


async def _report_new(client, user_id, lat=LAT, lng=LNG, **extra):
    payload = {"user_id": user_id, "report_type": "new", "lat": lat, "lng": lng,
               "type": "pothole", "severity": "high", **extra}
    return await client.post("/api/v1/reports", json=payload)


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["storage_backend"] == "memory"
    assert data["decay_running"] is False
    assert "uptime_seconds" in data


@pytest.mark.asyncio
async def test_stats_empty(client):
    resp = await client.get("/api/v1/stats")
    assert resp.status_code == 200
    data = resp.json()
    assert data["reports_received"] == 0
    assert data["active_reporters"]["total"] == 0


@pytest.mark.asyncio
async def test_config_endpoint(client):
    resp = await client.get("/api/v1/config")
    assert resp.status_code == 200
    data = resp.json()
    assert "pothole" in data["obstacle_types"]
    assert data["severities"] == ["low", "medium", "high"]
    assert data["max_photos_per_report"] == 3
    assert data["hide_below_confidence"] == 30


@pytest.mark.asyncio
async def test_register_user(client):
    data = await _register(client, "alice")
    assert data == {"id": "alice", "trust_score": 50, "created_at": data["created_at"]}

    again = await client.post("/api/v1/users", json={"id": "alice"})
    assert again.status_code == 422

    anonymous = await client.post("/api/v1/users")
    assert anonymous.status_code == 201
    assert anonymous.json()["id"]


@pytest.mark.asyncio
async def test_submit_new_report(client):
    await _register(client, "alice")
    resp = await _report_new(client, "alice", description="deep one")
    assert resp.status_code == 200
    data = resp.json()
    assert data["accepted"] is True
    assert data["confidence_score"] == 57
    assert data["status"] == "active"
    assert "spam" not in data

    stats = (await client.get("/api/v1/stats")).json()
    assert stats["reports_accepted"] == 1
    assert stats["reports_by_type"] == {"new": 1}


@pytest.mark.asyncio
async def test_submit_rejects_bad_input(client):
    await _register(client, "alice")

    bad_type = await client.post("/api/v1/reports",
                                 json={"user_id": "alice", "report_type": "maybe"})
    assert bad_type.status_code == 422
    assert "report_type" in bad_type.json()["error"]

    no_location = await client.post("/api/v1/reports", json={
        "user_id": "alice", "report_type": "new", "type": "pothole", "severity": "low"})
    assert no_location.status_code == 422

    too_many_photos = await _report_new(client, "alice", photos=["a", "b", "c", "d"])
    assert too_many_photos.status_code == 422

    not_json = await client.post("/api/v1/reports", content=b"{nope",
                                 headers={"content-type": "application/json"})
    assert not_json.status_code == 422


@pytest.mark.asyncio
async def test_unknown_user_and_obstacle_are_404(client):
    resp = await _report_new(client, "ghost")
    assert resp.status_code == 404

    await _register(client, "alice")
    confirm = await client.post("/api/v1/reports", json={
        "user_id": "alice", "report_type": "confirm", "obstacle_id": "missing"})
    assert confirm.status_code == 404

    detail = await client.get("/api/v1/obstacles/missing")
    assert detail.status_code == 404
    assert "error" in detail.json()


@pytest.mark.asyncio
async def test_duplicate_report_is_spam(client):
    await _register(client, "alice")
    assert (await _report_new(client, "alice")).status_code == 200

    resp = await _report_new(client, "alice", lat=LAT + 0.00002)
    assert resp.status_code == 422
    data = resp.json()
    assert data["accepted"] is False
    assert data["spam"]["is_duplicate"] is True

    spam = (await client.get("/api/v1/users/alice/spam-score")).json()
    assert spam["flag_reason"] == "spam_report"


@pytest.mark.asyncio
async def test_confirm_and_obstacle_detail(client):
    await _register(client, "alice")
    await _register(client, "bob")
    created = (await _report_new(client, "alice")).json()

    resp = await client.post("/api/v1/reports", json={
        "user_id": "bob", "report_type": "confirm", "obstacle_id": created["obstacle_id"]})
    assert resp.status_code == 200
    assert resp.json()["confidence_score"] == 63

    detail = (await client.get(f"/api/v1/obstacles/{created['obstacle_id']}")).json()
    assert detail["confirmations_count"] == 1
    assert detail["confidence_level"] == "high"
    assert detail["hidden"] is False
    assert detail["history"] == []

    trust = (await client.get("/api/v1/users/alice/trust-score")).json()
    assert trust["trust_score"] == 63
    assert trust["trust_level"] == "trusted"
    assert trust["statistics"]["reports_verified"] == 1
    assert trust["statistics"]["total_reports"] == 1
    assert trust["statistics"]["accuracy"] == 100.0


@pytest.mark.asyncio
async def test_clusters_geojson(client):
    await _register(client, "alice")
    await _register(client, "bob")
    await _report_new(client, "alice")
    await _report_new(client, "bob", lat=45.505, lng=-73.56, type="speedbump")

    resp = await client.get("/api/v1/clusters", params={**VIEWPORT, "zoom": 16})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/geo+json")
    data = resp.json()
    assert data["type"] == "FeatureCollection"
    assert sum(f["properties"]["count"] for f in data["features"]) == 2

    only_bumps = await client.get("/api/v1/clusters",
                                  params={**VIEWPORT, "zoom": 16, "types": "speedbump"})
    features = only_bumps.json()["features"]
    assert len(features) == 1
    assert features[0]["properties"]["types"] == ["speedbump"]

    bad = await client.get("/api/v1/clusters", params={**VIEWPORT, "types": "volcano"})
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_cluster_drill_down(client):
    await _register(client, "alice")
    created = (await _report_new(client, "alice")).json()

    detail = (await client.get(f"/api/v1/obstacles/{created['obstacle_id']}")).json()
    prefix = detail["geohash"][:5]

    resp = await client.get(f"/api/v1/clusters/{prefix}/obstacles")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 1
    assert data["obstacles"][0]["id"] == created["obstacle_id"]


@pytest.mark.asyncio
async def test_edit_report_owner_only(client):
    await _register(client, "alice")
    await _register(client, "bob")
    created = (await _report_new(client, "alice")).json()
    url = f"/api/v1/reports/{created['report_id']}"

    denied = await client.patch(url, json={"user_id": "bob", "description": "mine"})
    assert denied.status_code == 403

    ok = await client.patch(url, json={"user_id": "alice", "photos": ["https://img/1.jpg"]})
    assert ok.status_code == 200
    assert ok.json()["photos"] == ["https://img/1.jpg"]

    missing = await client.patch("/api/v1/reports/missing", json={"user_id": "alice"})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_flagged_lists_disputed_obstacles(client):
    for name in ("alice", "bob", "carol", "dave"):
        await _register(client, name)
    created = (await _report_new(client, "alice")).json()
    for name in ("bob", "carol", "dave"):
        await client.post("/api/v1/reports", json={
            "user_id": name, "report_type": "dispute", "obstacle_id": created["obstacle_id"]})

    resp = await client.get("/api/v1/admin/flagged", params={"kind": "disputed"})
    assert resp.status_code == 200
    items = resp.json()["items"]
    assert [i["id"] for i in items] == [created["obstacle_id"]]
    assert items[0]["status"] == "disputed"

    bad_kind = await client.get("/api/v1/admin/flagged", params={"kind": "everything"})
    assert bad_kind.status_code == 422


@pytest.mark.asyncio
async def test_admin_decay_run(client):
    await _register(client, "alice")
    await _report_new(client, "alice")

    resp = await client.post("/api/v1/admin/decay/run")
    assert resp.status_code == 200
    data = resp.json()
    assert data["started"] is True
    assert data["processed"] == 1
    assert data["errors"] == 0

    stats = (await client.get("/api/v1/stats")).json()
    assert stats["decay"]["runs"] == 1


@pytest.mark.asyncio
async def test_plan_route(client, road_network):
    road_network.routes_to_return = [
        BaseRoute(coordinates=((-73.60, 45.50), (-73.55, 45.50)),
                  distance_m=3900.0, duration_s=420.0),
    ]
    resp = await client.post("/api/v1/routes/plan", json={
        "origin": {"lat": 45.50, "lng": -73.60},
        "destination": {"lat": 45.50, "lng": -73.55},
        "vehicle": {"ground_clearance_inches": 7, "name": "Outback", "type": "suv"},
    })
    assert resp.status_code == 200
    data = resp.json()
    assert [r["type"] for r in data["routes"]] == ["smooth", "standard", "fastest"]
    assert all(r["detour_acceptable"] for r in data["routes"])
    assert data["vehicle"]["name"] == "Outback"


@pytest.mark.asyncio
async def test_plan_route_errors(client):
    no_routes = await client.post("/api/v1/routes/plan", json={
        "origin": {"lat": 45.50, "lng": -73.60},
        "destination": {"lat": 45.50, "lng": -73.55},
    })
    assert no_routes.status_code == 404

    bad_origin = await client.post("/api/v1/routes/plan", json={
        "origin": {"lat": 123, "lng": -73.60},
        "destination": {"lat": 45.50, "lng": -73.55},
    })
    assert bad_origin.status_code == 422


@pytest.mark.asyncio
async def test_lifespan_closes_log_file(tmp_path, monkeypatch):
    log_path = tmp_path / "server.log"
    monkeypatch.setenv("SMOOTH_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setenv("SMOOTH_DECAY_ENABLED", "false")
    monkeypatch.setenv("SMOOTH_LOGGING_FORMAT", "json")
    monkeypatch.setenv("SMOOTH_LOGGING_FILE", str(log_path))
    try:
        async with main_module.lifespan(main_module.app):
            handle = main_module._log_file
            assert not handle.closed
        assert handle.closed
        assert main_module._log_file is None
        assert "server_stopped" in log_path.read_text()
    finally:
        structlog.reset_defaults()


@pytest.mark.asyncio
async def test_obstacle_reports_listing(client):
    await _register(client, "alice")
    await _register(client, "bob")
    created = (await _report_new(client, "alice", description="deep one")).json()
    await client.post("/api/v1/reports", json={
        "user_id": "bob", "report_type": "confirm", "obstacle_id": created["obstacle_id"]})

    resp = await client.get(f"/api/v1/obstacles/{created['obstacle_id']}/reports")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 2
    by_type = {r["report_type"]: r for r in data["reports"]}
    assert by_type["new"]["user_id"] == "alice"
    assert by_type["new"]["description"] == "deep one"
    assert by_type["new"]["severity"] == "high"
    assert by_type["confirm"]["user_id"] == "bob"

    missing = await client.get("/api/v1/obstacles/missing/reports")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_update_obstacle(client):
    await _register(client, "alice")
    created = (await _report_new(client, "alice")).json()
    url = f"/api/v1/admin/obstacles/{created['obstacle_id']}"

    resp = await client.put(url, json={"verified": True, "severity": "low"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["municipal_confirmed"] is True
    assert data["severity"] == "low"
    # Municipal verification adds 15.
    assert data["confidence_score"] == 57 + 15

    detail = (await client.get(f"/api/v1/obstacles/{created['obstacle_id']}")).json()
    assert [h["action"] for h in detail["history"]] == ["admin_updated"]
    assert detail["history"][0]["new_value"] == {"severity": "low", "verified": True}

    assert (await client.put(url, json={})).status_code == 422
    assert (await client.put(url, json={"status": "gone"})).status_code == 422
    assert (await client.put(url, json={"verified": "yes"})).status_code == 422
    missing = await client.put("/api/v1/admin/obstacles/missing", json={"status": "fixed"})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_update_status_leaves_map(client):
    await _register(client, "alice")
    created = (await _report_new(client, "alice")).json()
    before = await client.get("/api/v1/clusters", params={**VIEWPORT, "zoom": 16})
    assert len(before.json()["features"]) == 1

    await client.put(f"/api/v1/admin/obstacles/{created['obstacle_id']}",
                     json={"status": "fixed"})
    after = await client.get("/api/v1/clusters", params={**VIEWPORT, "zoom": 16})
    assert after.json()["features"] == []


@pytest.mark.asyncio
async def test_admin_delete_obstacle(client):
    await _register(client, "alice")
    await _register(client, "bob")
    created = (await _report_new(client, "alice")).json()
    oid = created["obstacle_id"]
    await client.post("/api/v1/reports", json={
        "user_id": "bob", "report_type": "confirm", "obstacle_id": oid})

    resp = await client.delete(f"/api/v1/admin/obstacles/{oid}")
    assert resp.status_code == 200
    assert resp.json() == {"deleted": True, "id": oid, "reports_removed": 2}

    assert (await client.get(f"/api/v1/obstacles/{oid}")).status_code == 404
    assert (await client.delete(f"/api/v1/admin/obstacles/{oid}")).status_code == 404
    again = await client.post("/api/v1/reports", json={
        "user_id": "bob", "report_type": "dispute", "obstacle_id": oid})
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_admin_overview_stats(client):
    empty = (await client.get("/api/v1/admin/stats")).json()
    assert empty["obstacles"]["total"] == 0
    assert empty["obstacles"]["avg_confidence"] == 50
    assert empty["users"]["avg_trust"] == 50

    await _register(client, "alice")
    await _register(client, "bob")
    created = (await _report_new(client, "alice")).json()
    await client.post("/api/v1/reports", json={
        "user_id": "bob", "report_type": "confirm", "obstacle_id": created["obstacle_id"]})

    data = (await client.get("/api/v1/admin/stats")).json()
    assert data["obstacles"]["total"] == 1
    assert data["obstacles"]["active"] == 1
    assert data["obstacles"]["avg_confidence"] == 63
    assert data["users"] == {"total": 2, "flagged": 0, "avg_trust": 57}
    assert data["reports"]["total"] == 2
    assert data["reports"]["new"] == 1
    assert data["reports"]["confirm"] == 1


@pytest.mark.asyncio
async def test_admin_seasonal_patterns(client):
    await _register(client, "alice")
    await _report_new(client, "alice")
    await _report_new(client, "alice", lat=45.52, type="speedbump")

    resp = await client.get("/api/v1/admin/seasonal-patterns")
    assert resp.status_code == 200
    data = resp.json()
    assert data["months"] == 12
    assert set(data["patterns"]) == {"pothole", "speedbump"}
    assert data["patterns"]["pothole"][0]["count"] == 1

    bad = await client.get("/api/v1/admin/seasonal-patterns", params={"months": 0})
    assert bad.status_code == 422
