#!/usr/bin/env python3
"""SmoothRide report traffic simulator.

Drives honest reporters around a city and, optionally, a few spammers that
hammer one block. Useful for watching confidence, trust and spam gating work
against a running server.

Usage:
    # 5 honest drivers around Montreal for 10 minutes
    python -m tools.simulator.simulate --server http://localhost:8000 --drivers 5 --duration 600

    # Add 2 spammers reporting every 3 seconds
    python -m tools.simulator.simulate --drivers 5 --spammers 2 --spam-interval 3

    # Another city
    python -m tools.simulator.simulate --center 48.8566,2.3522
"""

from __future__ import annotations

import argparse
import asyncio
import math
import random
import time
import uuid
from dataclasses import dataclass, field

import httpx

OBSTACLE_TYPES = ["pothole", "speedbump", "construction", "debris", "other"]


@dataclass
class SimDriver:
    user_id: str
    lat: float
    lng: float
    bearing: float
    speed_mps: float
    spammer: bool = False
    accepted: int = 0
    rejected: int = 0
    errors: int = 0


@dataclass
class SharedMap:
    """Obstacles every driver has seen accepted, so others can confirm them."""
    obstacles: dict[str, tuple[float, float]] = field(default_factory=dict)

    def nearby(self, lat: float, lng: float, radius_m: float) -> list[str]:
        return [oid for oid, (olat, olng) in self.obstacles.items()
                if approx_distance_m(lat, lng, olat, olng) <= radius_m]


def approx_distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    dlat = (lat2 - lat1) * 111_000
    dlng = (lng2 - lng1) * 111_000 * math.cos(math.radians(lat1))
    return math.hypot(dlat, dlng)


def move_driver(driver: SimDriver, dt_seconds: float) -> None:
    """Move a driver along its current bearing, with random turns."""
    driver.bearing = (driver.bearing + random.uniform(-15, 15)) % 360

    # City driving: 3-20 m/s
    driver.speed_mps = max(3.0, min(20.0, driver.speed_mps + random.uniform(-1, 1)))

    distance_m = driver.speed_mps * dt_seconds
    bearing_rad = math.radians(driver.bearing)

    # Approximate: 1 degree latitude ~ 111,000 m
    driver.lat += (distance_m * math.cos(bearing_rad)) / 111_000
    driver.lng += (distance_m * math.sin(bearing_rad)) / (111_000 * math.cos(math.radians(driver.lat)))


def make_report(driver: SimDriver, known: SharedMap) -> dict:
    """Pick a confirm for a nearby known obstacle, otherwise a new report."""
    nearby = known.nearby(driver.lat, driver.lng, 200.0)
    if nearby and not driver.spammer and random.random() < 0.5:
        return {
            "user_id": driver.user_id,
            "report_type": random.choices(["confirm", "dispute"], weights=[85, 15])[0],
            "obstacle_id": random.choice(nearby),
        }

    if driver.spammer:
        # Tight scatter around the same block.
        lat = driver.lat + random.uniform(-0.0003, 0.0003)
        lng = driver.lng + random.uniform(-0.0003, 0.0003)
    else:
        lat, lng = driver.lat, driver.lng
    return {
        "user_id": driver.user_id,
        "report_type": "new",
        "lat": round(lat, 6),
        "lng": round(lng, 6),
        "type": random.choices(OBSTACLE_TYPES, weights=[60, 15, 10, 10, 5])[0],
        "severity": random.choices(["low", "medium", "high"], weights=[50, 35, 15])[0],
    }


async def register(client: httpx.AsyncClient, server_url: str, driver: SimDriver) -> None:
    resp = await client.post(f"{server_url}/api/v1/users", json={"id": driver.user_id})
    resp.raise_for_status()


async def run_driver(
    client: httpx.AsyncClient,
    driver: SimDriver,
    known: SharedMap,
    server_url: str,
    interval: float,
    duration_seconds: float,
) -> None:
    """Simulate a single driver sending reports."""
    end_time = time.monotonic() + duration_seconds

    while time.monotonic() < end_time:
        if not driver.spammer:
            move_driver(driver, interval)

        payload = make_report(driver, known)
        try:
            resp = await client.post(f"{server_url}/api/v1/reports", json=payload)
            if resp.status_code == 200:
                driver.accepted += 1
                body = resp.json()
                if payload["report_type"] == "new":
                    known.obstacles[body["obstacle_id"]] = (payload["lat"], payload["lng"])
            elif resp.status_code == 422:
                driver.rejected += 1
            else:
                driver.errors += 1
        except httpx.RequestError:
            driver.errors += 1

        await asyncio.sleep(interval)


def _scatter(center_lat: float, center_lng: float, radius_km: float) -> tuple[float, float]:
    angle = random.uniform(0, 2 * math.pi)
    dist_km = random.uniform(0, radius_km)
    lat = center_lat + (dist_km / 111.0) * math.cos(angle)
    lng = center_lng + (dist_km / (111.0 * math.cos(math.radians(center_lat)))) * math.sin(angle)
    return lat, lng


async def run_simulation(args: argparse.Namespace) -> None:
    """Run the full simulation."""
    center_lat, center_lng = args.center
    drivers = []
    for i in range(args.drivers + args.spammers):
        lat, lng = _scatter(center_lat, center_lng, args.radius_km)
        drivers.append(SimDriver(
            user_id=str(uuid.uuid4()),
            lat=lat,
            lng=lng,
            bearing=random.uniform(0, 360),
            speed_mps=random.uniform(5, 15),
            spammer=i >= args.drivers,
        ))
    known = SharedMap()

    print(f"Starting simulation: {args.drivers} drivers, {args.spammers} spammers")
    print(f"  Center: {center_lat:.4f}, {center_lng:.4f}")
    print(f"  Radius: {args.radius_km} km")
    print(f"  Duration: {args.duration}s")
    print(f"  Server: {args.server}")
    print()

    start = time.monotonic()

    async with httpx.AsyncClient(timeout=10.0) as client:
        await asyncio.gather(*(register(client, args.server, d) for d in drivers))
        tasks = [
            run_driver(client, d, known, args.server,
                       args.spam_interval if d.spammer else 60.0 / args.reports_per_minute,
                       args.duration)
            for d in drivers
        ]
        await asyncio.gather(*tasks)

        elapsed = time.monotonic() - start
        honest = [d for d in drivers if not d.spammer]
        spammers = [d for d in drivers if d.spammer]

        print(f"\nSimulation complete in {elapsed:.1f}s")
        print(f"  Honest accepted/rejected: {sum(d.accepted for d in honest)}"
              f"/{sum(d.rejected for d in honest)}")
        print(f"  Spammer accepted/rejected: {sum(d.accepted for d in spammers)}"
              f"/{sum(d.rejected for d in spammers)}")
        print(f"  Errors: {sum(d.errors for d in drivers)}")
        print(f"  Obstacles created: {len(known.obstacles)}")

        try:
            resp = await client.get(f"{args.server}/api/v1/stats")
        except httpx.RequestError as e:
            print(f"\nCould not fetch server stats: {e}")
            return
        if resp.status_code == 200:
            stats = resp.json()
            print("\nServer stats:")
            print(f"  Reports received: {stats['reports_received']}")
            print(f"  Reports accepted: {stats['reports_accepted']}")
            print(f"  Spam rejections: {stats['spam_rejections']}")
            print(f"  Active reporters: {stats['active_reporters']['total']}")
            print(f"  Cluster cache hit ratio: {stats['cache']['hit_ratio']}")


def main():
    parser = argparse.ArgumentParser(description="SmoothRide report traffic simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--drivers", type=int, default=5, help="Number of honest drivers")
    parser.add_argument("--spammers", type=int, default=0, help="Number of spamming users")
    parser.add_argument("--duration", type=int, default=60, help="Simulation duration in seconds")
    parser.add_argument("--reports-per-minute", type=float, default=4,
                        help="Reports per minute per honest driver")
    parser.add_argument("--spam-interval", type=float, default=5.0,
                        help="Seconds between spammer reports")
    parser.add_argument("--center", type=str, default="45.5017,-73.5673",
                        help="Center lat,lng (default: Montreal)")
    parser.add_argument("--radius-km", type=float, default=5.0, help="Scatter radius in km")

    args = parser.parse_args()

    lat, lng = args.center.split(",")
    args.center = (float(lat), float(lng))

    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
