"""OSRM HTTP implementation of RoadNetwork."""

from __future__ import annotations

import httpx
import structlog

from smoothride.core.errors import DependencyUnavailable, NotFound
from smoothride.core.models import validate_coordinates
from smoothride.core.routing import BaseRoute

log = structlog.get_logger()


class OsrmRoadNetwork:
    """Queries an OSRM ``/route/v1/driving`` endpoint for GeoJSON routes."""

    def __init__(self, base_url: str, *, timeout_seconds: float = 10.0,
                 client: httpx.AsyncClient | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def routes(self, origin: tuple[float, float], destination: tuple[float, float],
                     alternatives: int = 3) -> list[BaseRoute]:
        validate_coordinates(*origin)
        validate_coordinates(*destination)
        (olat, olng), (dlat, dlng) = origin, destination
        url = f"{self._base_url}/route/v1/driving/{olng},{olat};{dlng},{dlat}"
        params = {
            "overview": "full",
            "geometries": "geojson",
            "alternatives": str(alternatives) if alternatives > 1 else "false",
        }

        try:
            resp = await self._client.get(url, params=params)
        except httpx.HTTPError as e:
            log.warning("osrm_request_failed", url=url, error=str(e))
            raise DependencyUnavailable(f"road network unreachable: {e}") from e

        if resp.status_code >= 500:
            raise DependencyUnavailable(f"road network returned {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as e:
            raise DependencyUnavailable("road network returned invalid JSON") from e

        code = body.get("code")
        if code in ("NoRoute", "NoSegment"):
            raise NotFound("no route between origin and destination")
        if code != "Ok":
            raise DependencyUnavailable(f"road network error: {code} {body.get('message', '')}")

        routes = [
            BaseRoute(
                coordinates=tuple((c[0], c[1]) for c in r["geometry"]["coordinates"]),
                distance_m=float(r.get("distance", 0.0)),
                duration_s=float(r.get("duration", 0.0)),
            )
            for r in body.get("routes", [])[:max(alternatives, 1)]
        ]
        log.debug("osrm_routes_received", count=len(routes))
        return routes

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
