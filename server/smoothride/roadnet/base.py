"""Road network interface (port) returning base routes between two points."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from smoothride.core.routing import BaseRoute


class RoadNetwork(Protocol):
    """Port: turn-by-turn engine returning candidate routes, best first."""

    async def routes(self, origin: tuple[float, float], destination: tuple[float, float],
                     alternatives: int = 3) -> list[BaseRoute]:
        """Routes from ``origin`` to ``destination`` ((lat, lng) pairs)."""
        ...
