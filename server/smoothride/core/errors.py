"""SmoothRide error taxonomy.

Every public operation either returns a value or raises one of these.
The HTTP adapter maps them to status codes; nothing else should leak.
"""

from __future__ import annotations


class SmoothRideError(Exception):
    """Base class for all engine errors."""


class InvalidInput(SmoothRideError, ValueError):
    """Malformed input (bad hash, coordinates, payload). Never retried."""


class NotFound(SmoothRideError, LookupError):
    """An obstacle, report or user id does not exist. Never retried."""


class DependencyUnavailable(SmoothRideError):
    """Storage, cache or road network is down or timed out."""


class PermissionDenied(SmoothRideError):
    """The caller may not modify this resource (e.g. someone else's report)."""
