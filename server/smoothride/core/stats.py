"""Engine statistics and active-reporter tracking.

Tracks in-memory counters and a sliding window of recently active reporters.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass
class ReporterActivity:
    """Tracks a single reporter's recent activity."""
    last_seen: float          # time.monotonic() timestamp
    reports_sent: int = 0
    spam_rejections: int = 0


class EngineStats:
    """Thread-safe engine statistics with active-reporter tracking.

    A reporter is "active" if it submitted a report within
    ``active_window_seconds`` (default 120s).
    """

    def __init__(self, active_window_seconds: float = 120.0) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._active_window = active_window_seconds

        # Counters
        self.reports_received: int = 0
        self.reports_accepted: int = 0
        self.reports_rejected: int = 0
        self.spam_rejections: int = 0
        self.reports_by_type: dict[str, int] = {}
        self.cache_hits: int = 0
        self.cache_misses: int = 0
        self.cache_errors: int = 0
        self.decay_runs: int = 0
        self.decay_failures: int = 0
        self.last_decay: dict | None = None

        # Reporter tracking: user_id → ReporterActivity
        self._reporters: dict[str, ReporterActivity] = {}

    def _touch(self, user_id: str, now: float) -> ReporterActivity:
        """Caller holds lock."""
        activity = self._reporters.get(user_id)
        if activity is None:
            activity = self._reporters[user_id] = ReporterActivity(last_seen=now)
        activity.last_seen = now
        return activity

    def record_report(self, user_id: str, report_type: str) -> None:
        """Record that an accepted report was received from a user."""
        now = time.monotonic()
        with self._lock:
            self.reports_received += 1
            self.reports_accepted += 1
            self.reports_by_type[report_type] = self.reports_by_type.get(report_type, 0) + 1
            self._touch(user_id, now).reports_sent += 1

    def record_spam(self, user_id: str) -> None:
        now = time.monotonic()
        with self._lock:
            self.reports_received += 1
            self.reports_rejected += 1
            self.spam_rejections += 1
            self._touch(user_id, now).spam_rejections += 1

    def record_rejected(self, count: int = 1) -> None:
        with self._lock:
            self.reports_received += count
            self.reports_rejected += count

    def record_cache_hit(self) -> None:
        with self._lock:
            self.cache_hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self.cache_misses += 1

    def record_cache_error(self) -> None:
        with self._lock:
            self.cache_errors += 1

    def record_decay_run(self, result: dict) -> None:
        with self._lock:
            self.decay_runs += 1
            self.last_decay = dict(result, finished_at=time.time())

    def record_decay_failure(self) -> None:
        with self._lock:
            self.decay_failures += 1

    def _prune_stale_reporters(self, now: float) -> None:
        """Remove reporters not seen within the active window. Caller holds lock."""
        cutoff = now - self._active_window
        stale = [uid for uid, act in self._reporters.items() if act.last_seen < cutoff]
        for uid in stale:
            del self._reporters[uid]

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        now_mono = time.monotonic()
        with self._lock:
            self._prune_stale_reporters(now_mono)

            lookups = self.cache_hits + self.cache_misses
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "reports_received": self.reports_received,
                "reports_accepted": self.reports_accepted,
                "reports_rejected": self.reports_rejected,
                "spam_rejections": self.spam_rejections,
                "reports_by_type": dict(self.reports_by_type),
                "cache": {
                    "hits": self.cache_hits,
                    "misses": self.cache_misses,
                    "errors": self.cache_errors,
                    "hit_ratio": round(self.cache_hits / lookups, 3) if lookups else 0.0,
                },
                "decay": {
                    "runs": self.decay_runs,
                    "failures": self.decay_failures,
                    "last": dict(self.last_decay) if self.last_decay else None,
                },
                "active_reporters": {
                    "total": len(self._reporters),
                    "with_spam": sum(1 for a in self._reporters.values() if a.spam_rejections),
                    "window_seconds": self._active_window,
                },
            }
