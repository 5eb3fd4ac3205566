"""
throttle.py
Anti-spam policy keyed by dispatch key (team-gameId / team-news).

admit() checks, in order, rejecting on the first failure:
  1. per-key cap for the current window
  2. minimum gap since the key's last send
  3. global cap summed over all keys for the current window
record_sent() is called by the orchestrator after a confirmed send.

Counts reset every reset_interval from construction time, not on clock-hour boundaries.
last_sent_at survives resets.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from alerthub.models import AlertEvent, RateCounter
from alerthub.utils import now_ms

logger = logging.getLogger(__name__)


class SpamFilter:
    def __init__(
        self,
        max_alerts_per_game: int = 15,
        max_alerts_per_hour: int = 10,
        min_alert_gap_sec: float = 60,
        reset_interval_sec: float = 3600,
        clock: Callable[[], int] = now_ms,
    ):
        self.max_alerts_per_game = int(max_alerts_per_game)
        self.max_alerts_per_hour = int(max_alerts_per_hour)
        self.min_gap_ms = int(min_alert_gap_sec * 1000)
        self.reset_interval_ms = int(reset_interval_sec * 1000)
        self._clock = clock
        self._counters: Dict[str, RateCounter] = {}
        self._window_start = clock()

    @classmethod
    def from_cfg(cls, cfg: Optional[Dict[str, Any]], clock: Callable[[], int] = now_ms) -> "SpamFilter":
        """cfg: the 'throttle' section (or the whole config)."""
        cfg = cfg or {}
        if "throttle" in cfg:
            cfg = cfg["throttle"]
        return cls(
            max_alerts_per_game=cfg.get("max_alerts_per_game", 15),
            max_alerts_per_hour=cfg.get("max_alerts_per_hour", 10),
            min_alert_gap_sec=cfg.get("min_alert_gap_sec", 60),
            reset_interval_sec=cfg.get("reset_interval_sec", 3600),
            clock=clock,
        )

    def admit(self, event: AlertEvent) -> bool:
        now = self._clock()
        self._maybe_reset(now)
        key = event.dispatch_key
        counter = self._counters.get(key)

        if counter is not None:
            if counter.count >= self.max_alerts_per_game:
                logger.debug("[throttle] %s rejected: per-key cap %d", key, self.max_alerts_per_game)
                return False
            if counter.last_sent_at is not None and now - counter.last_sent_at < self.min_gap_ms:
                logger.debug("[throttle] %s rejected: last send %dms ago", key, now - counter.last_sent_at)
                return False

        if self.total_this_window() >= self.max_alerts_per_hour:
            logger.debug("[throttle] %s rejected: global cap %d", key, self.max_alerts_per_hour)
            return False
        return True

    def record_sent(self, event: AlertEvent) -> None:
        now = self._clock()
        self._maybe_reset(now)
        counter = self._counters.setdefault(event.dispatch_key, RateCounter())
        counter.count += 1
        counter.last_sent_at = now

    def total_this_window(self) -> int:
        return sum(c.count for c in self._counters.values())

    def counter(self, key: str) -> Optional[RateCounter]:
        return self._counters.get(key)

    def _maybe_reset(self, now: int) -> None:
        if self.reset_interval_ms <= 0 or now - self._window_start < self.reset_interval_ms:
            return
        # keep the cadence anchored at construction even if several windows passed
        elapsed = (now - self._window_start) // self.reset_interval_ms
        self._window_start += elapsed * self.reset_interval_ms
        for c in self._counters.values():
            c.count = 0
        logger.debug("[throttle] hourly counts reset")
