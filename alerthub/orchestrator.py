"""
alerthub/orchestrator.py
One cycle = discovery -> throttle -> dispatch -> record -> purge.
The history database is a sink only: its failures are logged and never stop delivery.

The orchestrator owns every piece of pipeline state (game states, seen links, rate counters),
so a fresh Orchestrator starts from empty state. It does not schedule itself: an external
trigger calls run_cycle() and may ask recommended_poll_interval() when to call again.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import aiosqlite
import httpx

from alerthub.classifier import EventClassifier
from alerthub.collector import DiscoveryCycle, Sources, load_sources, make_client
from alerthub.models import AlertEvent, CycleResult
from alerthub.notifier import DispatchOutcome, NotificationDispatcher
from alerthub.state import GameStateStore, SeenItemStore
from alerthub.storage import delete_expired, insert_alert
from alerthub.throttle import SpamFilter
from alerthub.utils import in_time_range, load_cfg, merge_cfg, now_ms

logger = logging.getLogger(__name__)


def is_game_window(now: datetime, cfg: Optional[Dict[str, Any]] = None) -> bool:
    """now must already be in the display timezone."""
    cfg = cfg or {}
    if "polling" in cfg:
        cfg = cfg["polling"]
    minute = now.hour * 60 + now.minute
    if now.weekday() >= 5:
        return in_time_range(cfg.get("weekend_window", "11:00-23:00"), minute)
    return in_time_range(cfg.get("weekday_window", "18:00-23:00"), minute)


def recommended_poll_interval(now: Optional[datetime] = None, cfg: Optional[Dict[str, Any]] = None) -> int:
    """
    Seconds until the next cycle should run: short inside a game window, long otherwise.
    Naive datetimes are taken as already local; aware ones are converted to display_timezone.
    """
    cfg = cfg or {}
    if "polling" in cfg:
        cfg = cfg["polling"]
    tz = ZoneInfo(cfg.get("display_timezone", "America/Chicago"))
    if now is None:
        now = datetime.now(tz)
    elif now.tzinfo is not None:
        now = now.astimezone(tz)
    if is_game_window(now, cfg):
        return int(cfg.get("live_interval_sec", 30))
    return int(cfg.get("idle_interval_sec", 300))


class Orchestrator:
    def __init__(
        self,
        cfg: Optional[Dict[str, Any]] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        sources: Optional[Sources] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        spam_filter: Optional[SpamFilter] = None,
        db: Optional[aiosqlite.Connection] = None,
        clock: Callable[[], int] = now_ms,
    ):
        # partial configs are filled in from DEFAULT_CFG section by section
        self.cfg = merge_cfg(cfg) if cfg is not None else load_cfg()
        self._clock = clock
        self._owns_client = client is None
        self._client = client or make_client(self.cfg)

        self.game_states = GameStateStore()
        self.seen_items = SeenItemStore(max_items=self.cfg.get("state", {}).get("max_seen_items"))
        self.classifier = EventClassifier(self.game_states, self.seen_items, clock=clock)
        self.discovery = DiscoveryCycle(self._client, self.classifier, sources or load_sources())
        self.spam_filter = spam_filter or SpamFilter.from_cfg(self.cfg, clock=clock)
        self.dispatcher = dispatcher or NotificationDispatcher(self.cfg)
        self._db = db
        self._retention_hours = float(self.cfg.get("storage", {}).get("retention_hours", 48))

        # Idle / Running gate; check-and-set has no await in between
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_cycle(self) -> CycleResult:
        if self._running:
            logger.info("[orchestrator] cycle already running, skipping")
            return CycleResult(timestamp=self._clock())

        self._running = True
        result = CycleResult(timestamp=self._clock())
        try:
            discovered = await self.discovery.run()
            result.discovered = len(discovered.events)

            admitted: List[AlertEvent] = []
            for ev in discovered.events:
                if self.spam_filter.admit(ev):
                    admitted.append(ev)
                else:
                    result.filtered += 1

            if admitted:
                outcomes = await self.dispatcher.send(admitted)
                # counters move only for confirmed sends
                for outcome in outcomes:
                    if not outcome.result.ok:
                        continue
                    result.sent += 1
                    for ev in outcome.events:
                        self.spam_filter.record_sent(ev)

                for outcome in outcomes:
                    await self._record(outcome)

            await self._purge_history()
        except Exception:
            logger.exception("[orchestrator] cycle failed")
        finally:
            self._running = False

        logger.info(
            "[orchestrator] cycle done discovered=%d sent=%d filtered=%d",
            result.discovered, result.sent, result.filtered,
        )
        return result

    async def _record(self, outcome: DispatchOutcome) -> None:
        if self._db is None:
            return
        try:
            await insert_alert(
                self._db, outcome.notification,
                pushed=outcome.result.ok, error=outcome.result.error,
                retention_hours=self._retention_hours,
            )
        except (aiosqlite.Error, OSError) as e:
            logger.warning("[orchestrator] history write failed for %s: %r", outcome.notification.dispatch_key, e)

    async def _purge_history(self) -> None:
        if self._db is None:
            return
        try:
            await delete_expired(self._db, self._clock())
        except (aiosqlite.Error, OSError) as e:
            logger.warning("[orchestrator] history purge failed: %r", e)

    async def close(self) -> None:
        await self.dispatcher.close()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "Orchestrator":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
