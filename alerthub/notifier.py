"""
alerthub/notifier.py
Push dispatch: group admitted alerts, build the provider payload, send through an adapter.
- Grouping key is the same dispatch key the throttle uses (team-gameId / team-news)
- A multi-event group sends only its highest-priority alert, with "(+N more)" appended
- Sends are sequential, paced by send_delay_ms
- OneSignal adapter when credentials are present, otherwise stdout (log) fallback
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from alerthub import models
from alerthub.models import AlertEvent

logger = logging.getLogger(__name__)

ONESIGNAL_URL = "https://onesignal.com/api/v1/notifications"


# ------------------------------------------------------------
# payload helpers
# ------------------------------------------------------------

def category_tag(event_type: str) -> str:
    if event_type in models.SCORE_FAMILY:
        return "alert_scores"
    if event_type == models.INJURY:
        return "alert_injuries"
    if event_type in (models.TRADE, models.ROSTER_MOVE):
        return "alert_trades"
    return "alert_breaking"


def channel_for(event_type: str) -> str:
    return "game" if event_type in models.SCORE_FAMILY else "news"


def build_filters(event: AlertEvent) -> List[Dict[str, str]]:
    """notifications_enabled AND follows_<team> (skipped for city-wide) AND alert category"""
    filters: List[Dict[str, str]] = [
        {"field": "tag", "key": "notifications_enabled", "relation": "=", "value": "true"},
    ]
    if event.team and event.team != models.CHICAGO:
        filters.append({"operator": "AND"})
        filters.append({"field": "tag", "key": f"follows_{event.team}", "relation": "=", "value": "true"})
    filters.append({"operator": "AND"})
    filters.append({"field": "tag", "key": category_tag(event.type), "relation": "=", "value": "true"})
    return filters


def build_payload(event: AlertEvent, app_id: str, cfg: Dict[str, Any]) -> Dict[str, Any]:
    data: Dict[str, Any] = {"type": event.type, "team": event.team}
    if event.game_id:
        data["gameId"] = event.game_id
    data.update(event.data)

    channels = cfg.get("android_channels") or {}
    channel = channel_for(event.type)
    return {
        "app_id": app_id,
        "filters": build_filters(event),
        "headings": {"en": event.title},
        "contents": {"en": event.body},
        "data": data,
        "ios_sound": cfg.get("ios_sound", "default"),
        "ios_badgeType": "Increase",
        "ios_badgeCount": 1,
        "android_channel_id": channels.get(channel, channel),
        "android_accent_color": cfg.get("accent_color", "FFC83803"),
        "priority": 10 if event.priority == "high" else 5,
        "ttl": int(cfg.get("ttl_sec", 3600)),
    }


def group_events(events: List[AlertEvent]) -> Dict[str, List[AlertEvent]]:
    """Preserves first-seen order of keys and of events within a key."""
    groups: Dict[str, List[AlertEvent]] = {}
    for ev in events:
        groups.setdefault(ev.dispatch_key, []).append(ev)
    return groups


def collapse_group(group: List[AlertEvent]) -> AlertEvent:
    """Highest priority wins (earliest on ties); the rest are counted in the body."""
    if len(group) == 1:
        return group[0]
    best = min(group, key=lambda ev: models.PRIORITY_RANK.get(ev.priority, len(models.PRIORITY_RANK)))
    return dataclasses.replace(best, body=f"{best.body} (+{len(group) - 1} more)")


# ------------------------------------------------------------
# channel adapters
# ------------------------------------------------------------

@dataclass
class SendResult:
    ok: bool
    error: Optional[str] = None


class _OneSignalAdapter:
    def __init__(self, app_id: str, api_key: str, cfg: Dict[str, Any],
                 client: Optional[httpx.AsyncClient] = None):
        self._app_id = app_id
        self._api_key = api_key
        self._cfg = cfg
        self._retry = cfg.get("retry") or {}
        self._auth_scheme = cfg.get("auth_scheme", "Basic")
        self._client = client
        self._owns_client = client is None

    def _client_get(self) -> httpx.AsyncClient:
        if self._client is None:
            timeout = httpx.Timeout(connect=5.0, read=10.0, write=10.0, pool=30.0)
            self._client = httpx.AsyncClient(timeout=timeout, trust_env=True)
        return self._client

    async def send(self, event: AlertEvent) -> SendResult:
        """
        One POST per notification. 429/5xx are retried up to retry.max_times total attempts;
        anything else is final. A JSON body with a non-empty "errors" field is a failure.
        """
        payload = build_payload(event, self._app_id, self._cfg)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"{self._auth_scheme} {self._api_key}",
        }
        max_times = max(int(self._retry.get("max_times", 1)), 1)
        backoff = float(self._retry.get("backoff_sec", 2))

        last_err = None
        for attempt in range(1, max_times + 1):
            try:
                r = await self._client_get().post(ONESIGNAL_URL, json=payload, headers=headers)
            except httpx.HTTPError as e:
                last_err = repr(e)
            else:
                try:
                    body = r.json()
                except ValueError:
                    body = None
                errors = body.get("errors") if isinstance(body, dict) else None

                if r.is_success and not errors:
                    return SendResult(ok=True)
                if r.is_success:
                    return SendResult(ok=False, error=f"provider errors: {errors!r}"[:300])

                last_err = f"http {r.status_code}: {(r.text or '')[:300]}"
                if not (r.status_code == 429 or 500 <= r.status_code < 600):
                    break

            if attempt < max_times:
                sleep_sec = min(backoff * (2 ** (attempt - 1)), 30) + random.uniform(0, 0.6)
                await asyncio.sleep(sleep_sec)

        return SendResult(ok=False, error=last_err)

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class _StdoutAdapter:
    async def send(self, event: AlertEvent) -> SendResult:
        logger.info("[notifier] (stdout) %s | %s | %s", event.type, event.title, event.body)
        return SendResult(ok=True)

    async def close(self):
        return


# ------------------------------------------------------------
# dispatcher
# ------------------------------------------------------------

@dataclass
class DispatchOutcome:
    notification: AlertEvent
    events: List[AlertEvent] = field(default_factory=list)
    result: SendResult = field(default_factory=lambda: SendResult(ok=False))


class NotificationDispatcher:
    def __init__(self, cfg: Optional[dict] = None, adapter: Any = None,
                 client: Optional[httpx.AsyncClient] = None):
        raw = cfg or {}
        # accept the whole config or just the notifier section
        self._cfg = raw["notifier"] if "notifier" in raw else raw
        self._send_delay = float(self._cfg.get("send_delay_ms", 100)) / 1000.0

        if adapter is not None:
            self._adapter = adapter
            self._channel = "custom"
            return

        app_id = self._cfg.get("app_id") or os.environ.get("ONESIGNAL_APP_ID", "").strip()
        api_key = self._cfg.get("api_key") or os.environ.get("ONESIGNAL_REST_API_KEY", "").strip()
        channels = self._cfg.get("notify_channels") or []
        if "onesignal" in channels and app_id and api_key:
            self._adapter = _OneSignalAdapter(app_id, api_key, self._cfg, client=client)
            self._channel = "onesignal"
        else:
            self._adapter = _StdoutAdapter()
            self._channel = "stdout"
            if "onesignal" in channels:
                logger.warning("[notifier] ONESIGNAL_APP_ID/REST_API_KEY missing, falling back to stdout")

    @property
    def channel(self) -> str:
        return self._channel

    async def send(self, events: List[AlertEvent]) -> List[DispatchOutcome]:
        """One notification per dispatch key; a failed send is logged and the batch continues."""
        outcomes: List[DispatchOutcome] = []
        for i, (key, group) in enumerate(group_events(events).items()):
            if i > 0 and self._send_delay > 0:
                await asyncio.sleep(self._send_delay)

            notification = collapse_group(group)
            try:
                result = await self._adapter.send(notification)
            except Exception as e:
                logger.exception("[notifier] %s adapter raised", key)
                result = SendResult(ok=False, error=repr(e))

            if not result.ok:
                logger.warning("[notifier] %s send failed: %s", key, result.error)
            outcomes.append(DispatchOutcome(notification=notification, events=group, result=result))
        return outcomes

    async def close(self):
        await self._adapter.close()
