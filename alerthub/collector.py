from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx
import yaml

from alerthub.classifier import EventClassifier
from alerthub.models import AlertEvent, NewsItem
from alerthub.parsers.json_default import parse_scoreboard
from alerthub.parsers.rss_default import parse_rss
from alerthub.utils import OPS_DIR

logger = logging.getLogger(__name__)

# -------------------- source registries --------------------

SCOREBOARD_ENDPOINTS: Dict[str, str] = {
    "nfl": "https://site.api.espn.com/apis/site/v2/sports/football/nfl/scoreboard",
    "nba": "https://site.api.espn.com/apis/site/v2/sports/basketball/nba/scoreboard",
    "mlb": "https://site.api.espn.com/apis/site/v2/sports/baseball/mlb/scoreboard",
    "nhl": "https://site.api.espn.com/apis/site/v2/sports/hockey/nhl/scoreboard",
}

RSS_FEEDS: Dict[str, str] = {
    "espn_nfl": "https://www.espn.com/espn/rss/nfl/news",
    "espn_nba": "https://www.espn.com/espn/rss/nba/news",
    "espn_mlb": "https://www.espn.com/espn/rss/mlb/news",
    "espn_nhl": "https://www.espn.com/espn/rss/nhl/news",
    "bears": "https://www.chicagobears.com/news/rss",
    "cubs": "https://www.mlb.com/cubs/feeds/news/rss.xml",
    "whitesox": "https://www.mlb.com/whitesox/feeds/news/rss.xml",
}


class SourceError(Exception):
    """A scoreboard or feed could not be fetched this cycle."""

    def __init__(self, source_id: str, reason: str):
        super().__init__(f"{source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


@dataclass
class Sources:
    scoreboards: Dict[str, str] = field(default_factory=lambda: dict(SCOREBOARD_ENDPOINTS))
    feeds: Dict[str, str] = field(default_factory=lambda: dict(RSS_FEEDS))


def load_sources(path: Union[str, Path, None] = None) -> Sources:
    """
    Read ops/sources.yml:

        scoreboards:
          nfl: {url: https://..., enabled: true}
        feeds:
          - {id: bears, url: https://..., enabled: true}

    Missing file -> built-in registries. Entries with enabled: false are skipped.
    """
    p = Path(path) if path else OPS_DIR / "sources.yml"
    if not p.exists():
        logger.info("[collector] %s not found, using built-in sources", p)
        return Sources()

    with open(p, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    scoreboards: Dict[str, str] = {}
    for sport, entry in (data.get("scoreboards") or {}).items():
        if isinstance(entry, str):
            scoreboards[sport] = entry
        elif isinstance(entry, dict) and entry.get("enabled", True) and entry.get("url"):
            scoreboards[sport] = entry["url"]

    feeds: Dict[str, str] = {}
    for entry in data.get("feeds") or []:
        if not isinstance(entry, dict) or not entry.get("enabled", True):
            continue
        if entry.get("id") and entry.get("url"):
            feeds[entry["id"]] = entry["url"]

    return Sources(scoreboards=scoreboards, feeds=feeds)


def make_client(cfg: Optional[Dict[str, Any]] = None) -> httpx.AsyncClient:
    """One client per orchestrator; the timeout bounds every fetch in a cycle."""
    cfg = cfg or {}
    if "http" in cfg:
        cfg = cfg["http"]
    return httpx.AsyncClient(
        timeout=float(cfg.get("timeout_sec", 15.0)),
        headers={"User-Agent": cfg.get("user_agent", "alerthub/1.0")},
        follow_redirects=True,
    )


# -------------------- single-source fetchers --------------------

async def fetch_scoreboard(client: httpx.AsyncClient, sport: str, url: str) -> List[Dict[str, Any]]:
    """One GET per sport; returns provider-native event dicts."""
    try:
        resp = await client.get(url, headers={"Accept": "application/json", "Cache-Control": "no-store"})
    except httpx.HTTPError as e:
        raise SourceError(sport, repr(e)) from e
    if not resp.is_success:
        raise SourceError(sport, f"status={resp.status_code}")
    try:
        data = resp.json()
    except ValueError as e:
        raise SourceError(sport, f"invalid json: {e}") from e
    return parse_scoreboard(data)


async def fetch_feed(client: httpx.AsyncClient, source_id: str, url: str) -> List[NewsItem]:
    try:
        resp = await client.get(url)
    except httpx.HTTPError as e:
        raise SourceError(source_id, repr(e)) from e
    if not resp.is_success:
        raise SourceError(source_id, f"status={resp.status_code}")
    return parse_rss(resp.text, source_id)


# -------------------- one discovery pass --------------------

@dataclass
class DiscoveryResult:
    events: List[AlertEvent] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)


class DiscoveryCycle:
    """
    Fetch every scoreboard and feed concurrently, then classify sequentially.
    Classification is the only writer to the state stores, so it stays single-threaded.
    """

    def __init__(self, client: httpx.AsyncClient, classifier: EventClassifier, sources: Optional[Sources] = None):
        self._client = client
        self._classifier = classifier
        self.sources = sources or Sources()

    async def run(self) -> DiscoveryResult:
        result = DiscoveryResult()

        score_jobs = [fetch_scoreboard(self._client, s, u) for s, u in self.sources.scoreboards.items()]
        feed_jobs = [fetch_feed(self._client, s, u) for s, u in self.sources.feeds.items()]
        fetched = await asyncio.gather(*score_jobs, *feed_jobs, return_exceptions=True)

        n_scores = len(score_jobs)
        score_out = zip(self.sources.scoreboards, fetched[:n_scores])
        feed_out = zip(self.sources.feeds, fetched[n_scores:])

        for sport, payload in score_out:
            if self._failed(sport, payload, result):
                continue
            for raw in payload:
                alert = self._classifier.classify_game(raw, sport)
                if alert is not None:
                    result.events.append(alert)

        for source_id, payload in feed_out:
            if self._failed(source_id, payload, result):
                continue
            for item in payload:
                alert = self._classifier.classify_news(item, source_id)
                if alert is not None:
                    result.events.append(alert)

        logger.info(
            "[collector] discovered %d alerts (%d source failures)",
            len(result.events), len(result.failed_sources),
        )
        return result

    @staticmethod
    def _failed(source_id: str, payload: Any, result: DiscoveryResult) -> bool:
        if isinstance(payload, SourceError):
            logger.warning("[collector] %s skipped: %s", source_id, payload.reason[:300])
            result.failed_sources.append(source_id)
            return True
        if isinstance(payload, Exception):
            logger.error("[collector] %s skipped, unexpected error: %r", source_id, payload)
            result.failed_sources.append(source_id)
            return True
        if isinstance(payload, BaseException):
            raise payload
        return False
