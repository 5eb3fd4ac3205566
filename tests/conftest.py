# -*- coding: utf-8 -*-
"""Shared builders for the alerthub tests."""

from typing import Any, Dict, List, Optional

import pytest

from alerthub.models import AlertEvent, GameState
from alerthub.notifier import SendResult

T0 = 1_760_000_000_000  # arbitrary epoch ms, deliberately not on an hour boundary


class FakeClock:
    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class RecordingAdapter:
    """Collects what would have been pushed; results can be scripted per call."""

    def __init__(self, results: Optional[List[SendResult]] = None):
        self.sent: List[AlertEvent] = []
        self._results = list(results or [])
        self.closed = False

    async def send(self, event: AlertEvent) -> SendResult:
        self.sent.append(event)
        if self._results:
            return self._results.pop(0)
        return SendResult(ok=True)

    async def close(self):
        self.closed = True


def _competitor(side: str, name: str, abbr: str, score: Any) -> Dict[str, Any]:
    return {"homeAway": side, "team": {"displayName": name, "abbreviation": abbr}, "score": score}


def raw_game(
    game_id: str = "401",
    home=("Chicago Bears", "CHI"),
    away=("Green Bay Packers", "GB"),
    home_score: Any = "0",
    away_score: Any = "0",
    period: int = 1,
    clock: str = "15:00",
    state: str = "in",
) -> Dict[str, Any]:
    return {
        "id": game_id,
        "competitions": [{
            "competitors": [
                _competitor("home", home[0], home[1], home_score),
                _competitor("away", away[0], away[1], away_score),
            ],
            "status": {"period": period, "displayClock": clock, "type": {"state": state}},
        }],
    }


def game_state(**kw) -> GameState:
    base = dict(
        game_id="401", sport="nfl",
        home_team="Chicago Bears", away_team="Green Bay Packers",
        home_score=0, away_score=0, period=1, clock="15:00", status="in",
        chicago_team_id="bears", chicago_is_home=True, last_updated=T0,
    )
    base.update(kw)
    return GameState(**base)


def alert(type_: str = "SCORE_CHANGE", team: str = "bears", game_id: Optional[str] = "123",
          priority: str = "high", body: str = "body", title: str = "title", **kw) -> AlertEvent:
    return AlertEvent(
        type=type_, team=team, game_id=game_id, sport=kw.pop("sport", "nfl" if game_id else None),
        title=title, body=body, priority=priority, timestamp=kw.pop("timestamp", T0),
        data=kw.pop("data", {}),
    )


def rss_xml(items: List[Dict[str, str]], cdata: bool = True) -> str:
    def wrap(s: str) -> str:
        return f"<![CDATA[{s}]]>" if cdata else s

    body = "".join(
        "<item>"
        f"<title>{wrap(i.get('title', ''))}</title>"
        f"<link>{i.get('link', '')}</link>"
        f"<description>{wrap(i.get('description', ''))}</description>"
        "</item>"
        for i in items
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel><title>feed</title><link>https://example.com</link>'
        f"<description>test feed</description>{body}</channel></rss>"
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_raw_game():
    return raw_game


@pytest.fixture
def make_game_state():
    return game_state


@pytest.fixture
def make_alert():
    return alert


@pytest.fixture
def make_rss():
    return rss_xml


@pytest.fixture
def make_adapter():
    return RecordingAdapter
