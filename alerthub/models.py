# -*- coding: utf-8 -*-
"""
models.py
Alert pipeline data models.
Timestamps are UTC milliseconds, matching utils.now_ms().
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# sport keys used in scoreboard registries and game keys
SPORTS = ("nfl", "nba", "mlb", "nhl", "mls", "wnba")

# game status: pre / in / post
STATUS_PRE = "pre"
STATUS_IN = "in"
STATUS_POST = "post"

# alert types
SCORE_CHANGE = "SCORE_CHANGE"
GAME_START = "GAME_START"
GAME_END = "GAME_END"
INJURY = "INJURY"
TRADE = "TRADE"
CLOSE_GAME = "CLOSE_GAME"
OVERTIME = "OVERTIME"
BREAKING_NEWS = "BREAKING_NEWS"
ROSTER_MOVE = "ROSTER_MOVE"

# game-driven types share the "game" channel and the alert_scores tag
SCORE_FAMILY = frozenset({SCORE_CHANGE, GAME_START, GAME_END, CLOSE_GAME, OVERTIME})

# higher rank sorts first when a batch picks its representative
PRIORITY_RANK = {"high": 0, "normal": 1, "low": 2}

# team bucket for city-wide news
CHICAGO = "chicago"


@dataclass
class GameState:
    # source-assigned id + sport key; stored under game_key()
    game_id: str
    sport: str

    home_team: str
    away_team: str
    home_score: int
    away_score: int

    # sport-specific meaning: quarter / period / half-inning
    period: int
    clock: str
    status: str

    # tracked franchise id (bears, cubs, ...), None if neither side is tracked
    chicago_team_id: Optional[str]
    chicago_is_home: bool = False

    last_updated: int = 0

    @property
    def key(self) -> str:
        return game_key(self.sport, self.game_id)


@dataclass(frozen=True)
class AlertEvent:
    type: str
    team: str
    title: str
    body: str
    priority: str
    timestamp: int
    game_id: Optional[str] = None
    sport: Optional[str] = None
    # deep-link payload for the client
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def dispatch_key(self) -> str:
        return dispatch_key(self.team, self.game_id)


@dataclass(frozen=True)
class NewsItem:
    title: str
    link: str
    description: str


@dataclass
class RateCounter:
    count: int = 0
    last_sent_at: Optional[int] = None


@dataclass
class CycleResult:
    discovered: int = 0
    sent: int = 0
    filtered: int = 0
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "discovered": self.discovered,
            "sent": self.sent,
            "filtered": self.filtered,
            "timestamp": self.timestamp,
        }


def game_key(sport: str, game_id: str) -> str:
    return f"{sport}-{game_id}"


def dispatch_key(team: str, game_id: Optional[str]) -> str:
    """Rate-limit / batching identity: team + game id, or team + 'news'."""
    return f"{team}-{game_id or 'news'}"
