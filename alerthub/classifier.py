"""
classifier.py
Diff newly observed game / article state against what was seen before and emit AlertEvents.

Score path: raw scoreboard event -> GameState -> compare with GameStateStore -> at most one alert.
News path: NewsItem -> SeenItemStore (at-most-once per link) -> relevance -> keyword class -> alert.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, List, Optional, Tuple

from alerthub import models
from alerthub.models import AlertEvent, GameState, NewsItem
from alerthub.parsers.json_default import parse_score, read_status, split_competitors
from alerthub.state import GameStateStore, SeenItemStore
from alerthub.utils import contains_any, now_ms, truncate

logger = logging.getLogger(__name__)

# ---------- tracked franchises ----------

# one franchise per sport, matched on team abbreviation
TRACKED_TEAMS: Dict[str, List[Dict[str, str]]] = {
    "nfl": [{"abbreviation": "CHI", "name": "Bears", "id": "bears"}],
    "nba": [{"abbreviation": "CHI", "name": "Bulls", "id": "bulls"}],
    "nhl": [{"abbreviation": "CHI", "name": "Blackhawks", "id": "blackhawks"}],
    # two Chicago franchises; they never meet in a game that matters here, first match wins
    "mlb": [
        {"abbreviation": "CHC", "name": "Cubs", "id": "cubs"},
        {"abbreviation": "CWS", "name": "White Sox", "id": "whitesox"},
    ],
}

# ---------- sport rules ----------

CLOSE_GAME_THRESHOLDS = {"nfl": 8, "nba": 10, "wnba": 10, "nhl": 1, "mlb": 2}
DEFAULT_CLOSE_THRESHOLD = 5

REGULATION_PERIODS = {"nfl": 4, "nba": 4, "wnba": 4, "nhl": 3, "mlb": 9}
DEFAULT_REGULATION_PERIODS = 4

PERIOD_NAMES = {
    "nfl": ["1st", "2nd", "3rd", "4th", "OT"],
    "nba": ["1st", "2nd", "3rd", "4th", "OT"],
    "wnba": ["1st", "2nd", "3rd", "4th", "OT"],
    "nhl": ["1st", "2nd", "3rd", "OT"],
}
DEFAULT_PERIOD_NAMES = ["Q1", "Q2", "Q3", "Q4"]

# ---------- news keywords (all lowercase, substring match) ----------

RELEVANCE_KEYWORDS = [
    "bears", "chicago bears", "bulls", "chicago bulls",
    "cubs", "chicago cubs", "white sox", "whitesox", "blackhawks",
    "chicago blackhawks", "soldier field", "wrigley", "united center",
]

# first match wins
NEWS_CLASSES: List[Tuple[str, str, List[str]]] = [
    (models.INJURY, "Injury Update",
     ["injury", "injured", "questionable", "doubtful", "out for", "surgery"]),
    (models.TRADE, "Transaction Alert",
     ["trade", "sign", "acquire", "deal", "contract"]),
    (models.BREAKING_NEWS, "Breaking News",
     ["breaking", "just in", "report:"]),
]

TEAM_KEYWORDS: List[Tuple[str, List[str]]] = [
    ("bears", ["bears"]),
    ("bulls", ["bulls"]),
    ("cubs", ["cubs"]),
    ("whitesox", ["white sox", "whitesox"]),
    ("blackhawks", ["blackhawks"]),
]

NEWS_BODY_LIMIT = 100


# ---------- sport helpers ----------

def find_tracked_team(home: Dict[str, Any], away: Dict[str, Any], sport: str) -> Optional[Tuple[Dict[str, str], bool]]:
    """(franchise, is_home) for the tracked side, or None."""
    home_abbr = (home.get("team") or {}).get("abbreviation")
    away_abbr = (away.get("team") or {}).get("abbreviation")
    for team in TRACKED_TEAMS.get(sport, []):
        if home_abbr == team["abbreviation"]:
            return team, True
        if away_abbr == team["abbreviation"]:
            return team, False
    return None


def regulation_periods(sport: str) -> int:
    return REGULATION_PERIODS.get(sport, DEFAULT_REGULATION_PERIODS)


def is_close_game(game: GameState) -> bool:
    """Only counts once regulation's final period is reached."""
    if game.period < regulation_periods(game.sport):
        return False
    diff = abs(game.home_score - game.away_score)
    return diff <= CLOSE_GAME_THRESHOLDS.get(game.sport, DEFAULT_CLOSE_THRESHOLD)


def score_verb(sport: str, points: int) -> str:
    if sport == "nfl":
        if points >= 6:
            return "TOUCHDOWN"
        if points == 3:
            return "FIELD GOAL"
        if points == 2:
            return "SAFETY"
        return "scores"
    if sport == "nhl":
        return "GOAL"
    return "scores"


def format_game_clock(game: GameState) -> str:
    if game.sport == "mlb":
        half = "Top" if game.period % 2 == 1 else "Bot"
        return f"{half} {math.ceil(game.period / 2)}"
    names = PERIOD_NAMES.get(game.sport, DEFAULT_PERIOD_NAMES)
    idx = game.period - 1
    name = names[idx] if 0 <= idx < len(names) else f"P{game.period}"
    return f"{name} {game.clock}"


def score_line(game: GameState) -> str:
    return f"{game.away_team} {game.away_score}, {game.home_team} {game.home_score} - {format_game_clock(game)}"


def did_chicago_win(game: GameState) -> bool:
    if game.chicago_is_home:
        return game.home_score > game.away_score
    return game.away_score > game.home_score


def detect_team(text: str) -> str:
    """text must already be lowercase"""
    for team_id, needles in TEAM_KEYWORDS:
        if contains_any(text, needles):
            return team_id
    return models.CHICAGO


# ---------- classifier ----------

class EventClassifier:
    """
    Owns no state of its own; mutates the two stores it is given.
    clock returns UTC milliseconds and stamps GameState.last_updated / AlertEvent.timestamp.
    """

    def __init__(
        self,
        game_states: GameStateStore,
        seen_items: SeenItemStore,
        clock: Callable[[], int] = now_ms,
    ):
        self.game_states = game_states
        self.seen_items = seen_items
        self._clock = clock

    # ----- score path -----

    def build_state(self, event: Dict[str, Any], sport: str) -> Optional[GameState]:
        """Raw scoreboard event -> GameState, or None if incomplete / not a tracked game."""
        parts = split_competitors(event)
        if parts is None:
            logger.debug("[classifier] %s event %s: incomplete competitors", sport, event.get("id"))
            return None
        competition, home, away = parts

        tracked = find_tracked_team(home, away, sport)
        if tracked is None:
            return None
        team, is_home = tracked

        game_id = event.get("id")
        if game_id in (None, ""):
            logger.debug("[classifier] %s event without id", sport)
            return None

        period, clock, status = read_status(competition)
        return GameState(
            game_id=str(game_id),
            sport=sport,
            home_team=str(home["team"].get("displayName") or ""),
            away_team=str(away["team"].get("displayName") or ""),
            home_score=parse_score(home.get("score")),
            away_score=parse_score(away.get("score")),
            period=period,
            clock=clock,
            status=status,
            chicago_team_id=team["id"],
            chicago_is_home=is_home,
            last_updated=self._clock(),
        )

    def classify_game(self, event: Dict[str, Any], sport: str) -> Optional[AlertEvent]:
        curr = self.build_state(event, sport)
        if curr is None:
            return None

        prev = self.game_states.get(curr.key)
        self.game_states.put(curr)

        if prev is None:
            if curr.status == models.STATUS_IN:
                return self._game_start(curr)
            return None
        return self.detect_change(prev, curr)

    def detect_change(self, prev: GameState, curr: GameState) -> Optional[AlertEvent]:
        """First matching transition wins; at most one alert per game per pass."""
        if prev.status != models.STATUS_POST and curr.status == models.STATUS_POST:
            return self._game_end(curr)
        if prev.status == models.STATUS_PRE and curr.status == models.STATUS_IN:
            return self._game_start(curr)
        if prev.home_score != curr.home_score or prev.away_score != curr.away_score:
            return self._score_change(prev, curr)
        if is_close_game(curr) and not is_close_game(prev):
            return self._close_game(curr)
        reg = regulation_periods(curr.sport)
        if curr.period > reg and prev.period <= reg:
            return self._overtime(curr)
        return None

    def _game_alert(self, game: GameState, type_: str, title: str, body: str,
                    priority: str = "high", **data: Any) -> AlertEvent:
        return AlertEvent(
            type=type_,
            game_id=game.game_id,
            sport=game.sport,
            team=game.chicago_team_id or "",
            title=title,
            body=body,
            data={"gameId": game.game_id, **data},
            priority=priority,
            timestamp=self._clock(),
        )

    def _game_start(self, game: GameState) -> AlertEvent:
        return self._game_alert(game, models.GAME_START,
                                f"{game.away_team} vs {game.home_team}",
                                "Game starting now!", priority="normal")

    def _game_end(self, game: GameState) -> AlertEvent:
        won = did_chicago_win(game)
        return self._game_alert(
            game, models.GAME_END,
            f"FINAL: {game.away_team} {game.away_score}, {game.home_team} {game.home_score}",
            "Victory!" if won else "Game over.",
            homeScore=game.home_score, awayScore=game.away_score, chicagoWon=won,
        )

    def _score_change(self, prev: GameState, curr: GameState) -> AlertEvent:
        points = (curr.home_score + curr.away_score) - (prev.home_score + prev.away_score)
        scoring_team = curr.home_team if curr.home_score > prev.home_score else curr.away_team
        return self._game_alert(
            curr, models.SCORE_CHANGE,
            f"{scoring_team} {score_verb(curr.sport, points)}!",
            score_line(curr),
            homeScore=curr.home_score, awayScore=curr.away_score,
            scoringTeam=scoring_team, pointsScored=points,
        )

    def _close_game(self, game: GameState) -> AlertEvent:
        return self._game_alert(game, models.CLOSE_GAME, "Close game alert!", score_line(game))

    def _overtime(self, game: GameState) -> AlertEvent:
        return self._game_alert(game, models.OVERTIME, "OVERTIME!",
                                f"{game.away_team} vs {game.home_team} heading to OT!")

    # ----- news path -----

    def classify_news(self, item: NewsItem, source_id: str) -> Optional[AlertEvent]:
        # mark first, so a rejected item is never looked at again
        if not self.seen_items.add(item.link):
            return None

        text = f"{item.title} {item.description}".lower()
        if not contains_any(text, RELEVANCE_KEYWORDS):
            return None

        for type_, title, needles in NEWS_CLASSES:
            if contains_any(text, needles):
                return AlertEvent(
                    type=type_,
                    team=detect_team(text),
                    title=title,
                    body=truncate(item.title, NEWS_BODY_LIMIT),
                    data={"link": item.link, "source": source_id},
                    priority="high",
                    timestamp=self._clock(),
                )
        logger.debug("[classifier] %s unclassified: %s", source_id, item.title[:60])
        return None
