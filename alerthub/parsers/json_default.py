"""
Scoreboard JSON parser (ESPN site API shape):

{
    "events": [
        {
            "id": "401547417",
            "competitions": [
                {
                    "competitors": [
                        {"homeAway": "home", "team": {"displayName": "...", "abbreviation": "CHI"}, "score": "17"},
                        {"homeAway": "away", ...}
                    ],
                    "status": {"period": 4, "displayClock": "2:00", "type": {"state": "in"}}
                }
            ]
        }
    ]
}

Events stay provider-native dicts; the classifier reads them through the helpers below.
"""

from typing import Any, Dict, List, Optional, Tuple


def parse_scoreboard(obj: Any) -> List[Dict[str, Any]]:
    """Top-level events list; anything that is not a dict is dropped."""
    if not isinstance(obj, dict):
        return []
    events = obj.get("events") or []
    if not isinstance(events, list):
        return []
    return [e for e in events if isinstance(e, dict)]


def split_competitors(event: Dict[str, Any]) -> Optional[Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]]:
    """
    Returns (competition, home, away), or None when the event is structurally incomplete:
    no competition, no home/away competitor, or a competitor without a team block.
    """
    competitions = event.get("competitions")
    if not isinstance(competitions, list) or not competitions:
        return None
    competition = competitions[0]
    if not isinstance(competition, dict):
        return None

    home = away = None
    for c in competition.get("competitors") or []:
        if not isinstance(c, dict):
            continue
        side = c.get("homeAway")
        if side == "home" and home is None:
            home = c
        elif side == "away" and away is None:
            away = c
    if home is None or away is None:
        return None
    if not isinstance(home.get("team"), dict) or not isinstance(away.get("team"), dict):
        return None
    return competition, home, away


def parse_score(raw: Any) -> int:
    """'17' / 17 / '17.0' -> 17; anything unparseable -> 0"""
    try:
        return max(int(float(raw)), 0)
    except (TypeError, ValueError, OverflowError):
        return 0


def read_status(competition: Dict[str, Any]) -> Tuple[int, str, str]:
    """(period, display clock, state) with safe defaults: 0, '', 'pre'."""
    status = competition.get("status")
    if not isinstance(status, dict):
        status = {}
    try:
        period = max(int(status.get("period") or 0), 0)
    except (TypeError, ValueError):
        period = 0
    clock = str(status.get("displayClock") or "")
    state_block = status.get("type")
    state = state_block.get("state") if isinstance(state_block, dict) else None
    if state not in ("pre", "in", "post"):
        state = "pre"
    return period, clock, state
