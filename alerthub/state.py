"""
state.py
In-memory state owned by one Orchestrator:
- GameStateStore: last seen GameState per game key (sport-gameId)
- SeenItemStore: links of news items already processed
Both start empty; a new Orchestrator (or process restart) means fresh state.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Iterator, Optional

from alerthub.models import GameState


class GameStateStore:
    """Entries are overwritten on each observation and never deleted."""

    def __init__(self) -> None:
        self._states: Dict[str, GameState] = {}

    def get(self, key: str) -> Optional[GameState]:
        return self._states.get(key)

    def put(self, state: GameState) -> None:
        if state.chicago_team_id is None:
            raise ValueError(f"refusing to track untracked game {state.key}")
        self._states[state.key] = state

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[GameState]:
        return iter(self._states.values())


class SeenItemStore:
    """
    Set of processed links.
    max_items bounds memory: the least recently seen link is evicted once the bound is hit.
    None keeps every link for the lifetime of the store.
    """

    def __init__(self, max_items: Optional[int] = None) -> None:
        if max_items is not None and max_items <= 0:
            raise ValueError("max_items must be positive")
        self._max_items = max_items
        self._links: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, link: str) -> bool:
        return link in self._links

    def add(self, link: str) -> bool:
        """Returns False if the link was already present; a repeat sighting refreshes its recency."""
        if link in self._links:
            self._links.move_to_end(link)
            return False
        self._links[link] = None
        if self._max_items is not None:
            while len(self._links) > self._max_items:
                self._links.popitem(last=False)
        return True

    def __len__(self) -> int:
        return len(self._links)
