"""
RSS parser: feed text -> NewsItem list.
feedparser unwraps CDATA and plain text fields alike; <description> lands in entry.summary.
"""

import logging
from typing import List

import feedparser

from alerthub.models import NewsItem

logger = logging.getLogger(__name__)

# feeds list newest first; only the head of each fetch is considered
MAX_ITEMS_PER_FEED = 10


def parse_rss(text: str, source_id: str, limit: int = MAX_ITEMS_PER_FEED) -> List[NewsItem]:
    """
    Parse RSS/Atom text.

    Args:
        text: raw feed body
        source_id: feed id, only used for logging
        limit: keep at most this many items, in document order

    Returns:
        NewsItem list; entries without a link are dropped since the link is the dedup id.
    """
    feed = feedparser.parse(text)
    if feed.get("bozo") and not feed.get("entries"):
        logger.warning("[rss] %s unparseable feed: %r", source_id, feed.get("bozo_exception"))
        return []

    items: List[NewsItem] = []
    for entry in feed.get("entries", [])[:limit]:
        link = (entry.get("link") or "").strip()
        if not link:
            continue
        items.append(NewsItem(
            title=(entry.get("title") or "").strip(),
            link=link,
            description=(entry.get("summary") or entry.get("description") or "").strip(),
        ))
    return items
