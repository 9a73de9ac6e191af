"""
Merged headlines from a few RSS/Atom feeds.

Fetch failures are reported in the widget rather than raised so the
display shows why it is empty.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import feedparser
import httpx

logger = logging.getLogger("dashino.jobs.rss")

USER_AGENT = "dashino-rss/1.0"
TIMEOUT_SECONDS = 12.0
MAX_ITEMS = 12

FEEDS = [
    {"name": "Hacker News", "url": "https://hnrss.org/frontpage"},
    {"name": "BBC World", "url": "http://feeds.bbci.co.uk/news/world/rss.xml"},
    {"name": "The Verge", "url": "https://www.theverge.com/rss/index.xml"},
]

interval = 60_000
widget_id = "rss"
type = "rss"


def _to_iso(parsed: Any) -> Optional[str]:
    """feedparser's *_parsed values are UTC struct_time tuples."""
    if not parsed:
        return None
    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc).isoformat()


def parse_feed(text: str, source: str) -> list[dict[str, Any]]:
    """Turn RSS or Atom XML into headline dicts; untitled entries are skipped."""
    feed = feedparser.parse(text)
    items = []
    for entry in feed.entries:
        title = (entry.get("title") or "").strip()
        if not title:
            continue
        link = entry.get("link") or None
        published = entry.get("published_parsed") or entry.get("updated_parsed")
        items.append({
            "id": "|".join([source, title, link or ""]).lower(),
            "source": source,
            "title": title,
            "link": link,
            "publishedAt": _to_iso(published),
        })
    return items


def merge_items(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Dedupe by id and keep the newest MAX_ITEMS."""
    by_id: dict[str, dict[str, Any]] = {}
    for item in items:
        by_id.setdefault(item["id"], item)
    merged = sorted(by_id.values(), key=lambda i: i["publishedAt"] or "", reverse=True)
    return merged[:MAX_ITEMS]


async def run(emit):
    now = datetime.now(timezone.utc).isoformat()
    try:
        results = []
        async with httpx.AsyncClient(
            timeout=TIMEOUT_SECONDS,
            headers={
                "user-agent": USER_AGENT,
                "accept": "application/rss+xml, application/atom+xml, text/xml, */*;q=0.1",
            },
            follow_redirects=True,
        ) as client:
            for feed in FEEDS:
                try:
                    resp = await client.get(feed["url"])
                    resp.raise_for_status()
                except httpx.HTTPError as e:
                    logger.warning("Feed %s failed: %s", feed["name"], e)
                    continue
                results.extend(parse_feed(resp.text, feed["name"]))

        emit({"data": {"title": "Headlines", "updatedAt": now, "items": merge_items(results)}})
    except Exception as e:
        emit({"data": {"title": "Headlines", "updatedAt": now, "error": str(e), "items": []}})
