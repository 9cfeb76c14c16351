"""
Stock Intel — Forum Thesis Provider
─────────────────────────────────────
Investment thesis + recent discussion for a stock from the ValuePickr
Discourse forum. Thesis content moves slowly, so this source class is
cached for 12 hours.

These are retail OPINIONS, not research. The synthesizer treats them as
sentiment only.
"""

import logging
from datetime import datetime, timezone

import httpx
from bs4 import BeautifulSoup

from analysis_engine.tools.payloads import ThesisDigest

log = logging.getLogger("ae.providers.forum")

THESIS_CHARS = 1500
RECENT_CHARS = 1500


def strip_html(fragment: str) -> str:
    if not fragment:
        return ""
    text = BeautifulSoup(fragment, "html.parser").get_text(" ", strip=True)
    return " ".join(text.split())


class ForumProvider:
    """get_stock_thesis handler."""

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def __call__(self, args: dict, config: dict) -> ThesisDigest:
        query = args["query"].strip()
        base  = config.get("base_url", "https://forum.valuepickr.com").rstrip("/")
        now   = datetime.now(timezone.utc).isoformat()

        r = await self._client.get(f"{base}/search.json", params={"q": query})
        r.raise_for_status()
        topics = r.json().get("topics") or []
        if not topics:
            log.debug(f"No forum topic for '{query}'")
            return ThesisDigest(query=query, found=False, fetched_at=now)

        topic = topics[0]
        t = await self._client.get(f"{base}/t/{topic['id']}.json")
        t.raise_for_status()
        posts = t.json().get("post_stream", {}).get("posts") or []
        if not posts:
            return ThesisDigest(query=query, found=False, fetched_at=now)

        n_recent = int(config.get("recent_posts", 5))
        recent = posts[1:][-n_recent:]
        recent_text = " | ".join(strip_html(p.get("cooked", ""))[:300] for p in recent)

        return ThesisDigest(
            query            = query,
            found            = True,
            topic_title      = topic.get("title"),
            topic_url        = f"{base}/t/{topic.get('slug', '')}/{topic['id']}",
            thesis_summary   = strip_html(posts[0].get("cooked", ""))[:THESIS_CHARS],
            recent_sentiment = recent_text[:RECENT_CHARS] or None,
            fetched_at       = now,
        )
