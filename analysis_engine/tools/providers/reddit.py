"""
Stock Intel — Reddit Sentiment Provider
─────────────────────────────────────────
Retail sentiment from Indian investing subreddits via the public search
JSON. Use as a CONTRARIAN signal: crowded bullishness is a warning, broad
bearishness on a sound thesis can be an opportunity.
"""

import logging
from datetime import datetime, timezone

import httpx

from analysis_engine.tools.payloads import SentimentReading
from analysis_engine.tools.providers.news import score_text

log = logging.getLogger("ae.providers.reddit")

REDDIT_SEARCH_URL = "https://www.reddit.com/r/{subs}/search.json"
REDDIT_HEADERS = {"User-Agent": "stock-intel/0.4 (research aggregator)"}

BULLISH_AT = 0.15
BEARISH_AT = -0.15

_INTERPRETATION = {
    "BULLISH":  "Retail sentiment is positive - could indicate crowded trade (use as contrarian signal)",
    "BEARISH":  "Retail sentiment is negative - could be opportunity if thesis is strong",
    "NEUTRAL":  "Retail sentiment is neutral or mixed",
    "NO_DATA":  "No recent retail discussion found",
}


class RedditProvider:
    """get_reddit_sentiment handler."""

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def __call__(self, args: dict, config: dict) -> SentimentReading:
        query = args["query"].strip()
        subs  = list(config.get("subreddits") or ["IndiaInvestments"])
        r = await self._client.get(
            REDDIT_SEARCH_URL.format(subs="+".join(subs)),
            params={"q": query, "restrict_sr": 1, "sort": "new", "t": "month",
                    "limit": int(config.get("limit", 10))},
            headers=REDDIT_HEADERS,
        )
        r.raise_for_status()
        children = r.json().get("data", {}).get("children", [])
        now = datetime.now(timezone.utc).isoformat()

        posts = []
        for child in children:
            p = child.get("data", {})
            posts.append({
                "title":     p.get("title", ""),
                "subreddit": p.get("subreddit", ""),
                "score":     p.get("score", 0),
                "comments":  p.get("num_comments", 0),
                "created":   p.get("created_utc"),
                "text":      (p.get("selftext") or "")[:400],
            })

        if not posts:
            return SentimentReading(query=query, subreddits=subs,
                                    interpretation=_INTERPRETATION["NO_DATA"], fetched_at=now)

        avg = sum(score_text(f"{p['title']} {p['text']}") for p in posts) / len(posts)
        if avg >= BULLISH_AT:
            signal = "BULLISH"
        elif avg <= BEARISH_AT:
            signal = "BEARISH"
        else:
            signal = "NEUTRAL"

        return SentimentReading(
            query            = query,
            posts_found      = len(posts),
            sentiment_signal = signal,
            subreddits       = subs,
            recent_posts     = [{k: p[k] for k in ("title", "subreddit", "score", "comments")}
                                for p in posts[:5]],
            interpretation   = _INTERPRETATION[signal],
            fetched_at       = now,
        )
