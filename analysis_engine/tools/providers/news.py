"""
Stock Intel — News Provider
─────────────────────────────
Fetches recent headlines for a stock from the Google News RSS search feed.
Scores headline sentiment and detects catalyst events.

Produces NewsDigest:
  sentiment_score    -1.0 to 1.0
  key_events         matched catalyst phrases, e.g. "order win", "downgrade"

Headlines are often sensationalised; the synthesizer prompt says so.
"""

import logging
from datetime import datetime, timezone
from typing import List

import feedparser
import httpx

from analysis_engine.tools.errors import ParseError
from analysis_engine.tools.payloads import NewsDigest

log = logging.getLogger("ae.providers.news")

GOOGLE_NEWS_RSS = "https://news.google.com/rss/search"

POSITIVE_WORDS = [
    "beat", "beats", "surges", "jumps", "rises", "gains", "rallies", "soars",
    "upgrade", "upgraded", "buy", "outperform", "overweight", "bullish",
    "partnership", "contract", "order", "approval", "approved", "wins",
    "buyback", "dividend", "record", "launch", "strong", "profit",
    "acquisition", "merger", "expansion", "recovery", "rebound",
]
NEGATIVE_WORDS = [
    "miss", "misses", "falls", "drops", "tumbles", "plunges", "declines",
    "downgrade", "downgraded", "sell", "underperform", "bearish",
    "lawsuit", "investigation", "probe", "raid", "penalty", "fine",
    "cut guidance", "layoffs", "loss", "weak", "concern", "duty hike",
    "disappoints", "default", "fraud", "resigns", "pledge",
]

CATALYST_POSITIVE = [
    "order win", "bags order", "record profit", "raised guidance", "buyback",
    "dividend", "analyst upgrade", "target raised", "capacity expansion",
    "acquisition", "usfda approval",
]
CATALYST_NEGATIVE = [
    "results miss", "profit falls", "cut guidance", "sebi", "tax raid",
    "excise duty", "ceo resigns", "promoter pledge", "downgrade",
    "target cut", "fraud", "default", "insolvency",
]


def score_text(text: str) -> float:
    """Score a piece of text -1.0 to 1.0 based on word matching."""
    text_lower = text.lower()
    pos = sum(1 for w in POSITIVE_WORDS if w in text_lower)
    neg = sum(1 for w in NEGATIVE_WORDS if w in text_lower)
    total = pos + neg
    if total == 0:
        return 0.0
    return round((pos - neg) / total, 3)


def detect_events(titles: List[str]) -> List[str]:
    events = []
    for title in titles:
        lower = title.lower()
        for cat in CATALYST_POSITIVE + CATALYST_NEGATIVE:
            if cat in lower and cat not in events:
                events.append(cat)
    return events


def _summarise(score: float, count: int) -> str:
    if count == 0:
        return "No recent coverage"
    if score > 0.2:
        tone = "positive"
    elif score < -0.2:
        tone = "negative"
    else:
        tone = "mixed"
    return f"Headline tone {tone} ({score:+.2f}) across {count} recent articles"


def parse_rss(xml_text: str, limit: int) -> List[dict]:
    feed = feedparser.parse(xml_text)
    entries = feed.entries or []
    if feed.bozo and not entries:
        raise ParseError(f"Google News RSS unparseable: {feed.get('bozo_exception')}")
    items = []
    for entry in entries:
        title  = (entry.get("title") or "").strip()
        source = (entry.get("source", {}).get("title") or "").strip()
        date   = (entry.get("published") or "").strip()
        if not title:
            continue
        # Google appends " - Source" to titles
        if source and title.endswith(f" - {source}"):
            title = title[: -len(source) - 3]
        items.append({"title": title, "source": source, "date": date})
        if len(items) >= limit:
            break
    return items


class NewsProvider:
    """get_stock_news handler."""

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def __call__(self, args: dict, config: dict) -> NewsDigest:
        query  = args["query"].strip()
        region = config.get("region", "IN")
        r = await self._client.get(GOOGLE_NEWS_RSS, params={
            "q":    f"{query} stock",
            "hl":   f"en-{region}",
            "gl":   region,
            "ceid": f"{region}:en",
        })
        r.raise_for_status()
        headlines = parse_rss(r.text, int(config.get("max_headlines", 10)))
        now = datetime.now(timezone.utc).isoformat()
        if not headlines:
            return NewsDigest(query=query, found=False, fetched_at=now)

        titles = [h["title"] for h in headlines]
        score = round(sum(score_text(t) for t in titles) / len(titles), 3)
        return NewsDigest(
            query             = query,
            found             = True,
            headlines         = headlines,
            sentiment_score   = score,
            sentiment_summary = _summarise(score, len(headlines)),
            key_events        = detect_events(titles),
            fetched_at        = now,
        )
