"""
Stock Intel — Capability Payloads
───────────────────────────────────
One result type per capability. The executor stores `to_dict()` in the
durable cache and rebuilds the right type with `from_dict()` on a hit,
so callers always get a typed payload, cached or not.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


class Payload:
    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict):
        return cls(**{k: v for k, v in (d or {}).items() if k in cls.__dataclass_fields__})


@dataclass
class FundamentalsSnapshot(Payload):
    symbol:         str
    financials:     List[Dict[str, Any]] = field(default_factory=list)   # last 4 periods
    latest_concall: Optional[Dict[str, Any]] = None
    updated_at:     Optional[str] = None


@dataclass
class TechnicalSnapshot(Payload):
    symbol:              str
    current_price:       Optional[float] = None
    rsi_14:              Optional[float] = None
    sma_50:              Optional[float] = None
    sma_200:             Optional[float] = None
    price_vs_sma50_pct:  Optional[float] = None
    price_vs_sma200_pct: Optional[float] = None
    zone_status:         str = "BUY"        # BUY | WAIT_TOO_HOT | WAIT_TOO_COLD
    is_wait_zone:        bool = False
    wait_reasons:        List[str] = field(default_factory=list)
    computed_at:         Optional[str] = None


@dataclass
class WaitZoneCheck(Payload):
    symbol:       str
    zone_status:  str
    is_wait_zone: bool
    reasons:      List[str] = field(default_factory=list)


@dataclass
class NewsDigest(Payload):
    query:             str
    found:             bool = False
    headlines:         List[Dict[str, str]] = field(default_factory=list)   # title, source, date
    sentiment_score:   float = 0.0                                         # -1.0 .. 1.0
    sentiment_summary: str = ""
    key_events:        List[str] = field(default_factory=list)
    fetched_at:        Optional[str] = None


@dataclass
class SentimentReading(Payload):
    query:            str
    posts_found:      int = 0
    sentiment_signal: str = "NO_DATA"      # BULLISH | BEARISH | NEUTRAL | NO_DATA
    subreddits:       List[str] = field(default_factory=list)
    recent_posts:     List[Dict[str, Any]] = field(default_factory=list)
    interpretation:   str = ""
    fetched_at:       Optional[str] = None


@dataclass
class ThesisDigest(Payload):
    query:            str
    found:            bool = False
    topic_title:      Optional[str] = None
    topic_url:        Optional[str] = None
    thesis_summary:   Optional[str] = None
    recent_sentiment: Optional[str] = None
    fetched_at:       Optional[str] = None


@dataclass
class FilingsDigest(Payload):
    symbol:     str
    filings:    List[Dict[str, Any]] = field(default_factory=list)   # status, rationale, risks, note, date
    updated_at: Optional[str] = None


@dataclass
class VerdictHistory(Payload):
    entity_id: str
    verdicts:  List[Dict[str, Any]] = field(default_factory=list)   # newest first


TIMING_SIGNALS = ("accumulate", "wait", "avoid")


@dataclass
class SynthesizerOutput(Payload):
    score:          int
    thesis_summary: str
    risks_summary:  str
    timing_signal:  str                    # accumulate | wait | avoid
    alert_flag:     bool = False
    alert_reason:   Optional[str] = None
    raw:            str = ""
