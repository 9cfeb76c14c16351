"""
Stock Intel — Analysis Verdict Model
──────────────────────────────────────
Canonical structure of one scored verdict for one stock.
Upserted by the analyzer (keyed by entity_id); read by the API.

Verdicts are never deleted on expiry. A verdict past expires_at is still
served — flagged stale with its age — rather than hidden.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _parse_ts(ts: Optional[str]) -> Optional[datetime]:
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


@dataclass
class AnalysisVerdict:
    entity_id:              str
    score:                  int
    thesis_summary:         str
    risks_summary:          str
    timing_signal:          str                # accumulate | wait | avoid
    alert_flag:             bool
    alert_reason:           Optional[str]
    raw_synthesizer_output: str
    per_source_fetched_at:  Dict[str, Optional[str]] = field(default_factory=dict)
    partial:                bool = False
    missing_inputs:         List[str] = field(default_factory=list)
    computed_at:            str = ""            # ISO timestamp
    expires_at:             str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AnalysisVerdict":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})

    def age_seconds(self, now: Optional[datetime] = None) -> int:
        """How old is this verdict in seconds."""
        ts = _parse_ts(self.computed_at)
        if ts is None:
            return 999999
        now = now or datetime.now(timezone.utc)
        return int((now - ts).total_seconds())

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        exp = _parse_ts(self.expires_at)
        if exp is None:
            return True
        return (now or datetime.now(timezone.utc)) >= exp

    def is_stale(self, max_age_s: float, now: Optional[datetime] = None) -> bool:
        return self.age_seconds(now) > max_age_s

    def summary(self) -> dict:
        """Compact form kept in the per-entity history list."""
        return {
            "score":          self.score,
            "timing_signal":  self.timing_signal,
            "thesis_summary": self.thesis_summary[:300],
            "alert_flag":     self.alert_flag,
            "partial":        self.partial,
            "computed_at":    self.computed_at,
        }


def fmt_age(seconds: int) -> str:
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"
