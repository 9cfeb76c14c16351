"""
Stock Intel — Freshness Report
────────────────────────────────
Read-side provenance for a verdict: how old was each input it was scored
on, and how old is the verdict itself. Nothing here blocks — a stale
verdict is still served, with its age and a warning attached.

Per source:  fresh → aging → stale   (missing when never fetched)
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from analysis_engine.cache.ttl_config import FRESHNESS_WINDOWS
from analysis_engine.models.verdict import AnalysisVerdict, _parse_ts, fmt_age

FRESH, AGING, STALE, MISSING = "fresh", "aging", "stale", "missing"

# A missing one of these makes the whole report "missing"
CRITICAL_SOURCES = ("fundamentals", "technicals")


@dataclass
class FreshnessCheck:
    source:       str
    status:       str
    age_hours:    Optional[float]
    ttl_hours:    float
    aging_hours:  float
    last_updated: Optional[str]
    warning:      Optional[str] = None


@dataclass
class FreshnessReport:
    entity_id:      str
    overall_status: str
    checks:         List[FreshnessCheck] = field(default_factory=list)
    warnings:       List[str] = field(default_factory=list)
    verdict_age:    Optional[str] = None
    partial:        bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def classify_age(age_hours: Optional[float], ttl_hours: float, aging_hours: float) -> str:
    if age_hours is None:
        return MISSING
    if age_hours > ttl_hours:
        return STALE
    if age_hours > aging_hours:
        return AGING
    return FRESH


def _warning(source: str, status: str, age_hours: Optional[float], ttl_hours: float) -> Optional[str]:
    if status == MISSING:
        if source in CRITICAL_SOURCES:
            return f"{source} data not available - analysis may be incomplete"
        return f"{source} data not available"
    if status == STALE:
        return f"{source} data is {round(age_hours)}h old (TTL {round(ttl_hours, 2)}h) - consider refreshing"
    if status == AGING:
        return f"{source} data is {round(age_hours)}h old - approaching TTL of {round(ttl_hours, 2)}h"
    return None


def check_source(source: str, last_updated: Optional[str], now: datetime) -> FreshnessCheck:
    ttl_s, aging_s = FRESHNESS_WINDOWS[source]
    ts = _parse_ts(last_updated)
    age_h = round((now - ts).total_seconds() / 3600, 2) if ts else None
    ttl_h, aging_h = ttl_s / 3600, aging_s / 3600
    status = classify_age(age_h, ttl_h, aging_h)
    return FreshnessCheck(
        source       = source,
        status       = status,
        age_hours    = age_h,
        ttl_hours    = round(ttl_h, 3),
        aging_hours  = round(aging_h, 3),
        last_updated = last_updated,
        warning      = _warning(source, status, age_h, ttl_h),
    )


def overall_status(checks: Iterable[FreshnessCheck]) -> str:
    checks = list(checks)
    if any(c.status == STALE for c in checks):
        return STALE
    if any(c.status == AGING for c in checks):
        return AGING
    if any(c.status == MISSING and c.source in CRITICAL_SOURCES for c in checks):
        return MISSING
    return FRESH


def verdict_freshness(verdict: Optional[AnalysisVerdict], entity_id: str = "",
                      now: Optional[datetime] = None) -> FreshnessReport:
    now = now or datetime.now(timezone.utc)
    if verdict is None:
        check = check_source("verdict", None, now)
        return FreshnessReport(entity_id or "", MISSING, [check], [f"No analysis on record for {entity_id}"])

    checks = [
        check_source(source, verdict.per_source_fetched_at.get(source), now)
        for source in FRESHNESS_WINDOWS if source != "verdict"
    ]
    checks.append(check_source("verdict", verdict.computed_at, now))
    warnings = [c.warning for c in checks if c.warning]
    if verdict.is_expired(now):
        warnings.append(f"Verdict expired {verdict.expires_at} - served stale")

    return FreshnessReport(
        entity_id      = verdict.entity_id,
        overall_status = overall_status(checks),
        checks         = checks,
        warnings       = warnings,
        verdict_age    = fmt_age(max(verdict.age_seconds(now), 0)),
        partial        = verdict.partial,
    )


def summarize(reports: Iterable[FreshnessReport]) -> Dict[str, int]:
    counts = {FRESH: 0, AGING: 0, STALE: 0, MISSING: 0}
    for r in reports:
        counts[r.overall_status] = counts.get(r.overall_status, 0) + 1
    return counts
