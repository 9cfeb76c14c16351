from datetime import timedelta

from analysis_engine.models.verdict import AnalysisVerdict
from analysis_engine.orchestrator.freshness import (
    AGING, FRESH, MISSING, STALE, classify_age, summarize, verdict_freshness,
)

from conftest import FIXED_NOW


def _verdict(computed_at, fetched):
    return AnalysisVerdict(
        entity_id="ITC", score=70, thesis_summary="t", risks_summary="r", timing_signal="wait",
        alert_flag=False, alert_reason=None, raw_synthesizer_output="{}",
        per_source_fetched_at=fetched, computed_at=computed_at.isoformat(),
        expires_at=(computed_at + timedelta(days=7)).isoformat(),
    )


def test_classify_age():
    assert classify_age(None, 10, 5) == MISSING
    assert classify_age(1, 10, 5) == FRESH
    assert classify_age(6, 10, 5) == AGING
    assert classify_age(11, 10, 5) == STALE


def test_fresh_verdict():
    ts = FIXED_NOW.isoformat()
    v = _verdict(FIXED_NOW, {s: ts for s in ("fundamentals", "technicals", "news", "sentiment",
                                             "thesis", "filings")})
    report = verdict_freshness(v, now=FIXED_NOW + timedelta(minutes=1))
    assert report.overall_status == FRESH
    assert report.warnings == []
    assert report.verdict_age == "1m"


def test_expired_verdict_is_served_stale_with_age():
    ts = FIXED_NOW.isoformat()
    v = _verdict(FIXED_NOW, {"fundamentals": ts, "technicals": ts})
    report = verdict_freshness(v, now=FIXED_NOW + timedelta(days=8))
    assert report.overall_status == STALE
    assert report.verdict_age == "8d"
    assert any("served stale" in w for w in report.warnings)
    checks = {c.source: c for c in report.checks}
    assert checks["news"].status == MISSING
    assert checks["technicals"].status == STALE


def test_missing_critical_source():
    v = _verdict(FIXED_NOW, {})
    report = verdict_freshness(v, now=FIXED_NOW)
    assert report.overall_status == MISSING
    assert "fundamentals data not available - analysis may be incomplete" in report.warnings


def test_no_verdict_and_summary():
    empty = verdict_freshness(None, "ITC")
    assert empty.overall_status == MISSING
    assert summarize([empty]) == {FRESH: 0, AGING: 0, STALE: 0, MISSING: 1}
