"""
Stock Intel — TTL Configuration
─────────────────────────────────
Single source of truth for all cache durations and freshness windows.
Organised by how fast the real world changes for each source class.
"""

# ── Durable tool cache TTL per source class (seconds) ─────────
# 0 = always fresh: the durable cache is bypassed entirely.

SOURCE_TTL = {
    # Near-real-time: prices move during the session
    "yahoo":       5 * 60,          # 5 minutes
    "internal":    5 * 60,          # 5 minutes (store reads, derived checks)

    # Medium: news and retail chatter shift within the day
    "google_news": 2 * 3600,        # 2 hours
    "reddit":      1 * 3600,        # 1 hour

    # Slow: forum theses barely move
    "forum":       12 * 3600,       # 12 hours

    # Always fresh
    "llm":         0,
}

DEFAULT_SOURCE_TTL = 3600           # unknown source classes: 1 hour

# Physical retention beyond logical expiry, so cleanup can run lazily
RETENTION_GRACE_S = 24 * 3600

# ── Ephemeral dedup cache ─────────────────────────────────────
DEDUP_TTL_S = 30                    # one aggregation pass

# ── Aggregator-local freshness ────────────────────────────────
TECHNICALS_REFRESH_S = 5 * 60       # reuse a stored technical snapshot younger than this

# ── Verdicts ──────────────────────────────────────────────────
VERDICT_TTL_S      = 7 * 24 * 3600  # verdict expiresAt horizon
VERDICT_HISTORY_N  = 10             # prior verdicts kept per entity

# ── Freshness report (seconds): (ttl, aging threshold) ────────
FRESHNESS_WINDOWS = {
    "fundamentals":  (30 * 24 * 3600, 20 * 24 * 3600),
    "filings":       (7 * 24 * 3600,  5 * 24 * 3600),
    "thesis":        (3 * 24 * 3600,  2 * 24 * 3600),
    "news":          (2 * 3600,       1 * 3600),
    "sentiment":     (24 * 3600,      12 * 3600),
    "technicals":    (5 * 60,         3 * 60),
    "verdict":       (7 * 24 * 3600,  5 * 24 * 3600),
}


def ttl_for(source_class: str) -> int:
    return SOURCE_TTL.get(source_class, DEFAULT_SOURCE_TTL)
