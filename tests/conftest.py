"""
Shared fixtures: a virtual clock, an in-memory store, and an engine
builder that wires the real cache / limiter / executor / analyzer around
fake capability handlers. No network, no Redis.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Dict, Optional

import pytest

from analysis_engine.cache.cache_store import CacheStore
from analysis_engine.cache.dedup_cache import DedupCache
from analysis_engine.cache.redis_client import MemoryBackend
from analysis_engine.orchestrator.analyzer import StockAnalyzer
from analysis_engine.orchestrator.batch_runner import BatchRunner
from analysis_engine.orchestrator.rate_limiter import RateLimiter
from analysis_engine.storage.research_store import ResearchStore
from analysis_engine.tools.executor import ToolExecutor
from analysis_engine.tools.payloads import (
    FilingsDigest, FundamentalsSnapshot, NewsDigest, SentimentReading,
    SynthesizerOutput, TechnicalSnapshot, ThesisDigest, VerdictHistory,
)
from analysis_engine.tools.registry import Capability, ToolRegistry

FIXED_NOW = datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic seconds. sleep() advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.t = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.t

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.t += seconds

    def advance(self, seconds: float):
        self.t += seconds


class WallClock:
    """datetime clock for TTL / freshness checks."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall() -> WallClock:
    return WallClock()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


# ── Fake capability handlers ──────────────────────────────────

class Recorder:
    """Async handler that records its calls and returns (or raises) a fixed value."""

    def __init__(self, result=None, exc: Optional[BaseException] = None):
        self.result = result
        self.exc = exc
        self.calls = []

    async def __call__(self, args: dict, config: dict):
        self.calls.append(dict(args))
        if self.exc is not None:
            raise self.exc
        return self.result(args) if callable(self.result) else self.result


def synth_output(score: int = 72) -> SynthesizerOutput:
    return SynthesizerOutput(
        score          = score,
        thesis_summary = "Quality franchise at a fair price",
        risks_summary  = "Input cost inflation",
        timing_signal  = "accumulate",
        raw            = '{"opportunity_score": %d}' % score,
    )


def default_handlers() -> Dict[Capability, Recorder]:
    return {
        Capability.GET_FUNDAMENTALS: Recorder(lambda a: FundamentalsSnapshot(
            symbol=a["symbol"], financials=[{"period": "Q3", "revenue": 100}])),
        Capability.GET_TECHNICALS: Recorder(lambda a: TechnicalSnapshot(
            symbol=a["symbol"], current_price=410.5, rsi_14=44.0)),
        Capability.CHECK_WAIT_ZONE: Recorder(None),
        Capability.GET_STOCK_NEWS: Recorder(lambda a: NewsDigest(query=a["query"], found=True)),
        Capability.GET_REDDIT_SENTIMENT: Recorder(lambda a: SentimentReading(query=a["query"])),
        Capability.GET_STOCK_THESIS: Recorder(lambda a: ThesisDigest(query=a["query"])),
        Capability.GET_FILINGS: Recorder(lambda a: FilingsDigest(symbol=a["symbol"])),
        Capability.GET_PRIOR_VERDICTS: Recorder(lambda a: VerdictHistory(entity_id=a["symbol"])),
        Capability.SYNTHESIZE_VERDICT: Recorder(synth_output()),
    }


def build_engine(handlers=None, backend=None, clock=None, wall=None, overrides=None,
                 technicals_refresh_s: float = 300):
    clock    = clock or FakeClock()
    wall     = wall or WallClock()
    backend  = backend or MemoryBackend()
    handlers = default_handlers() if handlers is None else handlers

    store    = ResearchStore(backend)
    cache    = CacheStore(backend, now=wall)
    limiter  = RateLimiter(clock=clock, sleep=clock.sleep)
    registry = ToolRegistry(handlers, overrides)
    executor = ToolExecutor(registry, cache, limiter, DedupCache(clock=clock),
                            retry_base_delay_s=1.0, sleep=clock.sleep, now=wall)
    analyzer = StockAnalyzer(executor, store, technicals_refresh_s=technicals_refresh_s, now=wall)
    runner   = BatchRunner(analyzer, store, sleep=clock.sleep, now=wall)
    return SimpleNamespace(
        handlers=handlers, backend=backend, store=store, cache=cache, limiter=limiter,
        registry=registry, executor=executor, analyzer=analyzer, runner=runner,
        clock=clock, wall=wall,
    )


@pytest.fixture
def engine(clock, wall, backend):
    return build_engine(backend=backend, clock=clock, wall=wall)
