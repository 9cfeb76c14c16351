"""
Stock Intel — Service Wiring
──────────────────────────────
Builds every long-lived object once, in dependency order, and tears
them down in reverse. app.py's lifespan owns one Services instance;
tests build their own around a MemoryBackend.
"""

import logging
from typing import Optional

import httpx

from analysis_engine.cache.cache_store import CacheStore
from analysis_engine.cache.dedup_cache import DedupCache
from analysis_engine.cache.redis_client import connect_backend
from analysis_engine.config import Settings
from analysis_engine.orchestrator.analyzer import StockAnalyzer
from analysis_engine.orchestrator.jobs import JobManager
from analysis_engine.orchestrator.rate_limiter import RateLimiter
from analysis_engine.orchestrator.scheduler import AnalysisScheduler
from analysis_engine.orchestrator.synthesizer import AnthropicSynthesizer
from analysis_engine.storage.research_store import ResearchStore
from analysis_engine.tools.executor import ToolExecutor
from analysis_engine.tools.providers import build_default_handlers
from analysis_engine.tools.registry import Capability, ToolRegistry

log = logging.getLogger("ae.services")

HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept-Language": "en-US,en;q=0.9",
}


class Services:

    def __init__(self, settings: Settings, backend, client: Optional[httpx.AsyncClient] = None,
                 handlers=None):
        self.settings = settings
        self.backend  = backend
        self.client   = client or httpx.AsyncClient(headers=HEADERS, follow_redirects=True,
                                                    timeout=settings.tool_timeout_s)
        self.store    = ResearchStore(backend)
        self.cache    = CacheStore(backend)
        self.limiter  = RateLimiter()

        if handlers is None:
            handlers = build_default_handlers(self.client, self.store)
            handlers[Capability.SYNTHESIZE_VERDICT] = AnthropicSynthesizer(
                settings.anthropic_api_key, settings.anthropic_model, settings.synth_max_tokens,
            )
        self.registry = ToolRegistry(handlers, settings.tool_overrides)
        self.executor = ToolExecutor(
            self.registry, self.cache, self.limiter, DedupCache(),
            default_timeout_s  = settings.tool_timeout_s,
            retry_base_delay_s = settings.retry_base_delay_s,
        )
        self.analyzer = StockAnalyzer(
            self.executor, self.store,
            technicals_refresh_s = settings.technicals_refresh_s,
            verdict_ttl_s        = settings.verdict_ttl_days * 24 * 3600,
            synth_max_retries    = settings.synth_max_retries,
        )
        self.jobs      = JobManager(self.analyzer, self.store)
        self.scheduler = AnalysisScheduler(self.jobs, self.cache, settings)

    @classmethod
    async def create(cls, settings: Settings) -> "Services":
        backend = await connect_backend(settings.redis_url)
        return cls(settings, backend)

    def start(self):
        if self.settings.scheduler_enabled:
            self.scheduler.start()

    async def close(self):
        self.scheduler.stop()
        await self.jobs.shutdown()
        await self.executor.close()
        await self.client.aclose()
        await self.backend.close()
        log.info("Services closed")
