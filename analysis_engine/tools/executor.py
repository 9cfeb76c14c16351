"""
Stock Intel — Tool Executor
─────────────────────────────
Wrapper around every capability call. In order:

  1. request dedup cache   — same (tool, args) in this pass? share it
  2. durable tool cache    — fresh record for (source class, args)? serve it
  3. rate limiter          — wait for a slot on the tool's source class
  4. invoke the handler    — under a hard timeout
  5. success → write through both caches (durable write is background)
  6. failure → classify into the closed error taxonomy

Nothing above this layer ever sees a provider exception.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from analysis_engine.cache.cache_store import CacheStore
from analysis_engine.cache.dedup_cache import DedupCache, dedup_key
from analysis_engine.orchestrator.rate_limiter import RateLimiter
from analysis_engine.tools.errors import ErrorCode, classify_exception
from analysis_engine.tools.registry import Registration, ToolRegistry
from analysis_engine.tools.result import ToolMeta, ToolResult

log = logging.getLogger("ae.executor")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cache_args(name: str, args: Dict[str, Any]) -> Dict[str, Any]:
    # Several tools share a source class with identical args ({"symbol": X});
    # the tool name keeps their durable records apart.
    return {"_tool": name, **args}


class ToolExecutor:

    def __init__(
        self,
        registry: ToolRegistry,
        cache: CacheStore,
        limiter: RateLimiter,
        dedup: Optional[DedupCache] = None,
        default_timeout_s: float = 20.0,
        retry_base_delay_s: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.registry  = registry
        self.cache     = cache
        self.limiter   = limiter
        self.dedup     = dedup or DedupCache()
        self.default_timeout_s  = default_timeout_s
        self.retry_base_delay_s = retry_base_delay_s
        self._sleep    = sleep
        self._now      = now
        self._writes: Set[asyncio.Task] = set()

    # ── Public API ────────────────────────────────────────────

    async def execute(self, name: str, args: Optional[Dict[str, Any]] = None) -> ToolResult:
        args = dict(args or {})
        reg = self.registry.resolve(name)
        if reg is None:
            log.error(f"Unknown tool: {name}")
            return ToolResult.fail(ErrorCode.UNKNOWN, f"Unknown tool: {name}")

        meta = ToolMeta(source_class=reg.source_class)
        if not self.registry.is_enabled(name):
            return ToolResult.fail(ErrorCode.BLOCKED, f"Tool disabled by configuration: {name}", meta)

        missing = reg.spec.declaration.missing_args(args)
        if missing:
            return ToolResult.fail(
                ErrorCode.PARSE_ERROR, f"Missing required parameter(s): {', '.join(missing)}", meta
            )

        result, shared = await self.dedup.run(
            dedup_key(name, args),
            lambda: self._execute_uncached(reg, args),
            keep=lambda r: r.success,
        )
        if shared:
            log.debug(f"{name}: in-memory cache hit")
            return result.tagged(from_cache=True)
        return result

    async def execute_with_retry(self, name: str, args: Optional[Dict[str, Any]] = None,
                                 max_retries: int = 1) -> ToolResult:
        """Re-run while the last error is retryable, with exponential backoff."""
        attempt = 0
        while True:
            result = await self.execute(name, args)
            if result.success or not result.retryable or attempt >= max_retries:
                return result
            attempt += 1
            delay = self.retry_base_delay_s * (2 ** (attempt - 1))
            log.info(f"{name}: retry {attempt}/{max_retries} after {result.error.code.value} "
                     f"(backoff {delay:.1f}s)")
            await self._sleep(delay)

    def clear_request_cache(self):
        """Called between aggregation passes."""
        self.dedup.clear()

    async def flush(self):
        """Wait for background durable-cache writes."""
        if self._writes:
            await asyncio.gather(*list(self._writes), return_exceptions=True)

    async def close(self):
        await self.flush()

    def stats(self) -> dict:
        return {**self.dedup.stats(), "pending_writes": len(self._writes)}

    # ── Internals ─────────────────────────────────────────────

    async def _execute_uncached(self, reg: Registration, args: Dict[str, Any]) -> ToolResult:
        name   = reg.name
        source = reg.source_class
        t0     = time.monotonic()
        cargs  = _cache_args(name, args)

        lookup = await self.cache.get(source, cargs)
        if lookup.hit:
            try:
                record = lookup.payload or {}
                payload = reg.spec.payload_type.from_dict(record.get("data"))
                log.info(f"{name}: shared cache hit ({lookup.age_hours}h old)")
                return ToolResult.ok(payload, ToolMeta(
                    source_class    = source,
                    fetched_at      = record.get("fetched_at"),
                    from_cache      = True,
                    cache_age_hours = lookup.age_hours,
                ))
            except (AttributeError, TypeError, ValueError) as e:
                log.warning(f"{name}: unusable cache record ({e}) — executing")

        waited = await self.limiter.acquire(source)
        if waited > 0:
            log.debug(f"{name}: waited {round(waited / 1000)}s for {source}")

        meta = ToolMeta(source_class=source)
        if reg.handler is None:
            return ToolResult.fail(ErrorCode.UNKNOWN, f"Tool not yet implemented: {name}", meta)

        config  = self.registry.config_for(name)
        timeout = float(config.get("timeout_s") or self.default_timeout_s)
        try:
            data = await asyncio.wait_for(reg.handler(args, config), timeout=timeout)
            if isinstance(data, ToolResult):
                if not data.success:
                    log.warning(f"{name}: failed — {data.error.code.value}")
                    return data.tagged(source_class=source)
                data = data.data
            if isinstance(data, dict):
                data = reg.spec.payload_type.from_dict(data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_exception(e)
            ms = int((time.monotonic() - t0) * 1000)
            log.warning(f"{name}: {error.code.value} ({ms}ms) — {error.message[:120]}")
            return ToolResult.from_error(error, meta)

        fetched_at = self._now().isoformat()
        ms = int((time.monotonic() - t0) * 1000)
        log.info(f"{name}: success ({ms}ms)")
        self._write_through(source, cargs, data, fetched_at)
        return ToolResult.ok(data, ToolMeta(source_class=source, fetched_at=fetched_at))

    def _write_through(self, source: str, cargs: Dict[str, Any], data: Any, fetched_at: str):
        if not self.cache.is_cacheable(source):
            return
        record = {
            "data":       data.to_dict() if hasattr(data, "to_dict") else data,
            "fetched_at": fetched_at,
        }
        task = asyncio.ensure_future(self.cache.set(source, cargs, record))
        self._writes.add(task)
        task.add_done_callback(self._write_done)

    def _write_done(self, task: asyncio.Task):
        self._writes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning(f"Durable cache write lost: {exc}")
