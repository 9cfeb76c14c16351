"""
Stock Intel — Request Dedup Cache
───────────────────────────────────
Short-lived, in-process cache that stops the same (capability, args)
being fetched twice inside one aggregation pass.

  - concurrent callers for the same key share ONE in-flight task
  - successful results are kept for DEDUP_TTL_S (30s)
  - clear() is called explicitly between passes

Nothing here survives a restart; the durable cache is cache_store.py.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from analysis_engine.cache.cache_store import args_digest
from analysis_engine.cache.ttl_config import DEDUP_TTL_S

log = logging.getLogger("ae.dedup")


def dedup_key(name: str, args: dict) -> str:
    return f"{name}:{args_digest(args)}"


class DedupCache:

    def __init__(self, ttl_s: float = DEDUP_TTL_S, clock: Callable[[], float] = time.monotonic):
        self.ttl_s     = ttl_s
        self._clock    = clock
        self._done:     Dict[str, Tuple[float, object]] = {}     # key -> (stored_at, result)
        self._inflight: Dict[str, asyncio.Future] = {}
        self._lock     = asyncio.Lock()

    def _fresh(self, key: str):
        entry = self._done.get(key)
        if entry is None:
            return None
        stored_at, result = entry
        if self._clock() - stored_at >= self.ttl_s:
            del self._done[key]
            return None
        return result

    async def run(
        self,
        key: str,
        factory: Callable[[], Awaitable[object]],
        keep: Callable[[object], bool] = lambda r: True,
    ) -> Tuple[object, bool]:
        """
        Return (result, shared). `shared` is True when the result came from
        the cache or from another caller's in-flight task. `keep` decides
        whether a finished result is retained for later callers.

        The in-flight task settles itself, so a cancelled caller never
        orphans it and later callers keep joining it.
        """
        async with self._lock:
            cached = self._fresh(key)
            if cached is not None:
                log.debug(f"{key}: dedup cache hit")
                return cached, True

            fut = self._inflight.get(key)
            owner = fut is None
            if owner:
                fut = asyncio.ensure_future(factory())
                self._inflight[key] = fut
                fut.add_done_callback(lambda f: self._settle(key, f, keep))
            else:
                log.debug(f"{key}: joined in-flight request")

        result = await asyncio.shield(fut)
        return result, not owner

    def _settle(self, key: str, fut: asyncio.Future, keep: Callable[[object], bool]):
        if self._inflight.get(key) is fut:
            del self._inflight[key]
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            log.debug(f"{key}: in-flight request failed ({exc!r})")
            return
        if keep(fut.result()):
            self._done[key] = (self._clock(), fut.result())

    def get(self, key: str) -> Optional[object]:
        return self._fresh(key)

    def clear(self):
        self._done.clear()
        log.debug("Request dedup cache cleared")

    def stats(self) -> dict:
        return {
            "size":      len(self._done),
            "in_flight": len(self._inflight),
            "entries":   list(self._done.keys()),
        }
