"""
Stock Intel — Rate Limiter
────────────────────────────
Sliding-window limiter per source class.
Prevents any batch from getting us banned by a scraped provider.

Admission needs BOTH:
  (a) now - last_grant >= min_delay_ms
  (b) fewer than max_requests grants inside the trailing window_ms

Limits enforced:
  forum:        12 req/min              (5s spacing)
  reddit:       30 req/min              (2s spacing)
  yahoo:        60 req/min              (1s spacing)
  google_news:  20 req/min              (3s spacing)
  llm:          30 req/min              (1s spacing)
  internal:   1000 req/min              (no spacing)

Unknown source classes are allowed (logged) — the registry is closed, so
hitting one means a config bug, not a provider at risk.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, Optional

log = logging.getLogger("ae.rate_limiter")


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_ms:    int
    min_delay_ms: int


# ── Source configurations ─────────────────────────────────────

LIMITS: Dict[str, RateLimitConfig] = {
    # Forum (Discourse): 12/min, one every 5s
    "forum":       RateLimitConfig(12,   60_000, 5_000),
    "reddit":      RateLimitConfig(30,   60_000, 2_000),
    "yahoo":       RateLimitConfig(60,   60_000, 1_000),
    "google_news": RateLimitConfig(20,   60_000, 3_000),
    "llm":         RateLimitConfig(30,   60_000, 1_000),
    # No real limit
    "internal":    RateLimitConfig(1000, 60_000, 0),
}


class _WindowState:
    __slots__ = ("timestamps", "last_request_at", "lock")

    def __init__(self):
        self.timestamps: Deque[float] = deque()   # grant times, ms, ascending
        self.last_request_at: Optional[float] = None
        self.lock = asyncio.Lock()


class RateLimiter:
    """
    Per-source admission control. State is in-memory, process lifetime.

    `clock` returns seconds (monotonic); `sleep` is awaited with seconds.
    Both are injectable so tests can run a virtual clock.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._limits = dict(LIMITS if limits is None else limits)
        self._clock  = clock
        self._sleep  = sleep
        self._state: Dict[str, _WindowState] = {}
        self._warned: set = set()

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _config(self, source: str) -> Optional[RateLimitConfig]:
        cfg = self._limits.get(source)
        if cfg is None and source not in self._warned:
            log.warning(f"Unknown source class '{source}' — allowing unrestricted")
            self._warned.add(source)
        return cfg

    def _get_state(self, source: str) -> _WindowState:
        st = self._state.get(source)
        if st is None:
            st = self._state[source] = _WindowState()
        return st

    @staticmethod
    def _prune(st: _WindowState, cfg: RateLimitConfig, now: float):
        cutoff = now - cfg.window_ms
        while st.timestamps and st.timestamps[0] <= cutoff:
            st.timestamps.popleft()

    def _wait_ms(self, st: _WindowState, cfg: RateLimitConfig, now: float) -> float:
        """Remaining wait under both constraints; prunes the window."""
        self._prune(st, cfg, now)
        wait = 0.0
        if st.last_request_at is not None:
            since_last = now - st.last_request_at
            if since_last < cfg.min_delay_ms:
                wait = cfg.min_delay_ms - since_last
        if len(st.timestamps) >= cfg.max_requests:
            # oldest grant leaves the window at oldest + window_ms
            oldest = st.timestamps[len(st.timestamps) - cfg.max_requests]
            wait = max(wait, oldest + cfg.window_ms - now)
        return max(wait, 0.0)

    async def acquire(self, source: str) -> float:
        """
        Block until a slot is granted for `source`, then record the grant.
        Returns the time waited in milliseconds (0 if immediate). Never raises.
        """
        cfg = self._config(source)
        if cfg is None:
            return 0.0

        st = self._get_state(source)
        waited = 0.0
        # Lock held across the sleep: grants for one source are serialized.
        async with st.lock:
            start = self._now_ms()
            wait = self._wait_ms(st, cfg, start)
            while wait > 0:
                log.debug(f"{source}: waiting {wait / 1000:.1f}s")
                await self._sleep(wait / 1000.0)
                wait = self._wait_ms(st, cfg, self._now_ms())
            granted = self._now_ms()
            waited = granted - start
            st.last_request_at = granted
            st.timestamps.append(granted)

        if waited > 0:
            log.info(f"{source}: rate limited, waited {round(waited / 1000)}s")
        return waited

    def can_proceed(self, source: str) -> bool:
        """Non-blocking probe: would acquire() grant immediately?"""
        return self.time_until_next_slot(source) <= 0

    def time_until_next_slot(self, source: str) -> float:
        """Milliseconds until the next grant would be admitted."""
        cfg = self._limits.get(source)
        if cfg is None:
            return 0.0
        st = self._state.get(source)
        if st is None:
            return 0.0
        return self._wait_ms(st, cfg, self._now_ms())

    def status(self, source: str) -> dict:
        cfg = self._limits.get(source)
        if cfg is None:
            return {"requests_in_window": 0, "max_requests": None,
                    "can_proceed": True, "wait_ms": 0.0}
        st = self._state.get(source)
        wait = self.time_until_next_slot(source)
        return {
            "requests_in_window": len(st.timestamps) if st else 0,
            "max_requests":       cfg.max_requests,
            "can_proceed":        wait <= 0,
            "wait_ms":            round(wait, 1),
        }

    def snapshot(self) -> Dict[str, dict]:
        return {src: self.status(src) for src in self._limits}
