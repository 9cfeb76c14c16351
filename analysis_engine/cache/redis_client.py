"""
Stock Intel — Storage Backends
────────────────────────────────
Thin key/value layer shared by the durable tool cache and the research store.

  RedisBackend   — redis.asyncio, used when REDIS_URL is reachable
  MemoryBackend  — process-local dict, used when Redis is unavailable
                   (and in tests)

Values are strings (JSON). `retention_s` is *physical* retention only —
logical expiry is always decided by the caller from the stored record.
"""

import asyncio
import fnmatch
import logging
import time
from typing import Dict, List, Optional, Tuple

import redis.asyncio as aioredis

log = logging.getLogger("ae.redis")


class MemoryBackend:
    """In-process fallback. Same interface as RedisBackend."""

    name = "memory"

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}   # key -> (value, purge_at)
        self._lock = asyncio.Lock()

    def _alive(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, purge_at = entry
        if purge_at is not None and time.monotonic() >= purge_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._alive(key)

    async def set(self, key: str, value: str, retention_s: Optional[int] = None):
        purge_at = time.monotonic() + retention_s if retention_s else None
        async with self._lock:
            self._data[key] = (value, purge_at)

    async def incr(self, key: str, retention_s: Optional[int] = None) -> int:
        async with self._lock:
            value = int(self._alive(key) or 0) + 1
            purge_at = time.monotonic() + retention_s if retention_s else None
            self._data[key] = (str(value), purge_at)
        return value

    async def delete(self, *keys: str) -> int:
        removed = 0
        async with self._lock:
            for k in keys:
                if self._data.pop(k, None) is not None:
                    removed += 1
        return removed

    async def scan(self, pattern: str) -> List[str]:
        return [k for k in list(self._data) if fnmatch.fnmatchcase(k, pattern) and self._alive(k) is not None]

    async def ping(self) -> bool:
        return True

    async def close(self):
        self._data.clear()


class RedisBackend:
    name = "redis"

    def __init__(self, client: aioredis.Redis):
        self._r = client

    async def get(self, key: str) -> Optional[str]:
        return await self._r.get(key)

    async def set(self, key: str, value: str, retention_s: Optional[int] = None):
        if retention_s:
            await self._r.setex(key, retention_s, value)
        else:
            await self._r.set(key, value)

    async def incr(self, key: str, retention_s: Optional[int] = None) -> int:
        async with self._r.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            if retention_s:
                pipe.expire(key, retention_s)
            value, *_ = await pipe.execute()
        return int(value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._r.delete(*keys)

    async def scan(self, pattern: str) -> List[str]:
        return [k async for k in self._r.scan_iter(match=pattern, count=500)]

    async def ping(self) -> bool:
        try:
            return bool(await self._r.ping())
        except Exception:
            return False

    async def close(self):
        await self._r.aclose()


async def connect_backend(redis_url: Optional[str]):
    """Return a RedisBackend if the URL answers a ping, else a MemoryBackend."""
    if redis_url:
        try:
            client = aioredis.from_url(redis_url, decode_responses=True, socket_timeout=2)
            await client.ping()
            log.info("Redis connected")
            return RedisBackend(client)
        except Exception as e:
            log.warning(f"Redis unavailable ({e}) — using in-memory store")
    return MemoryBackend()
