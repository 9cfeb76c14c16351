"""
Stock Intel — Durable Tool Cache
──────────────────────────────────
Shared cache for capability responses, keyed by source class + a stable
digest of the arguments. One record per key: writes upsert (payload
replaced, expiry and hit count reset), never append. Reads never write
the record back; the hit count lives in its own counter key.

A record is a logical miss once now >= expires_at, whether or not the
backend still physically holds it. Physical cleanup is cleanup_expired(),
run on a schedule.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from analysis_engine.cache.ttl_config import RETENTION_GRACE_S, SOURCE_TTL, DEFAULT_SOURCE_TTL

log = logging.getLogger("ae.cache")

KEY_PREFIX  = "tool_cache"
HITS_PREFIX = "tool_cache_hits"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def args_digest(args: Optional[Dict[str, Any]]) -> str:
    """Order-independent digest: {a:1,b:2} and {b:2,a:1} collide."""
    blob = json.dumps(args or {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()[:16]


def cache_key(source_class: str, args: Optional[Dict[str, Any]]) -> str:
    return f"{KEY_PREFIX}:{source_class}:{args_digest(args)}"


def hits_key(key: str) -> str:
    return f"{HITS_PREFIX}:{key}"


@dataclass
class CacheEntry:
    cache_key:       str
    source_class:    str
    args_digest:     str
    serialized_args: str
    payload:         Any
    created_at:      str           # ISO timestamp
    expires_at:      str

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        d = json.loads(raw)
        return cls(**{k: d[k] for k in cls.__dataclass_fields__ if k in d})

    def expires_dt(self) -> datetime:
        return datetime.fromisoformat(self.expires_at)

    def created_dt(self) -> datetime:
        return datetime.fromisoformat(self.created_at)


@dataclass
class CacheLookup:
    hit:       bool
    payload:   Any = None
    age_hours: Optional[float] = None


class CacheStore:
    """Durable TTL cache over a storage backend (see cache/redis_client.py)."""

    def __init__(self, backend, ttl_table: Optional[Dict[str, int]] = None,
                 now: Callable[[], datetime] = _utcnow):
        self._backend = backend
        self._ttl     = dict(SOURCE_TTL if ttl_table is None else ttl_table)
        self._now     = now

    def ttl_for(self, source_class: str) -> int:
        return self._ttl.get(source_class, DEFAULT_SOURCE_TTL)

    def is_cacheable(self, source_class: str) -> bool:
        return self.ttl_for(source_class) > 0

    async def get(self, source_class: str, args: Dict[str, Any]) -> CacheLookup:
        if not self.is_cacheable(source_class):
            return CacheLookup(hit=False)

        key = cache_key(source_class, args)
        try:
            raw = await self._backend.get(key)
        except Exception as e:
            log.warning(f"Cache read failed for {key}: {e}")
            return CacheLookup(hit=False)
        if not raw:
            return CacheLookup(hit=False)

        try:
            entry = CacheEntry.from_json(raw)
            expires = entry.expires_dt()
            created = entry.created_dt()
        except (ValueError, TypeError, KeyError) as e:
            log.warning(f"Corrupt cache record {key}: {e}")
            return CacheLookup(hit=False)

        now = self._now()
        if now >= expires:
            log.debug(f"Cache EXPIRED {key}")
            return CacheLookup(hit=False)

        try:
            retention = int((expires - now).total_seconds()) + RETENTION_GRACE_S
            hits = await self._backend.incr(hits_key(key), retention)
        except Exception as e:
            log.debug(f"Hit-count update lost for {key}: {e}")
            hits = None

        age_hours = round((now - created).total_seconds() / 3600, 1)
        log.debug(f"Cache HIT {key} ({age_hours}h old, {hits} hits)")
        return CacheLookup(hit=True, payload=entry.payload, age_hours=age_hours)

    async def hit_count(self, source_class: str, args: Dict[str, Any]) -> int:
        raw = await self._backend.get(hits_key(cache_key(source_class, args)))
        return int(raw or 0)

    async def set(self, source_class: str, args: Dict[str, Any], payload: Any) -> bool:
        ttl = self.ttl_for(source_class)
        if ttl <= 0:
            return False

        now = self._now()
        key = cache_key(source_class, args)
        entry = CacheEntry(
            cache_key       = key,
            source_class    = source_class,
            args_digest     = args_digest(args),
            serialized_args = json.dumps(args or {}, sort_keys=True, default=str),
            payload         = payload,
            created_at      = now.isoformat(),
            expires_at      = (now + timedelta(seconds=ttl)).isoformat(),
        )
        await self._backend.set(key, entry.to_json(), ttl + RETENTION_GRACE_S)
        await self._backend.delete(hits_key(key))
        log.debug(f"Cache SET {key} (TTL {ttl // 60}m)")
        return True

    async def _entries(self):
        for key in await self._backend.scan(f"{KEY_PREFIX}:*"):
            raw = await self._backend.get(key)
            if not raw:
                continue
            try:
                yield key, CacheEntry.from_json(raw)
            except (ValueError, TypeError) as e:
                log.warning(f"Corrupt cache record {key}: {e}")
                yield key, None

    async def cleanup_expired(self) -> int:
        """Physically drop logically-expired (and corrupt) records."""
        now = self._now()
        stale = []
        async for key, entry in self._entries():
            if entry is None or now >= entry.expires_dt():
                stale.append(key)
        removed = 0
        if stale:
            removed = await self._backend.delete(*stale)
            await self._backend.delete(*[hits_key(k) for k in stale])
        log.info(f"Cache cleanup: removed {removed} expired entries")
        return removed

    async def stats(self) -> dict:
        now = self._now()
        total = expired = 0
        by_source: Dict[str, int] = {}
        async for _, entry in self._entries():
            total += 1
            if entry is None or now >= entry.expires_dt():
                expired += 1
                continue
            by_source[entry.source_class] = by_source.get(entry.source_class, 0) + 1
        return {"total_entries": total, "expired_entries": expired, "by_source": by_source}
