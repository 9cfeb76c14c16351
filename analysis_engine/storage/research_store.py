"""
Stock Intel — Research Store
──────────────────────────────
Persistence collaborator: JSON records by key over the shared backend.

Keys:
  verdict:<id>            latest AnalysisVerdict (upsert)
  verdict_history:<id>    last N verdict summaries, newest first
  technicals:<id>         last computed TechnicalSnapshot + updated_at
  fundamentals:<id>       ingested financials (written by ingestion)
  filings:<id>            ingested research filings
  entity:<id>             display metadata (name, ...)
  watchlist:entities      [{entity_id, name, interesting, delisted}]
  portfolio:holdings      [{entity_id, qty}]
  job:<id>                batch job record

Writes are last-write-wins upserts; no locking needed.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from analysis_engine.cache.ttl_config import VERDICT_HISTORY_N
from analysis_engine.models.job import Job
from analysis_engine.models.verdict import AnalysisVerdict

log = logging.getLogger("ae.store")

JOB_RETENTION_S = 7 * 24 * 3600


def _norm(entity_id: str) -> str:
    return entity_id.strip().upper()


class ResearchStore:

    def __init__(self, backend):
        self._backend = backend

    # ── Generic get / set / upsert ────────────────────────────

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self._backend.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            log.warning(f"Corrupt record at {key}: {e}")
            return None

    async def set_json(self, key: str, value: Any, retention_s: Optional[int] = None):
        await self._backend.set(key, json.dumps(value, default=str), retention_s)

    async def upsert(self, key: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        current = await self.get_json(key) or {}
        merged = {**current, **fields}
        await self.set_json(key, merged)
        return merged

    # ── Verdicts ──────────────────────────────────────────────

    async def get_verdict(self, entity_id: str) -> Optional[AnalysisVerdict]:
        d = await self.get_json(f"verdict:{_norm(entity_id)}")
        return AnalysisVerdict.from_dict(d) if d else None

    async def upsert_verdict(self, verdict: AnalysisVerdict):
        eid = _norm(verdict.entity_id)
        await self.set_json(f"verdict:{eid}", verdict.to_dict())
        history = await self.get_json(f"verdict_history:{eid}") or []
        history = ([verdict.summary()] + history)[:VERDICT_HISTORY_N]
        await self.set_json(f"verdict_history:{eid}", history)

    async def get_verdict_history(self, entity_id: str, limit: int = VERDICT_HISTORY_N) -> List[dict]:
        return (await self.get_json(f"verdict_history:{_norm(entity_id)}") or [])[:limit]

    async def get_verdicts(self, entity_ids: Optional[List[str]] = None) -> Dict[str, AnalysisVerdict]:
        if entity_ids is None:
            keys = await self._backend.scan("verdict:*")
            entity_ids = [k.split(":", 1)[1] for k in keys]
        out = {}
        for eid in entity_ids:
            v = await self.get_verdict(eid)
            if v:
                out[v.entity_id] = v
        return out

    # ── Technical snapshot (analyzer read-through) ────────────

    async def get_technicals(self, entity_id: str) -> Optional[dict]:
        return await self.get_json(f"technicals:{_norm(entity_id)}")

    async def set_technicals(self, entity_id: str, snapshot: dict, updated_at: Optional[str] = None):
        await self.set_json(f"technicals:{_norm(entity_id)}", {
            "snapshot":   snapshot,
            "updated_at": updated_at or datetime.now(timezone.utc).isoformat(),
        })

    # ── Ingested research ─────────────────────────────────────

    async def get_fundamentals(self, entity_id: str) -> Optional[dict]:
        return await self.get_json(f"fundamentals:{_norm(entity_id)}")

    async def set_fundamentals(self, entity_id: str, record: dict):
        await self.set_json(f"fundamentals:{_norm(entity_id)}", record)

    async def get_filings(self, entity_id: str) -> Optional[dict]:
        return await self.get_json(f"filings:{_norm(entity_id)}")

    async def set_filings(self, entity_id: str, record: dict):
        await self.set_json(f"filings:{_norm(entity_id)}", record)

    async def get_entity(self, entity_id: str) -> Dict[str, Any]:
        return await self.get_json(f"entity:{_norm(entity_id)}") or {}

    # ── Working set ───────────────────────────────────────────

    async def get_watchlist(self) -> List[dict]:
        return await self.get_json("watchlist:entities") or []

    async def get_holdings(self) -> List[dict]:
        return await self.get_json("portfolio:holdings") or []

    # ── Jobs ──────────────────────────────────────────────────

    async def save_job(self, job: Job):
        await self.set_json(f"job:{job.job_id}", job.to_dict(), JOB_RETENTION_S)

    async def get_job(self, job_id: str) -> Optional[Job]:
        d = await self.get_json(f"job:{job_id}")
        return Job.from_dict(d) if d else None
