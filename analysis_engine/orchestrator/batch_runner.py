"""
Stock Intel — Batch Runner
────────────────────────────
Runs the analyzer over a list of stocks, one at a time.

Sequential on purpose: every stock shares the same per-source rate
budgets, so fanning out across stocks would only queue on the limiter.
Between stocks: the request dedup cache is cleared and the runner sleeps
pacing_ms (not after the last one).

A stock that fails is recorded and the batch moves on. stop() is
cooperative — checked between stocks, never interrupting a live call.
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Union

from analysis_engine.models.job import EntityOutcome, JobProgress, OutcomeStatus
from analysis_engine.orchestrator.analyzer import StockAnalyzer
from analysis_engine.storage.research_store import ResearchStore

log = logging.getLogger("ae.batch")

ProgressCallback = Callable[[JobProgress], Union[None, Awaitable[None]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def resolve_working_set(store: ResearchStore) -> List[str]:
    """
    Stocks worth analysing: watchlist entries flagged interesting plus
    current holdings, minus anything delisted. Order kept, duplicates dropped.
    """
    watchlist = await store.get_watchlist()
    holdings  = await store.get_holdings()

    delisted = {w["entity_id"].strip().upper() for w in watchlist
                if w.get("entity_id") and w.get("delisted")}
    candidates = [w["entity_id"] for w in watchlist
                  if w.get("entity_id") and w.get("interesting") and not w.get("delisted")]
    candidates += [h["entity_id"] for h in holdings if h.get("entity_id")]

    seen, out = set(), []
    for eid in candidates:
        eid = eid.strip().upper()
        if eid and eid not in seen and eid not in delisted:
            out.append(eid)
            seen.add(eid)
    return out


class BatchRunner:

    def __init__(
        self,
        analyzer: StockAnalyzer,
        store: ResearchStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.analyzer = analyzer
        self.store    = store
        self._sleep   = sleep
        self._now     = now
        self._stop    = False
        self.progress: Optional[JobProgress] = None

    def stop(self):
        self._stop = True

    @property
    def stopping(self) -> bool:
        return self._stop

    async def run_batch(
        self,
        entity_ids: List[str],
        pacing_ms: int = 2000,
        skip_fresh: bool = True,
        fresh_hours: float = 24.0,
        allow_missing_inputs: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> JobProgress:
        progress = JobProgress(total=len(entity_ids))
        self.progress = progress
        t0 = time.monotonic()
        log.info(f"[batch] Starting — {len(entity_ids)} stocks (pacing={pacing_ms}ms, "
                 f"skip_fresh={skip_fresh})")

        for i, raw_id in enumerate(entity_ids):
            if self._stop:
                progress.stopped = True
                log.info(f"[batch] Stop requested — {progress.completed}/{progress.total} done")
                break

            eid = raw_id.strip().upper()
            progress.current_entity_id = eid
            self.analyzer.executor.clear_request_cache()

            progress.record(await self._run_one(eid, skip_fresh, fresh_hours, allow_missing_inputs))
            await self._notify(on_progress, progress)

            if pacing_ms > 0 and i < len(entity_ids) - 1:
                await self._sleep(pacing_ms / 1000)

        progress.current_entity_id = None
        elapsed = round(time.monotonic() - t0, 1)
        analyzed = sum(1 for o in progress.outcomes if o.status is OutcomeStatus.ANALYZED)
        log.info(f"[batch] Done — {analyzed} analyzed  {len(progress.errors)} errors  "
                 f"{progress.completed}/{progress.total}  {elapsed}s")
        return progress

    async def _run_one(self, eid: str, skip_fresh: bool, fresh_hours: float,
                       allow_missing_inputs: bool) -> EntityOutcome:
        try:
            if skip_fresh:
                existing = await self.store.get_verdict(eid)
                if existing and not existing.is_stale(fresh_hours * 3600, self._now()):
                    log.debug(f"[batch] {eid}: verdict still fresh — skipped")
                    return EntityOutcome(eid, OutcomeStatus.SKIPPED_FRESH, score=existing.score,
                                         reason="Verdict newer than freshness threshold")

            outcome = await self.analyzer.analyze_detailed(eid, allow_missing_inputs)
            if outcome.verdict is None:
                return EntityOutcome(eid, OutcomeStatus.INCOMPLETE, reason=outcome.reason)
            return EntityOutcome(eid, OutcomeStatus.ANALYZED, score=outcome.verdict.score)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"[batch] {eid}: {e}")
            return EntityOutcome(eid, OutcomeStatus.FAILED, reason=str(e)[:300] or type(e).__name__)

    @staticmethod
    async def _notify(callback: Optional[ProgressCallback], progress: JobProgress):
        if callback is None:
            return
        try:
            ret = callback(progress)
            if inspect.isawaitable(ret):
                await ret
        except Exception as e:
            log.warning(f"[batch] Progress callback failed: {e}")
