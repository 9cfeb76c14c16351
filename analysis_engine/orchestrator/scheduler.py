"""
Stock Intel — Scheduler
═════════════════════════

Two jobs, both on APScheduler's AsyncIOScheduler:

  06:30 IST  NIGHTLY BATCH
         ├─ Why:    Before the NSE open. Overnight results, filings and news
         │          are in; prices are yesterday's close.
         └─ Stocks: the working set (interesting watchlist + holdings)
                    Stocks with a verdict younger than the skip window are skipped.

  hh:05      CACHE CLEANUP
         └─ Drops logically expired durable tool-cache records.

Times are in SCHEDULER_TZ (default Asia/Kolkata).
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from analysis_engine.cache.cache_store import CacheStore
from analysis_engine.config import Settings
from analysis_engine.orchestrator.jobs import JobManager

log = logging.getLogger("ae.scheduler")

GRACE_S = 300   # 5-minute misfire grace window


class AnalysisScheduler:

    def __init__(self, jobs: JobManager, cache: CacheStore, settings: Settings):
        self.jobs     = jobs
        self.cache    = cache
        self.settings = settings
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # ── Jobs ──────────────────────────────────────────────────

    async def job_nightly_batch(self):
        s = self.settings
        job = await self.jobs.start_analysis_job(
            entity_ids  = None,
            pacing_ms   = s.batch_pacing_ms,
            skip_fresh  = True,
            fresh_hours = s.batch_skip_fresh_h,
        )
        log.info(f"[nightly] Batch job {job.job_id} started")

    async def job_cache_cleanup(self):
        removed = await self.cache.cleanup_expired()
        log.info(f"[cleanup] Removed {removed} expired cache records")

    # ── Control ───────────────────────────────────────────────

    def start(self):
        if self.running:
            log.warning("Scheduler already running — ignoring start call")
            return
        s = self.settings
        self._scheduler = AsyncIOScheduler(timezone=s.scheduler_tz)

        self._scheduler.add_job(
            self.job_nightly_batch,
            CronTrigger(hour=s.batch_cron_hour, minute=s.batch_cron_minute, timezone=s.scheduler_tz),
            id                 = "nightly_batch",
            name               = f"{s.batch_cron_hour:02d}:{s.batch_cron_minute:02d}  Nightly analysis batch",
            max_instances      = 1,
            misfire_grace_time = GRACE_S,
            replace_existing   = True,
        )
        self._scheduler.add_job(
            self.job_cache_cleanup,
            CronTrigger(minute=5, timezone=s.scheduler_tz),
            id                 = "cache_cleanup",
            name               = "hh:05  Durable cache cleanup",
            max_instances      = 1,
            misfire_grace_time = GRACE_S,
            replace_existing   = True,
        )
        self._scheduler.start()
        log.info(f"Scheduler live — {len(self._scheduler.get_jobs())} jobs ({s.scheduler_tz})")

    def stop(self):
        if self.running:
            self._scheduler.shutdown(wait=False)
            log.info("Scheduler stopped")
        self._scheduler = None

    def status(self) -> dict:
        if not self.running:
            return {"running": False, "jobs": []}
        jobs = []
        for job in self._scheduler.get_jobs():
            nxt = job.next_run_time
            jobs.append({
                "id":       job.id,
                "name":     job.name,
                "next_run": nxt.isoformat() if nxt else None,
            })
        jobs.sort(key=lambda j: j["next_run"] or "9999")
        return {"running": True, "job_count": len(jobs), "jobs": jobs}
