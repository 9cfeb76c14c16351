"""
Stock Intel — Job Manager
───────────────────────────
Pollable wrapper around the batch runner. POST creates a job and returns
immediately; the batch runs as an asyncio task and every progress tick
is written back to the store so any reader can poll it.

    pending → running → completed | failed

Cancel is the runner's cooperative stop flag: the stock in flight
finishes, then the job ends as failed with "Cancelled". A runner is
per job, so its stop flag is never reset.

Only the newest LIST_LIMIT finished jobs stay in memory; older ones are
read back from the store.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from analysis_engine.models.job import Job, JobProgress, JobStatus
from analysis_engine.orchestrator.analyzer import StockAnalyzer
from analysis_engine.orchestrator.batch_runner import BatchRunner, resolve_working_set
from analysis_engine.storage.research_store import ResearchStore

log = logging.getLogger("ae.jobs")

ANALYSIS_JOB = "stock_analysis"
LIST_LIMIT   = 20


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobManager:

    def __init__(self, analyzer: StockAnalyzer, store: ResearchStore, runner_sleep=asyncio.sleep):
        self.analyzer = analyzer
        self.store    = store
        self._sleep   = runner_sleep
        self._jobs:    Dict[str, Job] = {}
        self._runners: Dict[str, BatchRunner] = {}
        self._tasks:   Dict[str, asyncio.Task] = {}

    async def create(self, job_type: str = ANALYSIS_JOB) -> Job:
        job = Job(job_id=uuid.uuid4().hex, type=job_type, created_at=_now_iso())
        self._jobs[job.job_id] = job
        await self.store.save_job(job)
        return job

    async def start_analysis_job(
        self,
        entity_ids: Optional[List[str]] = None,
        pacing_ms: int = 2000,
        skip_fresh: bool = True,
        fresh_hours: float = 24.0,
        allow_missing_inputs: bool = False,
    ) -> Job:
        """Create a job and kick off the batch. entity_ids=None → the working set."""
        job = await self.create(ANALYSIS_JOB)
        runner = BatchRunner(self.analyzer, self.store, sleep=self._sleep)
        self._runners[job.job_id] = runner
        self._tasks[job.job_id] = asyncio.create_task(self._run(
            job, runner, entity_ids, pacing_ms, skip_fresh, fresh_hours, allow_missing_inputs
        ))
        log.info(f"Job {job.job_id} queued")
        return job

    async def get_status(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if job is not None:
            return job
        return await self.store.get_job(job_id)

    @property
    def busy(self) -> bool:
        """True while any batch job is still running."""
        return any(not t.done() for t in self._tasks.values())

    def list(self, limit: int = LIST_LIMIT) -> List[Job]:
        jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def cancel(self, job_id: str) -> bool:
        runner = self._runners.get(job_id)
        job = self._jobs.get(job_id)
        if runner is None or job is None or job.status not in (JobStatus.PENDING, JobStatus.RUNNING):
            return False
        runner.stop()
        job.progress_message = "Cancelling after the current stock..."
        log.info(f"Job {job_id}: cancel requested")
        return True

    async def wait(self, job_id: str) -> Optional[Job]:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._jobs.get(job_id)

    async def shutdown(self):
        for runner in self._runners.values():
            runner.stop()
        pending = [t for t in self._tasks.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Internals ─────────────────────────────────────────────

    async def _run(self, job: Job, runner: BatchRunner, entity_ids, pacing_ms,
                   skip_fresh, fresh_hours, allow_missing_inputs):
        try:
            job.status     = JobStatus.RUNNING
            job.started_at = _now_iso()
            job.progress_message = "Resolving stocks..."
            await self.store.save_job(job)

            if entity_ids is None:
                entity_ids = await resolve_working_set(self.store)
            job.total = len(entity_ids)
            progress = await runner.run_batch(
                entity_ids,
                pacing_ms            = pacing_ms,
                skip_fresh           = skip_fresh,
                fresh_hours          = fresh_hours,
                allow_missing_inputs = allow_missing_inputs,
                on_progress          = lambda p: self._on_progress(job, p),
            )
        except asyncio.CancelledError:
            self._finish(job, JobStatus.FAILED, error="Cancelled")
            await self._persist(job)
            raise
        except Exception as e:
            log.error(f"Job {job.job_id} failed: {e}")
            self._finish(job, JobStatus.FAILED, error=str(e))
            await self._persist(job)
            return
        else:
            job.result = progress.to_dict()
            job.errors = list(progress.errors)
            job.completed = progress.completed
            if progress.stopped:
                self._finish(job, JobStatus.FAILED, error="Cancelled")
            else:
                job.progress = 100
                job.progress_message = f"Analyzed {progress.completed}/{progress.total} stocks"
                self._finish(job, JobStatus.COMPLETED)
            await self._persist(job)
            log.info(f"Job {job.job_id}: {job.status.value} — {job.completed}/{job.total}, "
                     f"{len(job.errors)} errors")
        finally:
            self._forget(job.job_id)

    async def _persist(self, job: Job):
        try:
            await self.store.save_job(job)
        except Exception as e:
            log.error(f"Job {job.job_id}: final state not saved ({e})")

    def _forget(self, job_id: str):
        """Drop the finished job's runner and task; keep the newest LIST_LIMIT finished records."""
        self._runners.pop(job_id, None)
        self._tasks.pop(job_id, None)
        finished = [j for j in self.list(limit=len(self._jobs))
                    if j.status in (JobStatus.COMPLETED, JobStatus.FAILED)]
        for old in finished[LIST_LIMIT:]:
            del self._jobs[old.job_id]

    async def _on_progress(self, job: Job, progress: JobProgress):
        job.total     = progress.total
        job.completed = progress.completed
        job.progress  = progress.percent
        job.errors    = list(progress.errors)
        job.progress_message = f"Processed {progress.completed}/{progress.total}"
        await self.store.save_job(job)

    @staticmethod
    def _finish(job: Job, status: JobStatus, error: Optional[str] = None):
        job.status       = status
        job.error_message = error
        job.completed_at = _now_iso()
