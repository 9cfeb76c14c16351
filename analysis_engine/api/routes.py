"""
Stock Intel — HTTP API
────────────────────────
  GET  /api/analysis                  latest verdicts (summary)
  GET  /api/analysis/{id}             stored verdict + freshness report
  POST /api/analysis/{id}             analyze one stock now
  POST /api/jobs                      start a batch job
  GET  /api/jobs                      recent jobs
  GET  /api/jobs/{id}/status          poll one job
  POST /api/jobs/{id}/cancel          cooperative stop
  GET  /api/tools                     capability declarations + config
  POST /api/tools/{name}              invoke one capability (ToolResult envelope)
  GET  /api/cache/stats               durable cache, dedup, rate limiter
  POST /api/cache/cleanup             drop expired durable records
  GET  /api/scheduler                 scheduled jobs

Reading a verdict never triggers analysis. A stale verdict is still
returned, flagged with its age.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from analysis_engine.api.auth import require_token
from analysis_engine.models.verdict import fmt_age
from analysis_engine.orchestrator.analyzer import SynthesisError
from analysis_engine.orchestrator.freshness import verdict_freshness
from analysis_engine.services import Services

log = logging.getLogger("ae.api")

router = APIRouter(prefix="/api", dependencies=[Depends(require_token)])


class BatchRequest(BaseModel):
    entity_ids:           Optional[List[str]] = None
    pacing_ms:            Optional[int] = None
    skip_fresh:           bool = True
    fresh_hours:          Optional[float] = None
    allow_missing_inputs: bool = False


def _services(request: Request) -> Services:
    return request.app.state.services


# ── Analysis ──────────────────────────────────────────────────

@router.get("/analysis", tags=["Analysis"])
async def list_verdicts(request: Request):
    verdicts = await _services(request).store.get_verdicts()
    rows = []
    for v in sorted(verdicts.values(), key=lambda v: v.score, reverse=True):
        rows.append({
            "entity_id": v.entity_id,
            **v.summary(),
            "stale":     v.is_expired(),
            "age":       fmt_age(max(v.age_seconds(), 0)),
        })
    return {"count": len(rows), "verdicts": rows}


@router.get("/analysis/{entity_id}", tags=["Analysis"])
async def get_verdict(entity_id: str, request: Request):
    verdict = await _services(request).store.get_verdict(entity_id)
    if verdict is None:
        raise HTTPException(404, f"No analysis for {entity_id.upper()}")
    return {
        "verdict":   verdict.to_dict(),
        "stale":     verdict.is_expired(),
        "age":       fmt_age(max(verdict.age_seconds(), 0)),
        "freshness": verdict_freshness(verdict).to_dict(),
    }


@router.post("/analysis/{entity_id}", tags=["Analysis"])
async def run_analysis(entity_id: str, request: Request,
                       allow_missing_inputs: bool = Query(False)):
    svc = _services(request)
    # a running batch owns the dedup pass
    if not svc.jobs.busy:
        svc.executor.clear_request_cache()
    try:
        outcome = await svc.analyzer.analyze_detailed(entity_id, allow_missing_inputs)
    except SynthesisError as e:
        raise HTTPException(502, str(e))
    if outcome.verdict is None:
        raise HTTPException(422, {"reason": outcome.reason, "missing": outcome.missing,
                                  "failures": outcome.failures})
    return {"verdict": outcome.verdict.to_dict(), "failures": outcome.failures}


# ── Jobs ──────────────────────────────────────────────────────

@router.post("/jobs", tags=["Jobs"])
async def start_job(request: Request, body: Optional[BatchRequest] = None):
    body = body or BatchRequest()
    svc = _services(request)
    s = svc.settings
    job = await svc.jobs.start_analysis_job(
        entity_ids           = body.entity_ids,
        pacing_ms            = s.batch_pacing_ms if body.pacing_ms is None else body.pacing_ms,
        skip_fresh           = body.skip_fresh,
        fresh_hours          = s.batch_skip_fresh_h if body.fresh_hours is None else body.fresh_hours,
        allow_missing_inputs = body.allow_missing_inputs,
    )
    return {"job": job.to_dict()}


@router.get("/jobs", tags=["Jobs"])
async def list_jobs(request: Request):
    return {"jobs": [j.to_dict() for j in _services(request).jobs.list()]}


@router.get("/jobs/{job_id}/status", tags=["Jobs"])
async def job_status(job_id: str, request: Request):
    job = await _services(request).jobs.get_status(job_id)
    if job is None:
        raise HTTPException(404, "Job not found")
    return job.to_dict()


@router.post("/jobs/{job_id}/cancel", tags=["Jobs"])
async def cancel_job(job_id: str, request: Request):
    jobs = _services(request).jobs
    if await jobs.get_status(job_id) is None:
        raise HTTPException(404, "Job not found")
    if not jobs.cancel(job_id):
        raise HTTPException(409, "Job is not running")
    return {"job_id": job_id, "cancelling": True}


# ── Tools ─────────────────────────────────────────────────────

@router.get("/tools", tags=["Tools"])
async def list_tools(request: Request):
    registry = _services(request).registry
    return {"tools": [
        {**decl, "source_class": registry.source_class(decl["name"]),
         "config": registry.config_for(decl["name"])}
        for decl in registry.declarations()
    ]}


@router.post("/tools/{name}", tags=["Tools"])
async def invoke_tool(name: str, request: Request,
                      args: Optional[Dict[str, Any]] = Body(None)):
    result = await _services(request).executor.execute(name, args or {})
    return result.to_dict()


# ── Cache / scheduler ─────────────────────────────────────────

@router.get("/cache/stats", tags=["Cache"])
async def cache_stats(request: Request):
    svc = _services(request)
    return {
        "durable":      await svc.cache.stats(),
        "executor":     svc.executor.stats(),
        "rate_limits":  svc.limiter.snapshot(),
    }


@router.post("/cache/cleanup", tags=["Cache"])
async def cache_cleanup(request: Request):
    return {"removed": await _services(request).cache.cleanup_expired()}


@router.get("/scheduler", tags=["Scheduler"])
async def scheduler_status(request: Request):
    return _services(request).scheduler.status()
