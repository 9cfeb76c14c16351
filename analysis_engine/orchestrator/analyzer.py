"""
Stock Intel — Stock Analyzer
──────────────────────────────
Per-stock aggregation. Given one entity:

  1. fan out to every input capability at once (technicals via a local
     read-through on the stored snapshot)
  2. completeness gate — fundamentals + technicals are mandatory
  3. one synthesis call through the executor (with retry)
  4. upsert the verdict, stamped with per-input fetch times

One input failing never aborts the others. A missing mandatory input
skips the stock (returns None, writes nothing) unless the caller passes
allow_missing_inputs, in which case the verdict is marked partial.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from analysis_engine.cache.ttl_config import TECHNICALS_REFRESH_S, VERDICT_TTL_S
from analysis_engine.models.verdict import AnalysisVerdict, _parse_ts
from analysis_engine.orchestrator.synthesizer import build_context
from analysis_engine.storage.research_store import ResearchStore
from analysis_engine.tools.executor import ToolExecutor
from analysis_engine.tools.payloads import TechnicalSnapshot
from analysis_engine.tools.registry import Capability
from analysis_engine.tools.result import ToolMeta, ToolResult

log = logging.getLogger("ae.analyzer")

MANDATORY_INPUTS = ("fundamentals", "technicals")

# input name → (capability, argument it takes). Technicals are handled separately.
INPUT_CAPABILITIES: Dict[str, Tuple[Capability, str]] = {
    "fundamentals":   (Capability.GET_FUNDAMENTALS,     "symbol"),
    "news":           (Capability.GET_STOCK_NEWS,       "query"),
    "sentiment":      (Capability.GET_REDDIT_SENTIMENT, "query"),
    "thesis":         (Capability.GET_STOCK_THESIS,     "query"),
    "filings":        (Capability.GET_FILINGS,          "symbol"),
    "prior_verdicts": (Capability.GET_PRIOR_VERDICTS,   "symbol"),
}

ALL_INPUTS = ("technicals",) + tuple(INPUT_CAPABILITIES)


class SynthesisError(Exception):
    """The synthesizer failed after retries — the whole analysis fails."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AnalysisInputs:
    """Sub-results gathered for one entity, each with its own fetch time."""
    entity_id: str
    results:   Dict[str, ToolResult] = field(default_factory=dict)
    failures:  Dict[str, str] = field(default_factory=dict)

    def add(self, name: str, result: ToolResult):
        if result.success:
            self.results[name] = result
        else:
            err = result.error
            self.failures[name] = f"{err.code.value}: {err.message}" if err else "failed"

    def missing(self, names=ALL_INPUTS) -> List[str]:
        return sorted(n for n in names if n not in self.results)

    def fetched_at(self) -> Dict[str, Optional[str]]:
        return {n: (self.results[n].meta.fetched_at if n in self.results else None)
                for n in ALL_INPUTS}

    def context_inputs(self) -> Dict[str, dict]:
        out = {}
        for name, res in self.results.items():
            data = res.data.to_dict() if hasattr(res.data, "to_dict") else res.data
            out[name] = {"data": data, "fetched_at": res.meta.fetched_at}
        return out


@dataclass
class AnalysisOutcome:
    entity_id: str
    verdict:   Optional[AnalysisVerdict]
    missing:   List[str] = field(default_factory=list)
    failures:  Dict[str, str] = field(default_factory=dict)

    @property
    def reason(self) -> Optional[str]:
        if self.verdict is not None:
            return None
        return f"Missing mandatory inputs: {', '.join(self.missing)}"


class StockAnalyzer:

    def __init__(
        self,
        executor: ToolExecutor,
        store: ResearchStore,
        technicals_refresh_s: float = TECHNICALS_REFRESH_S,
        verdict_ttl_s: float = VERDICT_TTL_S,
        synth_max_retries: int = 2,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.executor = executor
        self.store    = store
        self.technicals_refresh_s = technicals_refresh_s
        self.verdict_ttl_s        = verdict_ttl_s
        self.synth_max_retries    = synth_max_retries
        self._now     = now

    async def analyze(self, entity_id: str, allow_missing_inputs: bool = False) -> Optional[AnalysisVerdict]:
        outcome = await self.analyze_detailed(entity_id, allow_missing_inputs)
        return outcome.verdict

    async def analyze_detailed(self, entity_id: str, allow_missing_inputs: bool = False) -> AnalysisOutcome:
        """
        Run one full analysis. Returns an outcome whose verdict is None when
        the completeness gate skipped the stock. Raises SynthesisError when
        scoring itself fails.
        """
        eid = entity_id.strip().upper()
        t0 = time.monotonic()
        log.info(f"Analyzing {eid} (allow_missing={allow_missing_inputs})")

        entity = await self.store.get_entity(eid)
        name = entity.get("name")
        inputs = await self.gather_inputs(eid, name or eid)

        mandatory_missing = inputs.missing(MANDATORY_INPUTS)
        if mandatory_missing and not allow_missing_inputs:
            log.info(f"{eid}: skipped — missing {', '.join(mandatory_missing)}")
            return AnalysisOutcome(eid, None, mandatory_missing, dict(inputs.failures))

        missing = inputs.missing()
        context = build_context(eid, name, inputs.context_inputs(), missing)
        result = await self.executor.execute_with_retry(
            Capability.SYNTHESIZE_VERDICT.value,
            {"entity_id": eid, "context": context},
            max_retries=self.synth_max_retries,
        )
        if not result.success:
            err = result.error
            raise SynthesisError(f"Synthesis failed for {eid}: {err.code.value} — {err.message}")

        out = result.data
        now = self._now()
        verdict = AnalysisVerdict(
            entity_id              = eid,
            score                  = out.score,
            thesis_summary         = out.thesis_summary,
            risks_summary          = out.risks_summary,
            timing_signal          = out.timing_signal,
            alert_flag             = out.alert_flag,
            alert_reason           = out.alert_reason,
            raw_synthesizer_output = out.raw,
            per_source_fetched_at  = inputs.fetched_at(),
            partial                = bool(mandatory_missing),
            missing_inputs         = missing,
            computed_at            = now.isoformat(),
            expires_at             = (now + timedelta(seconds=self.verdict_ttl_s)).isoformat(),
        )
        await self.store.upsert_verdict(verdict)

        duration = round(time.monotonic() - t0, 2)
        log.info(f"{eid}: score={verdict.score} timing={verdict.timing_signal} "
                 f"partial={verdict.partial} in {duration}s")
        return AnalysisOutcome(eid, verdict, missing, dict(inputs.failures))

    # ── Fan-out ───────────────────────────────────────────────

    async def gather_inputs(self, entity_id: str, query: str) -> AnalysisInputs:
        names = ["technicals"]
        tasks = [self._technicals(entity_id)]
        for input_name, (cap, param) in INPUT_CAPABILITIES.items():
            names.append(input_name)
            value = entity_id if param == "symbol" else query
            tasks.append(self.executor.execute(cap.value, {param: value}))

        results = await asyncio.gather(*tasks, return_exceptions=True)

        inputs = AnalysisInputs(entity_id)
        for input_name, res in zip(names, results):
            if isinstance(res, BaseException):
                log.warning(f"{entity_id}/{input_name}: gather error — {res}")
                inputs.failures[input_name] = f"unknown: {res}"
                continue
            inputs.add(input_name, res)
        if inputs.failures:
            log.debug(f"{entity_id}: failed inputs {sorted(inputs.failures)}")
        return inputs

    async def _technicals(self, entity_id: str) -> ToolResult:
        """Reuse the stored snapshot while it is younger than the refresh window."""
        stored = await self.store.get_technicals(entity_id)
        now = self._now()
        if stored and stored.get("snapshot"):
            updated = _parse_ts(stored.get("updated_at"))
            if updated is not None:
                age_s = (now - updated).total_seconds()
                if 0 <= age_s < self.technicals_refresh_s:
                    log.debug(f"{entity_id}: reusing technicals ({int(age_s)}s old)")
                    return ToolResult.ok(
                        TechnicalSnapshot.from_dict(stored["snapshot"]),
                        ToolMeta(source_class="yahoo", fetched_at=stored["updated_at"],
                                 from_cache=True, cache_age_hours=round(age_s / 3600, 2)),
                    )

        result = await self.executor.execute(Capability.GET_TECHNICALS.value, {"symbol": entity_id})
        if result.success:
            await self.store.set_technicals(
                entity_id, result.data.to_dict(), result.meta.fetched_at or now.isoformat()
            )
        return result
