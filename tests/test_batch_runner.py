from unittest.mock import AsyncMock

import pytest

from analysis_engine.models.job import OutcomeStatus
from analysis_engine.orchestrator.batch_runner import resolve_working_set
from analysis_engine.tools.errors import NotFoundError
from analysis_engine.tools.registry import Capability

from conftest import Recorder, build_engine, default_handlers, synth_output


def _synth_failing_for(entity_id):
    def respond(args):
        if args["entity_id"] == entity_id:
            raise RuntimeError(f"model refused {entity_id}")
        return synth_output()
    return respond


@pytest.mark.asyncio
async def test_one_failure_never_aborts_the_batch():
    handlers = default_handlers()
    handlers[Capability.SYNTHESIZE_VERDICT] = Recorder(_synth_failing_for("C"))
    eng = build_engine(handlers=handlers)

    progress = await eng.runner.run_batch(["A", "B", "C", "D", "E"], pacing_ms=0, skip_fresh=False)

    assert progress.completed == 5
    assert len(progress.outcomes) == 5
    assert len(progress.errors) == 1
    assert progress.errors[0].startswith("C:")
    assert [o.entity_id for o in progress.outcomes] == ["A", "B", "C", "D", "E"]
    assert progress.outcomes[2].status is OutcomeStatus.FAILED
    assert progress.percent == 100


@pytest.mark.asyncio
async def test_pacing_between_entities_not_after_last(engine):
    await engine.runner.run_batch(["A", "B", "C"], pacing_ms=7300, skip_fresh=False)
    assert engine.clock.sleeps.count(7.3) == 2


@pytest.mark.asyncio
async def test_progress_is_observable_and_monotonic(engine):
    seen = []
    await engine.runner.run_batch(
        ["A", "B", "C"], pacing_ms=0, skip_fresh=False,
        on_progress=lambda p: seen.append((p.completed, p.current_entity_id, len(p.outcomes))),
    )
    assert seen == [(1, "A", 1), (2, "B", 2), (3, "C", 3)]


@pytest.mark.asyncio
async def test_fresh_verdicts_are_skipped(engine):
    await engine.analyzer.analyze("A")
    engine.wall.advance(hours=3)

    progress = await engine.runner.run_batch(["A", "B"], pacing_ms=0, skip_fresh=True, fresh_hours=24)
    assert [o.status for o in progress.outcomes] == [OutcomeStatus.SKIPPED_FRESH, OutcomeStatus.ANALYZED]
    assert progress.outcomes[0].score == 72
    assert progress.errors == []


@pytest.mark.asyncio
async def test_old_verdicts_are_reanalyzed(engine):
    await engine.analyzer.analyze("A")
    engine.wall.advance(hours=30)
    progress = await engine.runner.run_batch(["A"], pacing_ms=0, skip_fresh=True, fresh_hours=24)
    assert progress.outcomes[0].status is OutcomeStatus.ANALYZED


@pytest.mark.asyncio
async def test_missing_inputs_is_an_outcome_not_an_error():
    handlers = default_handlers()
    handlers[Capability.GET_FUNDAMENTALS] = Recorder(exc=NotFoundError("No financials"))
    eng = build_engine(handlers=handlers)

    progress = await eng.runner.run_batch(["A", "B"], pacing_ms=0, skip_fresh=False)
    assert [o.status for o in progress.outcomes] == [OutcomeStatus.INCOMPLETE] * 2
    assert progress.errors == []
    assert "fundamentals" in progress.outcomes[0].reason


@pytest.mark.asyncio
async def test_stop_is_checked_between_entities(engine):
    def stop_after_first(progress):
        if progress.completed == 1:
            engine.runner.stop()

    progress = await engine.runner.run_batch(["A", "B", "C"], pacing_ms=0, skip_fresh=False,
                                             on_progress=stop_after_first)
    assert progress.stopped
    assert progress.completed == 1
    assert await engine.store.get_verdict("B") is None


@pytest.mark.asyncio
async def test_request_cache_is_cleared_between_entities(engine):
    cleared = []
    clear = engine.executor.clear_request_cache

    def spy():
        cleared.append(engine.runner.progress.current_entity_id)
        clear()

    engine.executor.clear_request_cache = spy
    await engine.runner.run_batch(["A", "B"], pacing_ms=0, skip_fresh=False)
    assert cleared == ["A", "B"]


@pytest.mark.asyncio
async def test_working_set_resolution(engine):
    await engine.store.set_json("watchlist:entities", [
        {"entity_id": "itc", "interesting": True},
        {"entity_id": "TCS", "interesting": False},
        {"entity_id": "YESBANK", "interesting": True, "delisted": True},
        {"entity_id": "HDFCBANK", "interesting": True},
    ])
    await engine.store.set_json("portfolio:holdings", [
        {"entity_id": "ITC", "qty": 10},
        {"entity_id": "INFY", "qty": 5},
        {"entity_id": "YESBANK", "qty": 100},
    ])
    assert await resolve_working_set(engine.store) == ["ITC", "HDFCBANK", "INFY"]


@pytest.mark.asyncio
async def test_unexpected_exception_is_recorded(engine):
    real = engine.analyzer.analyze_detailed

    async def flaky(eid, allow_missing_inputs=False):
        if eid == "C":
            raise ConnectionError("store unreachable")
        return await real(eid, allow_missing_inputs)

    engine.analyzer.analyze_detailed = AsyncMock(side_effect=flaky)
    progress = await engine.runner.run_batch(list("ABCDE"), pacing_ms=0, skip_fresh=False)

    assert progress.completed == 5
    assert len(progress.outcomes) == 5
    assert progress.errors == ["C: store unreachable"]
    assert engine.analyzer.analyze_detailed.await_count == 5
