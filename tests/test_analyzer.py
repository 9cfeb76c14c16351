import asyncio
import json
from datetime import timedelta

import pytest

from analysis_engine.orchestrator.analyzer import INPUT_CAPABILITIES, SynthesisError
from analysis_engine.tools.errors import NotFoundError, RateLimitedError
from analysis_engine.tools.payloads import TechnicalSnapshot
from analysis_engine.tools.registry import Capability

from conftest import Recorder, build_engine, default_handlers


@pytest.mark.asyncio
async def test_full_analysis_persists_verdict(engine):
    verdict = await engine.analyzer.analyze("itc")

    assert verdict.entity_id == "ITC"
    assert verdict.score == 72
    assert verdict.timing_signal == "accumulate"
    assert verdict.partial is False
    assert verdict.missing_inputs == []
    assert verdict.computed_at == engine.wall.now.isoformat()
    assert verdict.expires_at == (engine.wall.now + timedelta(days=7)).isoformat()
    assert set(verdict.per_source_fetched_at) == {"technicals", *INPUT_CAPABILITIES}
    assert all(ts == engine.wall.now.isoformat() for ts in verdict.per_source_fetched_at.values())

    stored = await engine.store.get_verdict("ITC")
    assert stored == verdict
    assert len(await engine.store.get_verdict_history("ITC")) == 1


@pytest.mark.asyncio
async def test_every_input_capability_is_called_once(engine):
    await engine.analyzer.analyze("ITC")
    for cap, recorder in engine.handlers.items():
        if cap is Capability.CHECK_WAIT_ZONE:
            assert recorder.calls == []
        else:
            assert len(recorder.calls) == 1, cap


@pytest.mark.asyncio
async def test_missing_mandatory_input_skips_without_writing():
    handlers = default_handlers()
    handlers[Capability.GET_TECHNICALS] = Recorder(exc=NotFoundError("No chart data"))
    eng = build_engine(handlers=handlers)

    assert await eng.analyzer.analyze("ITC") is None
    assert await eng.store.get_verdict("ITC") is None
    assert await eng.backend.scan("verdict*") == []
    assert handlers[Capability.SYNTHESIZE_VERDICT].calls == []

    outcome = await eng.analyzer.analyze_detailed("ITC")
    assert outcome.missing == ["technicals"]
    assert "technicals" in outcome.reason
    assert outcome.failures["technicals"].startswith("NOT_FOUND")


@pytest.mark.asyncio
async def test_override_proceeds_and_marks_partial():
    handlers = default_handlers()
    handlers[Capability.GET_TECHNICALS] = Recorder(exc=NotFoundError("No chart data"))
    eng = build_engine(handlers=handlers)

    verdict = await eng.analyzer.analyze("ITC", allow_missing_inputs=True)
    assert verdict.partial is True
    assert verdict.missing_inputs == ["technicals"]
    assert verdict.per_source_fetched_at["technicals"] is None
    assert (await eng.store.get_verdict("ITC")).partial is True

    context = json.loads(handlers[Capability.SYNTHESIZE_VERDICT].calls[0]["context"])
    assert context["missing"] == ["technicals"]
    assert "technicals" not in context["inputs"]


@pytest.mark.asyncio
async def test_optional_input_failure_does_not_abort_the_rest():
    handlers = default_handlers()
    handlers[Capability.GET_STOCK_NEWS] = Recorder(exc=RuntimeError("feed down"))
    eng = build_engine(handlers=handlers)

    verdict = await eng.analyzer.analyze("ITC")
    assert verdict is not None
    assert verdict.partial is False
    assert verdict.missing_inputs == ["news"]
    assert verdict.per_source_fetched_at["news"] is None
    assert len(handlers[Capability.GET_STOCK_THESIS].calls) == 1


@pytest.mark.asyncio
async def test_fresh_stored_technicals_are_reused(engine):
    updated = (engine.wall.now - timedelta(minutes=2)).isoformat()
    await engine.store.set_technicals("ITC", TechnicalSnapshot(symbol="ITC", rsi_14=38.0).to_dict(), updated)

    verdict = await engine.analyzer.analyze("ITC")
    assert engine.handlers[Capability.GET_TECHNICALS].calls == []
    assert verdict.per_source_fetched_at["technicals"] == updated


@pytest.mark.asyncio
async def test_stale_stored_technicals_are_recomputed_and_persisted(engine):
    updated = (engine.wall.now - timedelta(minutes=10)).isoformat()
    await engine.store.set_technicals("ITC", TechnicalSnapshot(symbol="ITC").to_dict(), updated)

    await engine.analyzer.analyze("ITC")
    assert len(engine.handlers[Capability.GET_TECHNICALS].calls) == 1
    stored = await engine.store.get_technicals("ITC")
    assert stored["updated_at"] == engine.wall.now.isoformat()
    assert stored["snapshot"]["current_price"] == 410.5


@pytest.mark.asyncio
async def test_synthesis_failure_fails_the_analysis():
    handlers = default_handlers()
    handlers[Capability.SYNTHESIZE_VERDICT] = Recorder(exc=RuntimeError("model returned garbage"))
    eng = build_engine(handlers=handlers)

    with pytest.raises(SynthesisError):
        await eng.analyzer.analyze("ITC")
    assert await eng.store.get_verdict("ITC") is None
    assert len(handlers[Capability.SYNTHESIZE_VERDICT].calls) == 1


@pytest.mark.asyncio
async def test_synthesis_is_retried_when_retryable():
    handlers = default_handlers()
    synth = Recorder(exc=RateLimitedError("overloaded"))
    handlers[Capability.SYNTHESIZE_VERDICT] = synth
    eng = build_engine(handlers=handlers)

    with pytest.raises(SynthesisError):
        await eng.analyzer.analyze("ITC")
    assert len(synth.calls) == 1 + eng.analyzer.synth_max_retries


@pytest.mark.asyncio
async def test_entity_name_is_used_for_text_queries(engine):
    await engine.store.set_json("entity:ITC", {"name": "ITC Limited"})
    await engine.analyzer.analyze("ITC")
    assert engine.handlers[Capability.GET_STOCK_NEWS].calls == [{"query": "ITC Limited"}]
    assert engine.handlers[Capability.GET_FUNDAMENTALS].calls == [{"symbol": "ITC"}]


def _delayed(handlers, delays):
    """Wrap each handler so it finishes after the given delay."""
    wrapped = {}
    for cap, handler in handlers.items():
        async def run(args, config, _h=handler, _d=delays.get(cap, 0)):
            await asyncio.sleep(_d)
            return await _h(args, config)
        wrapped[cap] = run
    return wrapped


@pytest.mark.asyncio
async def test_synthesis_context_ignores_arrival_order():
    caps = [c for c, _ in INPUT_CAPABILITIES.values()] + [Capability.GET_TECHNICALS]
    fast_first = {cap: 0.001 * i for i, cap in enumerate(caps)}
    slow_first = {cap: 0.001 * (len(caps) - i) for i, cap in enumerate(caps)}

    contexts = []
    for delays in (fast_first, slow_first):
        base = default_handlers()
        eng = build_engine(handlers=_delayed(base, delays))
        await eng.analyzer.analyze("ITC")
        contexts.append(base[Capability.SYNTHESIZE_VERDICT].calls[0]["context"])

    assert contexts[0] == contexts[1]
