import pytest

from analysis_engine.cache.ttl_config import SOURCE_TTL
from analysis_engine.orchestrator.rate_limiter import LIMITS
from analysis_engine.tools.registry import CATALOG, Capability, ToolRegistry

from conftest import Recorder, default_handlers


def test_catalog_is_closed_and_complete():
    registry = ToolRegistry(default_handlers())
    assert set(registry.names()) == {c.value for c in Capability}
    assert registry.resolve("get_stock_price") is None
    assert registry.source_class("get_technicals") == "yahoo"
    assert registry.source_class("synthesize_verdict") == "llm"


def test_unknown_handler_name_is_rejected():
    with pytest.raises(ValueError):
        ToolRegistry({"get_weather": Recorder()})


def test_missing_handler_is_registered_without_one():
    registry = ToolRegistry({Capability.GET_FUNDAMENTALS: Recorder()})
    assert registry.resolve("get_stock_news").handler is None


def test_overrides_merge_over_defaults_at_read_time():
    registry = ToolRegistry(default_handlers(), {"get_stock_news": {"max_headlines": 3}})
    config = registry.config_for("get_stock_news")
    assert config["max_headlines"] == 3
    assert config["enabled"] is True
    assert config["region"] == CATALOG[Capability.GET_STOCK_NEWS].default_config["region"]

    registry.set_overrides({"get_stock_news": {"enabled": False}})
    assert not registry.is_enabled("get_stock_news")
    assert registry.config_for("get_stock_news")["max_headlines"] == 10


def test_override_cannot_change_source_class():
    registry = ToolRegistry(default_handlers(), {
        "get_reddit_sentiment": {"source_class": "internal", "rate_limit": 1000, "limit": 5},
        "get_nonexistent": {"enabled": False},
    })
    assert registry.source_class("get_reddit_sentiment") == "reddit"
    config = registry.config_for("get_reddit_sentiment")
    assert "source_class" not in config
    assert "rate_limit" not in config
    assert config["limit"] == 5


def test_declarations_expose_required_params():
    registry = ToolRegistry(default_handlers())
    decls = {d["name"]: d for d in registry.declarations()}
    assert decls["get_technicals"]["parameters"]["required"] == ["symbol"]
    assert decls["synthesize_verdict"]["parameters"]["required"] == ["entity_id", "context"]
    assert CATALOG[Capability.GET_TECHNICALS].declaration.missing_args({"symbol": "  "}) == ["symbol"]


def test_every_limited_and_cached_source_class_is_in_use():
    used = {spec.source_class for spec in CATALOG.values()}
    assert set(LIMITS) == used
    assert set(SOURCE_TTL) == used
