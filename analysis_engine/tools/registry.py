"""
Stock Intel — Tool Registry
─────────────────────────────
Closed catalog of capabilities. Each one has:
  - a declaration (parameter shape, for introspection / LLM function calling)
  - a source class (drives rate limiting and cache TTL)
  - a payload type (what a successful call returns)
  - a default config (enabled flag, timeout, tunables)

Handlers are wired once at startup (services.py). Dispatch is by exact
name against the Capability enum — an unknown name is a hard UNKNOWN error,
never a silent no-op.

User-level overrides are merged over the defaults at read time. They can
toggle/tune a capability; they can never change its source class.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Type

from analysis_engine.tools.payloads import (
    FilingsDigest, FundamentalsSnapshot, NewsDigest, Payload, SentimentReading,
    SynthesizerOutput, TechnicalSnapshot, ThesisDigest, VerdictHistory, WaitZoneCheck,
)

log = logging.getLogger("ae.registry")


class Capability(str, Enum):
    GET_FUNDAMENTALS     = "get_fundamentals"
    GET_TECHNICALS       = "get_technicals"
    CHECK_WAIT_ZONE      = "check_wait_zone"
    GET_STOCK_NEWS       = "get_stock_news"
    GET_REDDIT_SENTIMENT = "get_reddit_sentiment"
    GET_STOCK_THESIS     = "get_stock_thesis"
    GET_FILINGS          = "get_filings"
    GET_PRIOR_VERDICTS   = "get_prior_verdicts"
    SYNTHESIZE_VERDICT   = "synthesize_verdict"


# (args, merged_config) -> payload
Handler = Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class ParamSpec:
    type:        str                       # "string" | "number" | "boolean"
    description: str
    enum:        Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class ToolDeclaration:
    name:        str
    description: str
    parameters:  Dict[str, ParamSpec] = field(default_factory=dict)
    required:    Tuple[str, ...] = ()

    def missing_args(self, args: Mapping[str, Any]) -> List[str]:
        missing = []
        for name in self.required:
            value = args.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return missing

    def to_dict(self) -> dict:
        props = {}
        for pname, p in self.parameters.items():
            props[pname] = {"type": p.type, "description": p.description}
            if p.enum:
                props[pname]["enum"] = list(p.enum)
        return {
            "name":        self.name,
            "description": self.description,
            "parameters":  {"type": "object", "properties": props, "required": list(self.required)},
        }


@dataclass(frozen=True)
class ToolSpec:
    capability:     Capability
    declaration:    ToolDeclaration
    source_class:   str
    payload_type:   Type[Payload]
    default_config: Mapping[str, Any]


def _symbol_param(desc: str = "Stock symbol (e.g. 'RELIANCE', 'TCS'). No exchange suffix.") -> Dict[str, ParamSpec]:
    return {"symbol": ParamSpec("string", desc)}


def _query_param(desc: str) -> Dict[str, ParamSpec]:
    return {"query": ParamSpec("string", desc)}


_BASE_CONFIG = {"enabled": True, "timeout_s": 20.0}

CATALOG: Dict[Capability, ToolSpec] = {
    Capability.GET_FUNDAMENTALS: ToolSpec(
        Capability.GET_FUNDAMENTALS,
        ToolDeclaration(
            "get_fundamentals",
            "Get the last four reported periods of financials and the latest "
            "earnings-call highlights for a stock.",
            _symbol_param(), ("symbol",),
        ),
        "internal", FundamentalsSnapshot, {**_BASE_CONFIG, "periods": 4},
    ),
    Capability.GET_TECHNICALS: ToolSpec(
        Capability.GET_TECHNICALS,
        ToolDeclaration(
            "get_technicals",
            "Get technical indicators (RSI, SMAs) and current price for a stock. "
            "Use this to check if a stock is in value territory or overextended.",
            _symbol_param(), ("symbol",),
        ),
        "yahoo", TechnicalSnapshot, {**_BASE_CONFIG, "exchange_suffix": ".NS", "range": "1y"},
    ),
    Capability.CHECK_WAIT_ZONE: ToolSpec(
        Capability.CHECK_WAIT_ZONE,
        ToolDeclaration(
            "check_wait_zone",
            "Check if a stock is in the 'wait zone' — conditions where buying is "
            "not recommended. Returns specific reasons if the stock should be avoided.",
            _symbol_param("Stock symbol to check"), ("symbol",),
        ),
        "internal", WaitZoneCheck, dict(_BASE_CONFIG),
    ),
    Capability.GET_STOCK_NEWS: ToolSpec(
        Capability.GET_STOCK_NEWS,
        ToolDeclaration(
            "get_stock_news",
            "Get recent news headlines for a stock from Google News, with a "
            "keyword sentiment score and detected key events.",
            _query_param("Stock or company name (e.g. 'ITC', 'Tata Motors')"), ("query",),
        ),
        "google_news", NewsDigest, {**_BASE_CONFIG, "max_headlines": 10, "region": "IN"},
    ),
    Capability.GET_REDDIT_SENTIMENT: ToolSpec(
        Capability.GET_REDDIT_SENTIMENT,
        ToolDeclaration(
            "get_reddit_sentiment",
            "Get retail investor sentiment from Reddit. Use as a CONTRARIAN "
            "indicator — crowded bullishness can mean a crowded trade.",
            _query_param("Stock name or symbol to search for"), ("query",),
        ),
        "reddit", SentimentReading,
        {**_BASE_CONFIG, "limit": 10, "subreddits": ["IndiaInvestments", "IndianStreetBets"]},
    ),
    Capability.GET_STOCK_THESIS: ToolSpec(
        Capability.GET_STOCK_THESIS,
        ToolDeclaration(
            "get_stock_thesis",
            "Get the investment thesis and recent discussion for a stock from "
            "the ValuePickr forum. These are opinions, not verified research.",
            _query_param("Stock name or symbol (e.g. 'Tata Motors', 'RELIANCE')"), ("query",),
        ),
        "forum", ThesisDigest,
        {**_BASE_CONFIG, "recent_posts": 5, "base_url": "https://forum.valuepickr.com"},
    ),
    Capability.GET_FILINGS: ToolSpec(
        Capability.GET_FILINGS,
        ToolDeclaration(
            "get_filings",
            "Get supplementary research filings (analyst recommendations, "
            "exchange disclosures) stored for a stock.",
            _symbol_param(), ("symbol",),
        ),
        "internal", FilingsDigest, {**_BASE_CONFIG, "limit": 3},
    ),
    Capability.GET_PRIOR_VERDICTS: ToolSpec(
        Capability.GET_PRIOR_VERDICTS,
        ToolDeclaration(
            "get_prior_verdicts",
            "Get the most recent previous analysis verdicts for a stock.",
            _symbol_param(), ("symbol",),
        ),
        "internal", VerdictHistory, {**_BASE_CONFIG, "limit": 5},
    ),
    Capability.SYNTHESIZE_VERDICT: ToolSpec(
        Capability.SYNTHESIZE_VERDICT,
        ToolDeclaration(
            "synthesize_verdict",
            "Score one stock (0-100) from an assembled research context and "
            "return thesis, risks, timing signal and alert flag.",
            {
                "entity_id": ParamSpec("string", "Stock symbol being scored"),
                "context":   ParamSpec("string", "Serialized research context (JSON)"),
            },
            ("entity_id", "context"),
        ),
        "llm", SynthesizerOutput, {**_BASE_CONFIG, "timeout_s": 90.0},
    ),
}

# Keys a user override may never change
PROTECTED_KEYS = frozenset({"source_class", "rate_limit", "payload_type"})


@dataclass(frozen=True)
class Registration:
    spec:    ToolSpec
    handler: Optional[Handler]

    @property
    def name(self) -> str:
        return self.spec.capability.value

    @property
    def source_class(self) -> str:
        return self.spec.source_class


class ToolRegistry:
    """Handler table for the closed capability set. Built once at startup."""

    def __init__(self, handlers: Mapping[Any, Handler],
                 overrides: Optional[Mapping[str, Mapping[str, Any]]] = None):
        table: Dict[Capability, Registration] = {}
        wired = {Capability(k): h for k, h in handlers.items()}   # ValueError on unknown names
        for cap, spec in CATALOG.items():
            table[cap] = Registration(spec=spec, handler=wired.get(cap))
            if cap not in wired:
                log.warning(f"No handler wired for {cap.value} — calls will fail")
        self._table = table
        self._overrides: Dict[str, Dict[str, Any]] = {}
        self.set_overrides(overrides or {})

    # ── Lookup ────────────────────────────────────────────────

    def resolve(self, name: str) -> Optional[Registration]:
        try:
            return self._table[Capability(name)]
        except ValueError:
            return None

    def names(self) -> List[str]:
        return [c.value for c in self._table]

    def declarations(self) -> List[dict]:
        return [r.spec.declaration.to_dict() for r in self._table.values()]

    def source_class(self, name: str) -> Optional[str]:
        reg = self.resolve(name)
        return reg.source_class if reg else None

    # ── Config ────────────────────────────────────────────────

    def set_overrides(self, overrides: Mapping[str, Mapping[str, Any]]):
        clean: Dict[str, Dict[str, Any]] = {}
        for name, values in overrides.items():
            if self.resolve(name) is None:
                log.warning(f"Config override for unknown tool '{name}' ignored")
                continue
            dropped = PROTECTED_KEYS & set(values)
            if dropped:
                log.warning(f"{name}: override keys {sorted(dropped)} are not user-configurable")
            clean[name] = {k: v for k, v in values.items() if k not in PROTECTED_KEYS}
        self._overrides = clean

    def config_for(self, name: str) -> Dict[str, Any]:
        """Defaults with user overrides merged on top (read time)."""
        reg = self.resolve(name)
        if reg is None:
            return {}
        return {**reg.spec.default_config, **self._overrides.get(name, {})}

    def is_enabled(self, name: str) -> bool:
        return bool(self.config_for(name).get("enabled", True))
