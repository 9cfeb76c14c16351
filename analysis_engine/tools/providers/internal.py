"""
Stock Intel — Internal Providers
──────────────────────────────────
Capabilities answered from our own store (source class: internal):
fundamentals, research filings, prior verdicts, and the wait-zone check
derived from the last technical snapshot.
"""

import logging

from analysis_engine.storage.research_store import ResearchStore
from analysis_engine.tools.errors import NotFoundError
from analysis_engine.tools.payloads import (
    FilingsDigest, FundamentalsSnapshot, TechnicalSnapshot, VerdictHistory, WaitZoneCheck,
)

log = logging.getLogger("ae.providers.internal")


class FundamentalsProvider:

    def __init__(self, store: ResearchStore):
        self._store = store

    async def __call__(self, args: dict, config: dict) -> FundamentalsSnapshot:
        symbol = args["symbol"].strip().upper()
        record = await self._store.get_fundamentals(symbol)
        if not record or not record.get("financials"):
            raise NotFoundError(f"No financials on record for {symbol}")
        periods = int(config.get("periods", 4))
        return FundamentalsSnapshot(
            symbol         = symbol,
            financials     = list(record["financials"])[-periods:],
            latest_concall = record.get("latest_concall"),
            updated_at     = record.get("updated_at"),
        )


class FilingsProvider:

    def __init__(self, store: ResearchStore):
        self._store = store

    async def __call__(self, args: dict, config: dict) -> FilingsDigest:
        symbol = args["symbol"].strip().upper()
        record = await self._store.get_filings(symbol)
        if not record or not record.get("filings"):
            raise NotFoundError(f"No filings on record for {symbol}")
        return FilingsDigest(
            symbol     = symbol,
            filings    = list(record["filings"])[: int(config.get("limit", 3))],
            updated_at = record.get("updated_at"),
        )


class PriorVerdictsProvider:

    def __init__(self, store: ResearchStore):
        self._store = store

    async def __call__(self, args: dict, config: dict) -> VerdictHistory:
        symbol = args["symbol"].strip().upper()
        history = await self._store.get_verdict_history(symbol, int(config.get("limit", 5)))
        return VerdictHistory(entity_id=symbol, verdicts=history)


class WaitZoneProvider:

    def __init__(self, store: ResearchStore):
        self._store = store

    async def __call__(self, args: dict, config: dict) -> WaitZoneCheck:
        symbol = args["symbol"].strip().upper()
        stored = await self._store.get_technicals(symbol)
        if not stored or not stored.get("snapshot"):
            raise NotFoundError(f"No technical snapshot for {symbol} — run get_technicals first")
        snap = TechnicalSnapshot.from_dict(stored["snapshot"])
        return WaitZoneCheck(
            symbol       = symbol,
            zone_status  = snap.zone_status,
            is_wait_zone = snap.is_wait_zone,
            reasons      = snap.wait_reasons,
        )
