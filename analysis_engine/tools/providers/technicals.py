"""
Stock Intel — Technicals Provider
───────────────────────────────────
Fetches ~1 year of daily closes from Yahoo Finance and computes:
  - RSI-14
  - SMA-50 / SMA-200
  - Price vs SMA50 / SMA200 (%)
  - Zone status (BUY / WAIT_TOO_HOT / WAIT_TOO_COLD) with reasons

Source class: yahoo. Caching and rate limiting are the executor's job.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import httpx

from analysis_engine.tools.errors import NotFoundError, ParseError
from analysis_engine.tools.payloads import TechnicalSnapshot

log = logging.getLogger("ae.providers.technicals")

YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
YAHOO_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "application/json",
}

ZONE_BUY      = "BUY"
ZONE_TOO_HOT  = "WAIT_TOO_HOT"
ZONE_TOO_COLD = "WAIT_TOO_COLD"

RSI_OVERBOUGHT   = 75
EXTENDED_SMA50   = 20    # % above SMA50
EXTENDED_SMA200  = 40    # % above SMA200


# ── CALCULATIONS ─────────────────────────────────────────────
def rsi(closes: List[float], period: int = 14) -> Optional[float]:
    if len(closes) < period + 1:
        return None
    gains, losses = [], []
    for i in range(1, len(closes)):
        diff = closes[i] - closes[i - 1]
        gains.append(max(diff, 0))
        losses.append(max(-diff, 0))
    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    for i in range(period, len(gains)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return round(100 - (100 / (1 + rs)), 2)


def sma(values: List[float], period: int) -> Optional[float]:
    if len(values) < period:
        return None
    return sum(values[-period:]) / period


def zone_status(
    rsi_14: Optional[float],
    vs_sma50: Optional[float],
    vs_sma200: Optional[float],
    price: Optional[float],
    sma_200: Optional[float],
) -> Tuple[str, List[str]]:
    """Standard 'buy quality on dips' zone logic. Returns (status, reasons)."""
    reasons = []
    downtrend = price is not None and sma_200 is not None and price < sma_200
    if downtrend:
        pct_below = (sma_200 - price) / sma_200 * 100
        reasons.append(f"{pct_below:.0f}% below SMA200 (downtrend)")
    if rsi_14 is not None and rsi_14 > RSI_OVERBOUGHT:
        reasons.append(f"RSI {rsi_14:.0f} > {RSI_OVERBOUGHT} (overbought)")
    if vs_sma50 is not None and vs_sma50 > EXTENDED_SMA50:
        reasons.append(f"{vs_sma50:.0f}% above SMA50 (extended)")
    if vs_sma200 is not None and vs_sma200 > EXTENDED_SMA200:
        reasons.append(f"{vs_sma200:.0f}% above SMA200 (very extended)")

    if downtrend:
        return ZONE_TOO_COLD, reasons
    if reasons:
        return ZONE_TOO_HOT, reasons
    return ZONE_BUY, reasons


def yahoo_symbol(symbol: str, suffix: str = ".NS") -> str:
    symbol = symbol.strip().upper()
    if "." in symbol or "=" in symbol or "-" in symbol:
        return symbol
    if symbol.isdigit():
        return f"{symbol}.BO"          # numeric BSE scrip code
    return f"{symbol}{suffix}"


def parse_closes(data: dict) -> List[float]:
    """Pull the non-null daily closes out of a Yahoo chart response."""
    try:
        result = data.get("chart", {}).get("result") or []
        if not result:
            return []
        quote = result[0].get("indicators", {}).get("quote", [{}])[0]
        return [c for c in quote.get("close", []) if c is not None]
    except (AttributeError, IndexError, TypeError) as e:
        raise ParseError(f"Unexpected Yahoo chart shape: {e}")


def build_snapshot(symbol: str, closes: List[float]) -> TechnicalSnapshot:
    price   = closes[-1]
    rsi_14  = rsi(closes)
    sma_50  = sma(closes, 50)
    sma_200 = sma(closes, 200)
    vs50    = round((price - sma_50) / sma_50 * 100, 2) if sma_50 else None
    vs200   = round((price - sma_200) / sma_200 * 100, 2) if sma_200 else None
    status, reasons = zone_status(rsi_14, vs50, vs200, price, sma_200)
    return TechnicalSnapshot(
        symbol              = symbol,
        current_price       = round(price, 2),
        rsi_14              = rsi_14,
        sma_50              = round(sma_50, 2) if sma_50 else None,
        sma_200             = round(sma_200, 2) if sma_200 else None,
        price_vs_sma50_pct  = vs50,
        price_vs_sma200_pct = vs200,
        zone_status         = status,
        is_wait_zone        = status != ZONE_BUY,
        wait_reasons        = reasons,
        computed_at         = datetime.now(timezone.utc).isoformat(),
    )


class TechnicalsProvider:
    """get_technicals handler."""

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def __call__(self, args: dict, config: dict) -> TechnicalSnapshot:
        symbol = args["symbol"].strip().upper()
        ticker = yahoo_symbol(symbol, config.get("exchange_suffix", ".NS"))
        r = await self._client.get(
            YAHOO_CHART_URL.format(symbol=ticker),
            params={"interval": "1d", "range": config.get("range", "1y")},
            headers=YAHOO_HEADERS,
        )
        r.raise_for_status()
        closes = parse_closes(r.json())
        if len(closes) < 15:
            raise NotFoundError(
                f"Could not fetch technical data for {symbol}. "
                f"Symbol may be invalid or have insufficient history."
            )
        snap = build_snapshot(symbol, closes)
        log.debug(f"{symbol}: RSI={snap.rsi_14} zone={snap.zone_status}")
        return snap
