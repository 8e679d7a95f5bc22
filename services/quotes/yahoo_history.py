from __future__ import annotations

import asyncio
from datetime import date, timedelta
from typing import Optional

import pandas as pd
from yahooquery import Ticker

from services.quotes.base import QuoteProviderError


def _close_on_or_before(df: pd.DataFrame, sym: str, on_date: date) -> Optional[float]:
    """Last daily close at or before ``on_date`` from a yahooquery history frame."""
    if df is None or (hasattr(df, "empty") and df.empty):
        return None
    if isinstance(df, pd.Series):
        df = df.to_frame().T

    # MultiIndex (symbol, date) is the usual shape; flatten it
    df = df.reset_index()
    if "symbol" in df.columns:
        df = df[df["symbol"].astype(str).str.upper() == sym]
    if "index" in df.columns and "date" not in df.columns:
        df = df.rename(columns={"index": "date"})
    if "date" not in df.columns or "close" not in df.columns:
        return None

    df = df.assign(date=pd.to_datetime(df["date"], utc=True, errors="coerce"))
    df = df.dropna(subset=["date", "close"]).sort_values("date")
    cutoff = pd.Timestamp(on_date.isoformat(), tz="UTC") + pd.Timedelta(days=1)
    df = df[df["date"] < cutoff]
    if df.empty:
        return None
    close = float(df["close"].iloc[-1])
    return close if close > 0 else None


class YahooHistoryProvider:
    """Daily-close fallback for equities and ETFs via yahooquery."""

    name = "yahoo_history"

    def __init__(self, lookback_days: int = 7, timeout_s: float = 1.2):
        self.lookback_days = max(1, int(lookback_days))
        self.timeout_s = timeout_s

    def _fetch_sync(self, sym: str, on_date: date) -> Optional[float]:
        # The HTTP timeout ends the worker thread near the quote budget.
        tq = Ticker(sym, asynchronous=False, formatted=False, validate=False, timeout=self.timeout_s)
        df = tq.history(
            start=(on_date - timedelta(days=self.lookback_days)).isoformat(),
            end=(on_date + timedelta(days=1)).isoformat(),
            interval="1d",
        )
        if isinstance(df, dict):
            # yahooquery reports per-symbol errors as a dict instead of a frame
            raise QuoteProviderError(f"yahooquery history failed for {sym}")
        return _close_on_or_before(df, sym, on_date)

    async def fetch_price(self, symbol: str, on_date: Optional[date] = None) -> Optional[float]:
        sym = (symbol or "").strip().upper()
        if not sym:
            raise QuoteProviderError("Missing symbol")
        return await asyncio.to_thread(self._fetch_sync, sym, on_date or date.today())
