"""
Price lookup for mutation enrichment.

Tiers per asset type, each fetch bounded by a short timeout. Provider
failures never escape: a timeout or error just moves on to the next tier,
ending with the price already stored in the portfolio (or None).
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional, Tuple, Union

from schemas.portfolio import PortfolioData
from services.commands.position_matcher import stored_price
from services.quotes.base import QuoteProvider
from services.quotes.coingecko_quotes import has_known_mapping

logger = logging.getLogger(__name__)

TICKER_SHAPE_RE = re.compile(r"^[A-Z][A-Z0-9.\-]{0,9}$")
EQUITY_TYPES = {"stock", "etf"}


@dataclass(frozen=True)
class QuoteGuardConfig:
    timeout_s: float = 1.2
    low_ratio: float = 0.3
    high_ratio: float = 3.0
    window_days: int = 7


@dataclass
class QuoteResolution:
    price: Optional[float]
    resolved_type: Optional[str]
    source: Optional[str] = None


def is_suspicious_quote(
    quote: float,
    reference: Optional[float],
    on_date: date,
    today: date,
    config: QuoteGuardConfig,
) -> bool:
    if not reference or reference <= 0:
        return False
    if abs((today - on_date).days) > config.window_days:
        return False
    ratio = quote / reference
    return ratio > config.high_ratio or ratio < config.low_ratio


def _as_date(value: Union[str, date, None], today: date) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value or ""))
    except ValueError:
        return today


class QuoteResolver:
    def __init__(
        self,
        *,
        equities: Optional[QuoteProvider] = None,
        history: Optional[QuoteProvider] = None,
        crypto: Optional[QuoteProvider] = None,
        config: Optional[QuoteGuardConfig] = None,
        today_fn: Callable[[], date] = date.today,
    ):
        self.equities = equities
        self.history = history
        self.crypto = crypto
        self.config = config or QuoteGuardConfig()
        self._today = today_fn

    async def _fetch(self, provider: Optional[QuoteProvider], symbol: str, on_date: date) -> Optional[float]:
        if provider is None:
            return None
        name = getattr(provider, "name", type(provider).__name__)
        try:
            price = await asyncio.wait_for(
                provider.fetch_price(symbol, on_date),
                timeout=self.config.timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("quote.fetch.timeout provider=%s symbol=%s timeout_s=%.2f", name, symbol, self.config.timeout_s)
            return None
        except Exception as exc:
            logger.warning("quote.fetch.failed provider=%s symbol=%s error=%s", name, symbol, type(exc).__name__)
            return None
        if price is None or price <= 0:
            return None
        return float(price)

    async def _equity_price(
        self, symbol: str, on_date: date, reference: Optional[float]
    ) -> Tuple[Optional[float], Optional[str], bool]:
        """(price, source, rejected). ``rejected`` means a quote failed the sanity guard."""
        today = self._today()
        for provider in (self.equities, self.history):
            price = await self._fetch(provider, symbol, on_date)
            if price is None:
                continue
            if is_suspicious_quote(price, reference, on_date, today, self.config):
                logger.warning(
                    "quote.suspicious provider=%s symbol=%s ratio=%.2f",
                    getattr(provider, "name", "?"), symbol, price / float(reference or 1),
                )
                return None, None, True
            return price, getattr(provider, "name", None), False
        return None, None, False

    async def resolve(
        self,
        symbol: str,
        asset_type_hint: Optional[str],
        on_date: Union[str, date, None],
        data: Optional[PortfolioData] = None,
    ) -> QuoteResolution:
        sym = (symbol or "").strip().upper()
        if not sym:
            return QuoteResolution(price=None, resolved_type=asset_type_hint)

        today = self._today()
        day = _as_date(on_date, today)
        hint = (asset_type_hint or "").strip().lower() or None
        if hint is None and data is not None:
            held = next((p for p in data.positions if p.symbol.upper() == sym), None)
            hint = held.type if held else None

        reference = stored_price(data, sym)
        fallback = QuoteResolution(
            price=reference,
            resolved_type=hint,
            source="stored" if reference else None,
        )

        if hint == "cash":
            return QuoteResolution(price=1.0, resolved_type="cash", source="cash")
        if day == today and reference:
            return fallback
        if hint == "manual":
            return fallback

        if hint in EQUITY_TYPES:
            price, source, _ = await self._equity_price(sym, day, reference)
            if price is not None:
                return QuoteResolution(price=price, resolved_type=hint, source=source)
            return fallback

        if hint == "crypto":
            price = await self._fetch(self.crypto, sym, day)
            if price is not None:
                return QuoteResolution(price=price, resolved_type="crypto", source=getattr(self.crypto, "name", None))
            return fallback

        # Unknown type: equities first, crypto only for symbols that could be coins.
        price, source, rejected = await self._equity_price(sym, day, reference)
        if price is not None:
            return QuoteResolution(price=price, resolved_type="stock", source=source)
        if rejected:
            return fallback
        if TICKER_SHAPE_RE.match(sym) and not has_known_mapping(sym):
            return fallback
        price = await self._fetch(self.crypto, sym, day)
        if price is not None:
            return QuoteResolution(price=price, resolved_type="crypto", source=getattr(self.crypto, "name", None))
        return fallback
