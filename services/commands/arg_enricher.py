"""
Fill in mutation arguments the LLM left out or got slightly wrong.

Each tool family gets its own pass over ``(args, portfolio, user text)``.
Nothing here raises for bad input: unparseable values are dropped, and
the executor reports what is still missing.
"""
from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, Callable, Dict, Optional

from schemas.portfolio import PortfolioData, Position
from services.commands.account_resolver import account_hint_from_args
from services.commands.cash_resolver import is_cash_symbol, normalize_currency_code
from services.commands.position_matcher import find_sell_position, stored_price
from services.commands.quote_resolver import QuoteResolver
from services.commands.symbol_resolver import (
    SymbolMatchConfig,
    build_catalog,
    guess_symbol_from_free_text,
    resolve_closest_symbol,
)
from services.quotes.coingecko_quotes import has_known_mapping
from utils.common_helpers import as_positive_number, date_from_text, round8, to_date_only

logger = logging.getLogger(__name__)

_NUM = r"(\$?\s*\d[\d,]*(?:\.\d+)?\s*[kmb]?\b)"

_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_FRACTION_WORDS = (("half", 50.0), ("third", 33.33), ("quarter", 25.0))
_UNIT_PRICE_RE = re.compile(rf"(?:\bat\b|@)\s*{_NUM}", re.IGNORECASE)
_NOTIONAL_RE = re.compile(rf"\$\s*(\d[\d,]*(?:\.\d+)?\s*[kmb]?)\s*(?:worth|of)\b", re.IGNORECASE)
_FOR_TOTAL_RE = re.compile(rf"\bfor\s+{_NUM}", re.IGNORECASE)
_UNITS_RE = re.compile(
    r"\b(?:bought|buy|purchased|purchase|sold|sell|dump)\s+(\d[\d,]*(?:\.\d+)?\s*[kmb]?)\s+(?!worth\b)",
    re.IGNORECASE,
)
_ADD_CASH_RE = re.compile(r"^(?:add(?:ed)?\s+)?(\$?\s*\d[\d,]*(?:\.\d+)?\s*[kmb]?)\s+([a-z]{3})\b", re.IGNORECASE)
_SET_BALANCE_RE = re.compile(
    r"\b([a-z]{3})\s+(?:is\s+now|now|=|balance(?:\s+(?:is|to))?)\s+(\$?\s*\d[\d,]*(?:\.\d+)?\s*[kmb]?)",
    re.IGNORECASE,
)
_SET_PRICE_RE = re.compile(r"(?:\bprice\b|=)\s*(?:to\s+|at\s+|is\s+)?(\$?\s*\d[\d,]*(?:\.\d+)?\s*[kmb]?)", re.IGNORECASE)

_BUY_TYPES = {"crypto", "stock", "etf", "manual"}
_POSITION_TYPES = _BUY_TYPES | {"cash"}


# ── text fallbacks ─────────────────────────────────────────────────────

def resolve_trade_date(arg_date: Any, text: Optional[str], today: Optional[date] = None) -> str:
    """Dates spelled out in the user's text beat the structured argument."""
    from_text = date_from_text(text, today)
    if from_text:
        return from_text
    return to_date_only(arg_date, today)


def percent_from_text(text: Optional[str]) -> Optional[float]:
    t = text or ""
    m = _PERCENT_RE.search(t)
    if m:
        return as_positive_number(m.group(1))
    lowered = t.lower()
    for word, pct in _FRACTION_WORDS:
        if re.search(rf"\b{word}\b", lowered):
            return pct
    return None


def _search_number(pattern: re.Pattern, text: Optional[str], group: int = 1) -> Optional[float]:
    m = pattern.search(text or "")
    return as_positive_number(m.group(group)) if m else None


def unit_price_from_text(text: Optional[str]) -> Optional[float]:
    return _search_number(_UNIT_PRICE_RE, text)


def notional_from_text(text: Optional[str]) -> Optional[float]:
    return _search_number(_NOTIONAL_RE, text) or _search_number(_FOR_TOTAL_RE, text)


def units_from_text(text: Optional[str]) -> Optional[float]:
    return _search_number(_UNITS_RE, text)


def _first_number(args: Dict[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        value = as_positive_number(args.get(key))
        if value is not None:
            return value
    return None


def _held_position(data: PortfolioData, symbol: str) -> Optional[Position]:
    s = symbol.lower()
    return next((p for p in data.positions if p.symbol.lower() == s), None)


# ── enricher ───────────────────────────────────────────────────────────

class ArgumentEnricher:
    def __init__(
        self,
        quotes: Optional[QuoteResolver] = None,
        symbol_config: Optional[SymbolMatchConfig] = None,
        today_fn: Callable[[], date] = date.today,
    ):
        self.quotes = quotes
        self.symbol_config = symbol_config or SymbolMatchConfig()
        self._today = today_fn

    async def enrich(
        self,
        tool_name: str,
        args: Optional[Dict[str, Any]],
        data: PortfolioData,
        user_text: str = "",
    ) -> Dict[str, Any]:
        raw = dict(args or {})
        if tool_name == "buy_position":
            return await self.enrich_buy(raw, data, user_text)
        if tool_name in ("sell_partial", "sell_all"):
            return await self.enrich_sell(tool_name, raw, data, user_text)
        if tool_name in ("update_position", "remove_position"):
            return self.enrich_correction(tool_name, raw, data)
        if tool_name in ("add_cash", "update_cash"):
            return self.enrich_cash(tool_name, raw, user_text)
        if tool_name == "set_price":
            return self.enrich_set_price(raw, user_text)
        return raw

    async def _quote(self, symbol: str, asset_type: Optional[str], on_date: str, data: PortfolioData):
        if self.quotes is None:
            return None
        return await self.quotes.resolve(symbol, asset_type, on_date, data)

    # ── buy ─────────────────────────────────────────────────────────────

    async def enrich_buy(self, args: Dict[str, Any], data: PortfolioData, user_text: str = "") -> Dict[str, Any]:
        out = dict(args)
        today = self._today()
        symbol = str(args.get("symbol") or "").strip().upper()
        if not symbol:
            symbol = guess_symbol_from_free_text(build_catalog(p.symbol for p in data.positions), user_text, self.symbol_config) or ""
        out["symbol"] = symbol
        out["date"] = resolve_trade_date(args.get("date"), user_text, today)

        asset_type = str(args.get("assetType") or "").strip().lower() or None
        if asset_type not in _BUY_TYPES:
            held = _held_position(data, symbol) if symbol else None
            asset_type = held.type if held else None

        amount = _first_number(args, "amount", "quantity", "units")
        price = _first_number(args, "price", "pricePerUnit")
        total = _first_number(args, "totalCost", "total", "notional")
        if amount is None and total is None:
            total = notional_from_text(user_text)
            if total is None:
                amount = units_from_text(user_text)
        if price is None and total is None:
            price = unit_price_from_text(user_text)

        if total is not None and amount is not None and price is None:
            price = round8(total / amount)
        elif total is not None and amount is None and price is not None:
            amount = round8(total / price)
        elif amount is not None and price is not None and total is None:
            total = round8(amount * price)
        elif symbol and price is None and (total is not None or amount is not None):
            quote = await self._quote(symbol, asset_type, out["date"], data)
            if quote is not None and quote.price:
                price = quote.price
                asset_type = asset_type or quote.resolved_type
                out["priceSource"] = quote.source
                if amount is None:
                    amount = round8(total / price)
                else:
                    total = round8(amount * price)
            else:
                logger.info("enrich.buy.price_unresolved symbol=%s", symbol)

        if asset_type is None and symbol:
            asset_type = "crypto" if has_known_mapping(symbol) else "stock"

        for key, value in (("amount", amount), ("price", price), ("totalCost", total), ("assetType", asset_type)):
            if value is not None:
                out[key] = value
        return out

    # ── sell ────────────────────────────────────────────────────────────

    async def enrich_sell(
        self,
        tool_name: str,
        args: Dict[str, Any],
        data: PortfolioData,
        user_text: str = "",
    ) -> Dict[str, Any]:
        out = dict(args)
        today = self._today()
        catalog = build_catalog(p.symbol for p in data.positions)
        raw_symbol = str(args.get("symbol") or "").strip()
        if not raw_symbol:
            raw_symbol = guess_symbol_from_free_text(catalog, user_text, self.symbol_config) or ""
        symbol = resolve_closest_symbol(catalog, raw_symbol, self.symbol_config) if raw_symbol else ""
        out["symbol"] = symbol
        out["date"] = resolve_trade_date(args.get("date"), user_text, today)

        position = find_sell_position(data, symbol, account_hint_from_args(args)) if symbol else None
        asset_type = position.type if position else (str(args.get("assetType") or "").lower() or None)
        if asset_type:
            out["assetType"] = asset_type

        if tool_name == "sell_partial":
            sell_amount = _first_number(args, "amount", "quantity", "units")
            percent = _first_number(args, "percent", "percentage")
            if sell_amount is None and percent is None:
                percent = percent_from_text(user_text)
                if percent is None:
                    sell_amount = units_from_text(user_text)
            if sell_amount is not None:
                out["amount"] = sell_amount
            if percent is not None:
                out["percent"] = percent

        price = _first_number(args, "price", "pricePerUnit") or unit_price_from_text(user_text)
        source: Optional[str] = "input" if price else None
        if price is None and symbol:
            quote = await self._quote(position.symbol if position else symbol, asset_type, out["date"], data)
            if quote is not None and quote.price:
                price, source = quote.price, quote.source
        if price is None and symbol:
            price = stored_price(data, position.symbol if position else None, symbol)
            source = "stored" if price else None
        if price is None and position is not None and position.cost_basis and position.amount > 0:
            # No quote anywhere: average cost keeps the confirmation unblocked.
            price = round8(position.cost_basis / position.amount)
            source = "cost_basis"

        if price is not None:
            out["price"] = price
            out["priceSource"] = source
        return out

    # ── update / remove ─────────────────────────────────────────────────

    def enrich_correction(self, tool_name: str, args: Dict[str, Any], data: PortfolioData) -> Dict[str, Any]:
        out = dict(args)
        raw_symbol = str(args.get("symbol") or "").strip()
        asset_type = str(args.get("assetType") or "").strip().lower() or None
        if asset_type not in _POSITION_TYPES:
            asset_type = None

        if tool_name == "update_position" and (asset_type == "cash" or is_cash_symbol(raw_symbol)):
            currency = normalize_currency_code(args.get("currency") or raw_symbol)
            out["symbol"] = raw_symbol.upper()
            out["assetType"] = "cash"
            if currency:
                out["currency"] = currency
        elif raw_symbol:
            catalog = build_catalog(p.symbol for p in data.positions)
            out["symbol"] = resolve_closest_symbol(catalog, raw_symbol, self.symbol_config)

        if tool_name == "update_position":
            amount = as_positive_number(args.get("amount"))
            if amount is not None:
                out["amount"] = amount
            cost_basis = as_positive_number(args.get("costBasis"))
            if cost_basis is not None:
                out["costBasis"] = cost_basis
            if args.get("date"):
                out["date"] = to_date_only(args.get("date"), self._today())
        return out

    # ── cash ────────────────────────────────────────────────────────────

    def enrich_cash(self, tool_name: str, args: Dict[str, Any], user_text: str = "") -> Dict[str, Any]:
        out = dict(args)
        text = (user_text or "").strip()
        currency = normalize_currency_code(str(args.get("currency") or args.get("symbol") or ""))
        amount = _first_number(args, "amount", "balance")

        pattern = _ADD_CASH_RE if tool_name == "add_cash" else _SET_BALANCE_RE
        m = pattern.search(text)
        if m:
            num, code = (m.group(1), m.group(2)) if tool_name == "add_cash" else (m.group(2), m.group(1))
            if amount is None:
                amount = as_positive_number(num)
            if currency is None:
                currency = normalize_currency_code(code)
        if currency is None:
            currency = normalize_currency_code(text) or "USD"

        out["currency"] = currency
        if amount is not None:
            out["amount"] = amount
        hint = account_hint_from_args(args)
        if hint:
            out["account"] = hint
        return out

    # ── price override ──────────────────────────────────────────────────

    def enrich_set_price(self, args: Dict[str, Any], user_text: str = "") -> Dict[str, Any]:
        out = dict(args)
        out["symbol"] = str(args.get("symbol") or "").strip().upper()
        price = _first_number(args, "price", "newPrice") or _search_number(_SET_PRICE_RE, user_text)
        if price is not None:
            out["price"] = price
        return out
