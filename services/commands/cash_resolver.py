from __future__ import annotations

import re
from typing import Iterable, Optional

from schemas.portfolio import Position

_CASH_SYMBOL_RE = re.compile(r"CASH_([A-Z]{3})")
_BARE_CODE_RE = re.compile(r"^[A-Z]{3}$")
_NAME_SUFFIX_RE = re.compile(r"\(([A-Z]{3})\)\s*$")
_TOKEN_RE = re.compile(r"\b[A-Z]{3}\b")

KNOWN_CURRENCIES = frozenset({
    "USD", "EUR", "CHF", "GBP", "JPY", "CAD", "AUD", "NZD", "SEK", "NOK", "DKK",
    "PLN", "CZK", "HUF", "RON", "BGN", "HRK", "ISK", "TRY", "BRL", "MXN", "INR",
    "CNY", "KRW", "SGD", "HKD", "TWD", "THB", "MYR", "IDR", "PHP",
})


def normalize_currency_code(value: Optional[str]) -> Optional[str]:
    """
    "EUR", "cash_eur_1700000000" and "10k EUR at Revolut" all give "EUR".
    The CASH_<CCY> pattern wins over a bare code.
    """
    s = (value or "").strip().upper()
    if not s:
        return None
    m = _CASH_SYMBOL_RE.search(s)
    if m:
        return m.group(1)
    if _BARE_CODE_RE.match(s):
        return s
    for tok in _TOKEN_RE.findall(s):
        if tok in KNOWN_CURRENCIES:
            return tok
    return None


def is_cash_symbol(symbol: Optional[str]) -> bool:
    s = (symbol or "").strip().upper()
    return bool(_CASH_SYMBOL_RE.match(s)) or s in KNOWN_CURRENCIES


def position_currency(position: Position) -> Optional[str]:
    symbol = (position.symbol or "").upper()
    m = _CASH_SYMBOL_RE.search(symbol)
    if m:
        return m.group(1)
    m = _NAME_SUFFIX_RE.search((position.name or "").upper())
    if m:
        return m.group(1)
    if _BARE_CODE_RE.match(symbol):
        return symbol
    return None


def resolve_cash_position(
    positions: Iterable[Position],
    currency_like: Optional[str],
    account_id: Optional[str] = None,
) -> Optional[Position]:
    """The single cash position for this currency (and account), or None."""
    currency = normalize_currency_code(currency_like)
    if not currency:
        return None
    matches = [
        p for p in positions
        if p.type == "cash" and position_currency(p) == currency
    ]
    if account_id:
        matches = [p for p in matches if p.account_id == account_id]
    return matches[0] if len(matches) == 1 else None
