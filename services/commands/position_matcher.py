from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from schemas.portfolio import Account, PortfolioData, Position
from services.commands.account_resolver import resolve_account
from services.portfolio.positions import find_positions_by_symbol, position_asset_class

# Dual listings and renames seen in brokerage exports.
SELL_SYMBOL_ALIASES: Dict[str, Tuple[str, ...]] = {
    "GOOG": ("GOOGL",),
    "GOOGL": ("GOOG",),
    "FB": ("META",),
    "META": ("FB",),
    "BRK.B": ("BRK-B", "BRK/B", "BRKB"),
    "BRK-B": ("BRK.B", "BRK/B", "BRKB"),
    "BRK.A": ("BRK-A",),
    "BRK-A": ("BRK.A",),
}

_PUNCT = re.compile(r"[^A-Z0-9]+")


def canonical_symbol(symbol: Optional[str]) -> str:
    return _PUNCT.sub("", (symbol or "").upper())


def sell_candidates(positions: List[Position], symbol: Optional[str]) -> List[Position]:
    """Exact symbol, then known aliases, then a punctuation-insensitive match."""
    sym = (symbol or "").strip().upper()
    if not sym:
        return []
    exact = find_positions_by_symbol(positions, sym)
    if exact:
        return exact
    for alias in SELL_SYMBOL_ALIASES.get(sym, ()):
        hits = find_positions_by_symbol(positions, alias)
        if hits:
            return hits
    canon = canonical_symbol(sym)
    return [p for p in positions if canon and canonical_symbol(p.symbol) == canon]


def pick_sell_position(
    candidates: List[Position],
    accounts: List[Account],
    account_hint: Optional[str] = None,
) -> Optional[Position]:
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    if account_hint:
        resolution = resolve_account(accounts, account_hint)
        if resolution.status == "matched" and resolution.account is not None:
            in_account = [p for p in candidates if p.account_id == resolution.account.id]
            if len(in_account) == 1:
                return in_account[0]

    linked = [p for p in candidates if p.account_id]
    brokerage = [p for p in linked if position_asset_class(p) in ("equity", "metals")]
    if len(brokerage) == 1:
        return brokerage[0]
    if len(linked) == 1:
        return linked[0]

    manual = [p for p in candidates if not p.account_id]
    return manual[0] if manual else candidates[0]


def find_sell_position(
    data: PortfolioData,
    symbol: Optional[str],
    account_hint: Optional[str] = None,
) -> Optional[Position]:
    return pick_sell_position(sell_candidates(data.positions, symbol), data.accounts, account_hint)


def find_unique_position(
    data: PortfolioData,
    symbol: Optional[str],
    account_id: Optional[str] = None,
) -> Optional[Position]:
    """The one position holding ``symbol`` (in ``account_id`` if given); None when 0 or several."""
    matches = find_positions_by_symbol(data.positions, symbol, account_id)
    return matches[0] if len(matches) == 1 else None


def stored_price(data: Optional[PortfolioData], *symbols: Optional[str]) -> Optional[float]:
    """Custom overrides for every symbol first, then market prices; keys are case-insensitive."""
    if data is None:
        return None
    keys = [s.strip().lower() for s in symbols if s and s.strip()]
    for table in (data.custom_prices, data.prices):
        by_key = {k.lower(): v.price for k, v in table.items()}
        for key in keys:
            price = by_key.get(key)
            if price is not None and price > 0:
                return float(price)
    return None
