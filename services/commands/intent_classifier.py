"""
Keyword intent routing for free-text commands.

The result only narrows which tools are offered to the LLM; an ``unknown``
intent (empty tool list) means "offer the whole catalog".
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, List, Literal, Tuple

IntentType = Literal[
    "buy",
    "sell",
    "add_cash",
    "update_cash",
    "add_wallet",
    "remove_wallet",
    "remove_position",
    "set_price",
    "update_position",
    "toggle",
    "set_risk_free_rate",
    "navigate",
    "query",
    "unknown",
]

QUERY_TOOL_IDS: Tuple[str, ...] = (
    "query_net_worth",
    "query_portfolio_summary",
    "query_top_positions",
    "query_position_details",
    "query_positions_by_type",
    "query_exposure",
    "query_crypto_exposure",
    "query_performance",
    "query_24h_change",
    "query_category_value",
    "query_position_count",
    "query_debt_summary",
    "query_leverage",
    "query_perps_summary",
    "query_risk_profile",
)

_CURRENCY_CODES = (
    "usd|eur|chf|gbp|jpy|cad|aud|nzd|sek|nok|dkk|pln|czk|huf|ron|bgn|hrk|isk|"
    "try|brl|mxn|inr|cny|krw|sgd|hkd|twd|thb|myr|idr|php"
)


def _rx(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


_BUY = _rx(r"\b(bought|buy|purchased|purchase)\b")
_CASH = _rx(r"\bcash\b")
_SELL = _rx(r"\b(sold|sell|dump)\b")
_SELL_EVERYTHING = _rx(r"\b(all|everything|entire)\b")
_ADD = _rx(r"\b(add(ed)?)\b")
_CURRENCY = _rx(rf"\b({_CURRENCY_CODES})\b")
_BALANCE = _rx(r"\bbalance\b|\bset\s+cash\b")
_ADD_WALLET = _rx(r"\b(add|connect)\s+(wallet|address)\b|\b(add|connect)\s+0x")
_REMOVE_WALLET = _rx(r"\b(remove|disconnect)\s+(wallet|address)\b")
_REMOVE = _rx(r"\b(remove|delete)\b")
_WALLETISH = _rx(r"\b(wallet|address)\b")
_SET_PRICE = _rx(r"\bset\b.*\bprice\b|\bprice\b.*\bat\b|\boverride\s+price\b")
_UPDATE = _rx(r"\b(update|edit|change|modify)\b")
_TOGGLE = _rx(r"\b(hide|show)\s+(balances?|dust|small)\b")
_RISK_FREE = _rx(r"\brisk.?free\s+rate\b")
_NAVIGATE = _rx(r"\bgo\s+to\b|\bopen\b|\bnavigate\b|\bshow\s+page\b")
_QUERY = _rx(
    r"\b(what|how\s+much|how\s+many|show|list|top|summary|exposure|performance|"
    r"leverage|debt|risk|perps?)\b"
)


@dataclass(frozen=True)
class IntentRule:
    intent: IntentType
    matches: Callable[[str], bool]
    tool_ids: Tuple[str, ...]


@dataclass
class IntentClassification:
    intent: IntentType
    tool_ids: List[str] = field(default_factory=list)


# Evaluated top to bottom, first match wins. Order is precedence:
# cash top-ups are not buys, wallet removal is not position removal.
INTENT_RULES: Tuple[IntentRule, ...] = (
    IntentRule("buy", lambda t: bool(_BUY.search(t)) and not _CASH.search(t), ("buy_position",)),
    IntentRule(
        "sell",
        lambda t: bool(_SELL.search(t)) and bool(_SELL_EVERYTHING.search(t)),
        ("sell_all",),
    ),
    IntentRule("sell", lambda t: bool(_SELL.search(t)), ("sell_partial", "sell_all")),
    IntentRule(
        "add_cash",
        lambda t: bool(_ADD.search(t)) and bool(_CASH.search(t) or _CURRENCY.search(t)),
        ("add_cash",),
    ),
    IntentRule("update_cash", lambda t: bool(_BALANCE.search(t)), ("update_cash",)),
    IntentRule("add_wallet", lambda t: bool(_ADD_WALLET.search(t)), ("add_wallet",)),
    IntentRule("remove_wallet", lambda t: bool(_REMOVE_WALLET.search(t)), ("remove_wallet",)),
    IntentRule(
        "remove_position",
        lambda t: bool(_REMOVE.search(t)) and not _WALLETISH.search(t),
        ("remove_position",),
    ),
    IntentRule("set_price", lambda t: bool(_SET_PRICE.search(t)), ("set_price",)),
    IntentRule(
        "update_position",
        lambda t: bool(_UPDATE.search(t)) and not _CASH.search(t),
        ("update_position",),
    ),
    IntentRule(
        "toggle",
        lambda t: bool(_TOGGLE.search(t)),
        ("toggle_hide_balances", "toggle_hide_dust"),
    ),
    IntentRule("set_risk_free_rate", lambda t: bool(_RISK_FREE.search(t)), ("set_risk_free_rate",)),
    IntentRule("navigate", lambda t: bool(_NAVIGATE.search(t)), ("navigate",)),
    IntentRule(
        "query",
        lambda t: bool(_QUERY.search(t)) or t.rstrip().endswith("?"),
        QUERY_TOOL_IDS,
    ),
)


def classify_intent(text: str) -> IntentClassification:
    t = (text or "").strip()
    if not t:
        return IntentClassification(intent="unknown")
    for rule in INTENT_RULES:
        if rule.matches(t):
            return IntentClassification(intent=rule.intent, tool_ids=list(rule.tool_ids))
    return IntentClassification(intent="unknown")
