from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional

from schemas.commands import AccountResolution
from schemas.portfolio import Account

# Different tool callers name the "which account" argument differently.
ACCOUNT_ARG_KEYS = (
    "account",
    "accountName",
    "account_name",
    "accountLabel",
    "account_label",
    "bankAccount",
    "bank_account",
    "destinationAccount",
    "destination_account",
    "destination",
    "to",
)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_account_name(value: Optional[str]) -> str:
    return _NON_ALNUM.sub("", (value or "").strip().lower())


def account_hint_from_args(args: Optional[Dict[str, Any]]) -> Optional[str]:
    """First non-empty string under any of the accepted account keys."""
    for key in ACCOUNT_ARG_KEYS:
        value = (args or {}).get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _tier(matches: List[Account]) -> Optional[AccountResolution]:
    if len(matches) == 1:
        return AccountResolution(status="matched", account=matches[0], candidates=matches)
    if len(matches) > 1:
        return AccountResolution(status="ambiguous", candidates=matches)
    return None


def resolve_account(
    accounts: Iterable[Account],
    query: Optional[str],
    *,
    manual_only: bool = False,
) -> AccountResolution:
    """
    Exact normalized name first, then substring either way. More than one
    hit in a tier is ambiguous; the first hit is never picked silently.
    """
    if not (query or "").strip():
        return AccountResolution(status="missing")

    needle = normalize_account_name(query)
    pool = [a for a in accounts if not manual_only or a.is_manual]
    if not needle:
        return AccountResolution(status="unmatched")

    named = [(a, normalize_account_name(a.name)) for a in pool]

    exact = _tier([a for a, n in named if n == needle])
    if exact:
        return exact

    partial = _tier([a for a, n in named if n and (needle in n or n in needle)])
    if partial:
        return partial

    return AccountResolution(status="unmatched")
