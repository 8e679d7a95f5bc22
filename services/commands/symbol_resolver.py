"""Fuzzy matching of user-typed tickers against symbols already held."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

DEFAULT_MIN_SCORE = 0.75
DEFAULT_MIN_GAP = 0.12

SYMBOL_TOKEN_RE = re.compile(r"[A-Z][A-Z0-9.\-]{0,9}")

# Words that look like tickers once uppercased but never are.
FREE_TEXT_STOPWORDS = frozenset({
    "A", "I", "AN", "THE", "MY", "OF", "ALL", "AND", "OR", "TO", "IN", "AT", "ON",
    "FOR", "FROM", "WITH", "SOME", "HALF", "THIRD", "QUARTER", "WORTH", "SHARES",
    "SHARE", "UNITS", "COINS", "POSITION", "PRICE", "ENTIRE", "EVERYTHING",
    "BUY", "BOUGHT", "PURCHASE", "PURCHASED", "SELL", "SOLD", "DUMP", "DUMPED",
    "REMOVE", "DELETE", "UPDATE", "EDIT", "CHANGE", "SET", "ADD", "ADDED",
    "TODAY", "YESTERDAY", "TOMORROW", "LAST", "WEEK", "MONTH", "YEAR", "AGO",
    "NOW", "IS", "PLEASE", "JUST",
})


@dataclass(frozen=True)
class SymbolMatchConfig:
    min_score: float = DEFAULT_MIN_SCORE
    min_gap: float = DEFAULT_MIN_GAP


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost))
        prev = cur
    return prev[-1]


def similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def build_catalog(symbols: Iterable[Optional[str]]) -> Set[str]:
    return {s.strip().upper() for s in symbols if s and s.strip()}


def resolve_closest_symbol(
    catalog: Iterable[str],
    raw: Optional[str],
    config: Optional[SymbolMatchConfig] = None,
) -> str:
    """
    Map ``raw`` onto a catalog symbol, or return it (uppercased) unchanged.

    Order: exact match, a single prefix match, then the best edit-distance
    score if it clears ``min_score`` and beats the runner-up by ``min_gap``.
    Near-ties fall back to the input rather than guessing.
    """
    cfg = config or SymbolMatchConfig()
    needle = (raw or "").strip().upper()
    if not needle:
        return ""
    candidates = build_catalog(catalog)
    if not candidates or needle in candidates:
        return needle

    prefix = [c for c in candidates if c.startswith(needle) or needle.startswith(c)]
    if len(prefix) == 1:
        return prefix[0]

    best_symbol: Optional[str] = None
    best_score = -1.0
    second_score = 0.0
    for candidate in sorted(candidates):
        score = similarity(needle, candidate)
        if score > best_score:
            second_score = max(second_score, best_score)
            best_symbol, best_score = candidate, score
        elif score > second_score:
            second_score = score

    if best_symbol is None:
        return needle
    if best_score >= cfg.min_score and (best_score - max(second_score, 0.0)) >= cfg.min_gap:
        return best_symbol
    return needle


def symbol_tokens(text: Optional[str]) -> List[str]:
    tokens: List[str] = []
    for tok in SYMBOL_TOKEN_RE.findall((text or "").upper()):
        tok = tok.rstrip(".-")
        if tok and tok not in FREE_TEXT_STOPWORDS:
            tokens.append(tok)
    return tokens


def guess_symbol_from_free_text(
    catalog: Iterable[str],
    text: Optional[str],
    config: Optional[SymbolMatchConfig] = None,
) -> Optional[str]:
    """First symbol-shaped token in ``text`` that resolves into the catalog."""
    candidates = build_catalog(catalog)
    if not candidates:
        return None
    for tok in symbol_tokens(text):
        resolved = resolve_closest_symbol(candidates, tok, config)
        if resolved in candidates:
            return resolved
    return None
