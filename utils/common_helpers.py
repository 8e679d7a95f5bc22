from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx
from dateutil import parser as date_parser

_NUMBER_RE = re.compile(r"^(\d+(?:\.\d+)?|\.\d+)([kmb])?$")
_MULTIPLIERS = {"k": 1e3, "m": 1e6, "b": 1e9}
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_RELATIVE_DAYS = {"today": 0, "yesterday": -1, "tomorrow": 1}
_TEXT_RELATIVE_RE = re.compile(r"\b(today|yesterday|tomorrow)\b", re.IGNORECASE)
_TEXT_ISO_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")


def safe_json(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def round8(x: float) -> float:
    return round(float(x), 8)


def as_positive_number(value: Any) -> Optional[float]:
    """
    Coerce a user-typed quantity to a positive float.

    Accepts numbers and strings like "1,234.5", "$50k", "2.5m", "1b".
    Returns None for anything non-finite, non-positive or unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        out = float(value)
    elif isinstance(value, str):
        s = value.strip().lower().replace(",", "").replace(" ", "")
        if s.startswith("$"):
            s = s[1:]
        m = _NUMBER_RE.match(s)
        if not m:
            return None
        out = float(m.group(1)) * _MULTIPLIERS.get(m.group(2) or "", 1.0)
    else:
        return None
    if not math.isfinite(out) or out <= 0:
        return None
    return out


def to_date_only(value: Any, today: Optional[date] = None) -> str:
    """Normalize today/yesterday/tomorrow, ISO or free-form dates to YYYY-MM-DD."""
    base = today or date.today()
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    s = str(value or "").strip()
    if not s:
        return base.isoformat()
    key = s.lower()
    if key in _RELATIVE_DAYS:
        return (base + timedelta(days=_RELATIVE_DAYS[key])).isoformat()
    if _ISO_DATE_RE.match(s):
        try:
            return date.fromisoformat(s).isoformat()
        except ValueError:
            return base.isoformat()
    try:
        parsed = date_parser.parse(s, default=datetime(base.year, base.month, base.day))
    except (ValueError, OverflowError):
        return base.isoformat()
    return parsed.date().isoformat()


def date_from_text(text: Optional[str], today: Optional[date] = None) -> Optional[str]:
    """Pull a relative word or an ISO date out of free text, if present."""
    if not text:
        return None
    m = _TEXT_RELATIVE_RE.search(text)
    if m:
        return to_date_only(m.group(1), today)
    m = _TEXT_ISO_RE.search(text)
    if m:
        return to_date_only(m.group(1), today)
    return None
