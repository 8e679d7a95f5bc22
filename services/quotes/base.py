from __future__ import annotations

from datetime import date
from typing import Optional, Protocol


class QuoteProviderError(Exception):
    """A quote provider failed to answer (HTTP error, bad payload, missing key)."""


class QuoteProvider(Protocol):
    name: str

    async def fetch_price(self, symbol: str, on_date: Optional[date] = None) -> Optional[float]:
        """USD price for ``symbol`` on ``on_date`` (today when None), or None."""
        ...
