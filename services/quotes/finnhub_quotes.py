from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, Optional

import httpx

from services.quotes.base import QuoteProviderError
from utils.common_helpers import safe_json


class FinnhubQuoteProvider:
    """
    Live equity quotes from Finnhub's /quote endpoint.

    Finnhub only answers "now" on the free tier, so any past date returns
    None and the caller moves on to the daily-close provider.
    """

    name = "finnhub"
    BASE_URL = "https://finnhub.io/api/v1"

    def __init__(self, api_key: Optional[str], timeout: float = 5.0):
        self.api_key = (api_key or "").strip()
        self.timeout = timeout

    @asynccontextmanager
    async def _client(self, client: Optional[httpx.AsyncClient] = None):
        if client is not None:
            yield client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as c:
            yield c

    def _auth_params(self, **params: Any) -> Dict[str, Any]:
        return {**params, "token": self.api_key}

    async def fetch_price(
        self,
        symbol: str,
        on_date: Optional[date] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> Optional[float]:
        sym = (symbol or "").strip().upper()
        if not sym:
            raise QuoteProviderError("Missing symbol")
        if not self.api_key:
            raise QuoteProviderError("Missing FINNHUB_API_KEY")
        if on_date is not None and on_date != date.today():
            return None

        async with self._client(client) as c:
            r = await c.get(f"{self.BASE_URL}/quote", params=self._auth_params(symbol=sym))
            try:
                r.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise QuoteProviderError(f"Finnhub quote failed: {e.response.status_code}") from e

            data = safe_json(r) or {}
            current = data.get("c")
            if current in (None, 0):
                return None
            try:
                return float(current)
            except (TypeError, ValueError) as e:
                raise QuoteProviderError("Finnhub quote payload malformed") from e
