from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, Optional

import httpx

from services.quotes.base import QuoteProviderError
from utils.common_helpers import safe_json

COIN_ID_MAP: Dict[str, str] = {
    # majors
    "btc": "bitcoin",
    "eth": "ethereum",
    "usdt": "tether",
    "usdc": "usd-coin",
    "bnb": "binancecoin",
    "xrp": "ripple",
    "ada": "cardano",
    "doge": "dogecoin",
    "sol": "solana",
    "dot": "polkadot",
    "matic": "matic-network",
    "pol": "matic-network",
    "link": "chainlink",
    "uni": "uniswap",
    "aave": "aave",
    "atom": "cosmos",
    "ltc": "litecoin",
    "avax": "avalanche-2",
    "arb": "arbitrum",
    "op": "optimism",
    "apt": "aptos",
    "sui": "sui",
    "sei": "sei-network",
    "inj": "injective-protocol",
    "near": "near",
    "xlm": "stellar",
    "trx": "tron",
    "etc": "ethereum-classic",
    "xmr": "monero",
    "fil": "filecoin",
    "hbar": "hedera-hashgraph",
    "icp": "internet-computer",
    "algo": "algorand",
    "tia": "celestia",
    # wrapped / staked
    "wbtc": "wrapped-bitcoin",
    "steth": "staked-ether",
    "wsteth": "wrapped-steth",
    "weth": "weth",
    "reth": "rocket-pool-eth",
    "cbeth": "coinbase-wrapped-staked-eth",
    # defi
    "mkr": "maker",
    "crv": "curve-dao-token",
    "ldo": "lido-dao",
    "comp": "compound-governance-token",
    "pendle": "pendle",
    "gmx": "gmx",
    "ena": "ethena",
    "ethfi": "ether-fi",
    "eigen": "eigenlayer",
    # stablecoins
    "dai": "dai",
    "pyusd": "paypal-usd",
    "fdusd": "first-digital-usd",
    # memes
    "pepe": "pepe",
    "shib": "shiba-inu",
    "wif": "dogwifcoin",
    "bonk": "bonk",
    # solana ecosystem
    "jup": "jupiter-exchange-solana",
    "jto": "jito-governance-token",
    "pyth": "pyth-network",
    "ray": "raydium",
}


def coin_id(symbol: str) -> str:
    key = (symbol or "").strip().lower()
    return COIN_ID_MAP.get(key, key)


def has_known_mapping(symbol: str) -> bool:
    return (symbol or "").strip().lower() in COIN_ID_MAP


class CoinGeckoQuoteProvider:
    """Spot prices from /simple/price, past days from /coins/{id}/history."""

    name = "coingecko"

    def __init__(self, base_url: str = "https://api.coingecko.com/api/v3", timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @asynccontextmanager
    async def _client(self, client: Optional[httpx.AsyncClient] = None):
        if client is not None:
            yield client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as c:
            yield c

    async def _get(self, c: httpx.AsyncClient, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        r = await c.get(f"{self.base_url}{path}", params=params)
        try:
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise QuoteProviderError(f"CoinGecko request failed: {e.response.status_code}") from e
        return safe_json(r) or {}

    async def fetch_price(
        self,
        symbol: str,
        on_date: Optional[date] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> Optional[float]:
        cid = coin_id(symbol)
        if not cid:
            raise QuoteProviderError("Missing symbol")

        async with self._client(client) as c:
            if on_date is None or on_date >= date.today():
                data = await self._get(c, "/simple/price", {"ids": cid, "vs_currencies": "usd"})
                raw = (data.get(cid) or {}).get("usd")
            else:
                data = await self._get(
                    c,
                    f"/coins/{cid}/history",
                    {"date": on_date.strftime("%d-%m-%Y"), "localization": "false"},
                )
                raw = ((data.get("market_data") or {}).get("current_price") or {}).get("usd")

        if raw is None:
            return None
        try:
            price = float(raw)
        except (TypeError, ValueError) as e:
            raise QuoteProviderError("CoinGecko payload malformed") from e
        return price if price > 0 else None
