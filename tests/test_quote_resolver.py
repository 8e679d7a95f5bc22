import asyncio
import unittest
from datetime import date, timedelta

from services.commands.quote_resolver import QuoteGuardConfig, QuoteResolver, is_suspicious_quote
from services.quotes.base import QuoteProviderError
from portfolio_fixtures import make_portfolio, make_position


TODAY = date(2026, 3, 15)


class _FakeProvider:
    def __init__(self, name, price=None, delay=0.0, error=None):
        self.name = name
        self.price = price
        self.delay = delay
        self.error = error
        self.calls = []

    async def fetch_price(self, symbol, on_date=None):
        self.calls.append((symbol, on_date))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.price


def _resolver(**providers):
    return QuoteResolver(
        config=QuoteGuardConfig(timeout_s=0.05),
        today_fn=lambda: TODAY,
        **providers,
    )


class SuspiciousQuoteTests(unittest.TestCase):
    def test_ratio_bounds(self):
        cfg = QuoteGuardConfig()
        self.assertTrue(is_suspicious_quote(500, 100, TODAY, TODAY, cfg))
        self.assertTrue(is_suspicious_quote(20, 100, TODAY, TODAY, cfg))
        self.assertFalse(is_suspicious_quote(150, 100, TODAY, TODAY, cfg))

    def test_outside_window_or_no_reference(self):
        cfg = QuoteGuardConfig()
        self.assertFalse(is_suspicious_quote(500, 100, TODAY - timedelta(days=30), TODAY, cfg))
        self.assertFalse(is_suspicious_quote(500, None, TODAY, TODAY, cfg))


class QuoteResolverTests(unittest.TestCase):
    def test_suspicious_quote_returns_reference(self):
        data = make_portfolio([make_position("ACME", 5, type="stock")], prices={"ACME": 100})
        equities = _FakeProvider("finnhub", price=500)
        resolver = _resolver(equities=equities)
        res = asyncio.run(resolver.resolve("ACME", None, TODAY - timedelta(days=1), data))
        self.assertEqual(res.price, 100)
        self.assertEqual(res.source, "stored")

    def test_timeout_degrades_to_next_tier(self):
        slow = _FakeProvider("finnhub", price=410, delay=1.0)
        history = _FakeProvider("yahoo_history", price=407)
        resolver = _resolver(equities=slow, history=history)
        res = asyncio.run(resolver.resolve("MSFT", "stock", TODAY, make_portfolio()))
        self.assertEqual(res.price, 407)
        self.assertEqual(res.source, "yahoo_history")

    def test_provider_error_falls_back_to_stored(self):
        data = make_portfolio(prices={"MSFT": 399})
        failing = _FakeProvider("finnhub", error=QuoteProviderError("boom"))
        resolver = _resolver(equities=failing)
        res = asyncio.run(resolver.resolve("MSFT", "stock", TODAY - timedelta(days=2), data))
        self.assertEqual(res.price, 399)

    def test_today_with_stored_price_skips_network(self):
        data = make_portfolio(prices={"ETH": 3200})
        crypto = _FakeProvider("coingecko", price=3300)
        res = asyncio.run(_resolver(crypto=crypto).resolve("ETH", "crypto", TODAY, data))
        self.assertEqual(res.price, 3200)
        self.assertEqual(crypto.calls, [])

    def test_cash_is_one(self):
        res = asyncio.run(_resolver().resolve("EUR", "cash", TODAY))
        self.assertEqual(res.price, 1.0)

    def test_unknown_type_tries_crypto_for_known_coins(self):
        equities = _FakeProvider("finnhub", price=None)
        crypto = _FakeProvider("coingecko", price=150)
        res = asyncio.run(_resolver(equities=equities, crypto=crypto).resolve("SOL", None, TODAY, make_portfolio()))
        self.assertEqual(res.price, 150)
        self.assertEqual(res.resolved_type, "crypto")

    def test_unknown_ticker_without_coin_mapping_skips_crypto(self):
        crypto = _FakeProvider("coingecko", price=1)
        res = asyncio.run(_resolver(crypto=crypto).resolve("ZZZQ", None, TODAY, make_portfolio()))
        self.assertIsNone(res.price)
        self.assertEqual(crypto.calls, [])

    def test_held_position_supplies_type_hint(self):
        data = make_portfolio([make_position("ETH", 1, type="crypto")])
        equities = _FakeProvider("finnhub", price=9)
        crypto = _FakeProvider("coingecko", price=3100)
        res = asyncio.run(_resolver(equities=equities, crypto=crypto).resolve("eth", None, TODAY, data))
        self.assertEqual(res.price, 3100)
        self.assertEqual(equities.calls, [])


if __name__ == "__main__":
    unittest.main()
