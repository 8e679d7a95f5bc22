"""End-to-end: free text -> LLM tool call -> enrichment -> pending action -> confirm."""
import asyncio
import unittest
from datetime import date

from schemas.command_api import CommandRequest
from services.commands.arg_enricher import ArgumentEnricher
from services.commands.command_orchestrator import CommandOrchestrator
from services.commands.ollama_client import LLMMessage, LLMToolCall
from services.commands.quote_resolver import QuoteResolver
from services.commands.tool_executor import PortfolioToolExecutor
from services.portfolio.store import PortfolioStore
from portfolio_fixtures import make_account, make_portfolio, make_position


TODAY = date(2026, 3, 15)


class _ScriptedLLM:
    def __init__(self, name, arguments):
        self.reply = LLMMessage(tool_calls=[LLMToolCall(name=name, arguments=arguments)])

    async def chat(self, messages, tools, *, base_url=None, model=None):
        return self.reply


class _FixedProvider:
    name = "finnhub"

    def __init__(self, price):
        self.price = price

    async def fetch_price(self, symbol, on_date=None):
        return self.price


class CommandScenarioTests(unittest.TestCase):
    def setUp(self):
        self.store = PortfolioStore(initial=make_portfolio(
            [
                make_position("ETH", 10, pid="eth-1", cost_basis=20000),
                make_position("CASH_EUR_1", 2000, type="cash", pid="eur-rev", account_id="rev", name="EUR Cash"),
            ],
            accounts=[make_account("Revolut", aid="rev")],
            prices={"ETH": 3200},
        ))
        quotes = QuoteResolver(equities=_FixedProvider(407), today_fn=lambda: TODAY)
        self.enricher = ArgumentEnricher(quotes=quotes, today_fn=lambda: TODAY)

    def _run(self, text, tool, **arguments):
        orchestrator = CommandOrchestrator(
            store=self.store,
            llm=_ScriptedLLM(tool, arguments),
            enricher=self.enricher,
        )
        return asyncio.run(orchestrator.run(CommandRequest(text=text)))

    def _confirm(self, resp):
        executor = PortfolioToolExecutor(self.store)
        return asyncio.run(executor.execute(resp.plan.command_id, resp.plan.resolved_args))

    def test_sold_half_my_eth(self):
        resp = self._run("sold half my ETH", "sell_partial", symbol="ETH")
        action = resp.pending_action
        self.assertEqual(action.action, "sell_partial")
        self.assertEqual(action.sell_percent, 50)
        self.assertEqual(action.matched_position_id, "eth-1")
        self.assertEqual(action.sell_price, 3200)

        result = self._confirm(resp)
        self.assertTrue(result.ok, result.result)
        self.assertEqual(self.store.read().position_by_id("eth-1").amount, 5)

    def test_bought_50k_worth_of_msft(self):
        resp = self._run("bought $50k worth of MSFT", "buy_position", symbol="MSFT")
        action = resp.pending_action
        self.assertEqual(action.action, "buy")
        self.assertEqual(action.symbol, "MSFT")
        self.assertEqual(action.total_cost, 50000)
        self.assertEqual(action.price_per_unit, 407)
        self.assertAlmostEqual(action.amount, 122.85, places=2)
        self.assertEqual(action.asset_type, "stock")
        self.assertEqual(action.price_source, "finnhub")

        result = self._confirm(resp)
        msft = self.store.read().position_by_id(result.result["positionId"])
        self.assertEqual((msft.type, msft.cost_basis), ("stock", 50000))

    def test_add_5000_eur_to_revolut(self):
        resp = self._run("add 5000 EUR to Revolut", "add_cash", currency="EUR", amount=5000, account="Revolut")
        action = resp.pending_action
        self.assertEqual(action.action, "add_cash")
        self.assertEqual(action.matched_account_id, "rev")
        self.assertEqual(action.matched_position_id, "eur-rev")
        self.assertEqual(resp.plan.status, "ready")

        self._confirm(resp)
        data = self.store.read()
        self.assertEqual(data.position_by_id("eur-rev").amount, 7000)
        self.assertEqual(len([p for p in data.positions if p.type == "cash"]), 1)

    def test_set_btc_price(self):
        resp = self._run("set BTC price to $65000", "set_price", symbol="BTC")
        action = resp.pending_action
        self.assertEqual(action.action, "set_price")
        self.assertEqual(action.symbol, "BTC")
        self.assertEqual(action.new_price, 65000)
        self.assertIsNone(action.matched_position_id)

        self._confirm(resp)
        self.assertEqual(self.store.read().custom_prices["btc"].price, 65000)


if __name__ == "__main__":
    unittest.main()
