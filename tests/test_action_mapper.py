import unittest

from services.commands.action_mapper import fmt_amount, fmt_money, tool_call_to_action
from portfolio_fixtures import make_account, make_portfolio, make_position


class ActionMapperTests(unittest.TestCase):
    def setUp(self):
        self.revolut = make_account("Revolut", aid="rev")
        self.ibkr = make_account("IBKR", aid="ibkr")
        self.data = make_portfolio(
            [
                make_position("ETH", 10, pid="eth-1"),
                make_position("AAPL", 5, type="stock", pid="aapl-ibkr", account_id="ibkr"),
                make_position("AAPL", 2, type="stock", pid="aapl-manual"),
                make_position("CASH_EUR_1", 1000, type="cash", pid="eur-rev", account_id="rev", name="EUR Cash"),
            ],
            accounts=[self.revolut, self.ibkr],
            prices={"ETH": 3200},
        )

    def test_formatting(self):
        self.assertEqual(fmt_amount(122.85012285), "122.85012285")
        self.assertEqual(fmt_amount(10.0), "10")
        self.assertEqual(fmt_money(65000), "$65,000.00")
        self.assertEqual(fmt_amount(None), "?")

    def test_non_confirmable_tools_map_to_none(self):
        self.assertIsNone(tool_call_to_action("add_wallet", {"address": "0x1"}, self.data))
        self.assertIsNone(tool_call_to_action("query_net_worth", {}, self.data))

    def test_buy_summary_and_missing_fields(self):
        action = tool_call_to_action("buy_position", {"symbol": "msft", "totalCost": 50000}, self.data)
        self.assertEqual(action.action, "buy")
        self.assertEqual(action.summary, "Buy $50,000.00 worth of MSFT")
        self.assertEqual(action.missing_fields, ["amount"])
        self.assertIsNone(action.matched_position_id)

    def test_buy_into_existing_position(self):
        action = tool_call_to_action("buy_position", {"symbol": "ETH", "amount": 1, "price": 3000}, self.data)
        self.assertEqual(action.summary, "Buy 1 ETH at $3,000.00")
        self.assertEqual(action.total_cost, 3000)
        self.assertEqual(action.matched_position_id, "eth-1")

    def test_sell_percent(self):
        action = tool_call_to_action("sell_partial", {"symbol": "ETH", "percent": 50}, self.data)
        self.assertEqual(action.sell_percent, 50)
        self.assertEqual(action.sell_price, 3200)
        self.assertEqual(action.matched_position_id, "eth-1")
        self.assertEqual(action.summary, "Sell 50% of ETH (5 units)")

    def test_sell_prefers_linked_brokerage_position(self):
        action = tool_call_to_action("sell_all", {"symbol": "AAPL", "price": 190}, self.data)
        self.assertEqual(action.matched_position_id, "aapl-ibkr")
        self.assertEqual(action.sell_amount, 5)
        self.assertEqual(action.summary, "Sell all AAPL")

    def test_sell_alias_symbol(self):
        data = make_portfolio([make_position("GOOGL", 3, type="stock", pid="googl")])
        action = tool_call_to_action("sell_partial", {"symbol": "GOOG", "amount": 1, "price": 170}, data)
        self.assertEqual(action.matched_position_id, "googl")
        self.assertEqual(action.symbol, "GOOGL")

    def test_sell_cost_basis_price_is_flagged(self):
        action = tool_call_to_action(
            "sell_partial",
            {"symbol": "ETH", "amount": 1, "price": 2000, "priceSource": "cost_basis"},
            self.data,
        )
        self.assertEqual(action.price_source, "cost_basis")
        self.assertTrue(any("cost basis" in w for w in action.warnings))

    def test_remove_ambiguous_leaves_position_unmatched(self):
        action = tool_call_to_action("remove_position", {"symbol": "AAPL"}, self.data)
        self.assertIsNone(action.matched_position_id)
        self.assertTrue(action.warnings)

        scoped = tool_call_to_action("remove_position", {"symbol": "AAPL", "account": "ibkr"}, self.data)
        self.assertEqual(scoped.matched_position_id, "aapl-ibkr")

    def test_update_position_on_cash_becomes_cash_update(self):
        action = tool_call_to_action(
            "update_position",
            {"symbol": "CASH_EUR_1", "assetType": "cash", "amount": 1500, "account": "Revolut"},
            self.data,
        )
        self.assertEqual(action.currency, "EUR")
        self.assertEqual(action.matched_position_id, "eur-rev")
        self.assertEqual(action.summary, "Update EUR balance to 1500 in Revolut")

    def test_add_cash_tops_up_existing(self):
        action = tool_call_to_action("add_cash", {"currency": "EUR", "amount": 5000, "account": "Revolut"}, self.data)
        self.assertEqual(action.action, "add_cash")
        self.assertEqual(action.matched_account_id, "rev")
        self.assertEqual(action.matched_position_id, "eur-rev")
        self.assertEqual(action.summary, "Add 5000 EUR to Revolut")

    def test_add_cash_ambiguous_account(self):
        data = make_portfolio(accounts=[make_account("Revolut"), make_account("Revolut Broker")])
        action = tool_call_to_action("add_cash", {"currency": "EUR", "amount": 5, "account": "Revol"}, data)
        self.assertIsNone(action.matched_account_id)
        self.assertTrue(any("several accounts" in w for w in action.warnings))

    def test_set_price_is_symbol_scoped(self):
        action = tool_call_to_action("set_price", {"symbol": "BTC", "price": 65000}, self.data)
        self.assertEqual(action.new_price, 65000)
        self.assertIsNone(action.matched_position_id)
        self.assertEqual(action.summary, "Set BTC price to $65,000.00")


if __name__ == "__main__":
    unittest.main()
