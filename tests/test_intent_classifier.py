import unittest

from services.commands.intent_classifier import QUERY_TOOL_IDS, classify_intent


class IntentClassifierTests(unittest.TestCase):
    def test_remove_wallet_beats_remove_position(self):
        res = classify_intent("remove wallet 0xabc")
        self.assertEqual(res.intent, "remove_wallet")
        self.assertEqual(res.tool_ids, ["remove_wallet"])

    def test_remove_position(self):
        self.assertEqual(classify_intent("remove my DOGE").tool_ids, ["remove_position"])

    def test_buy_vs_cash(self):
        self.assertEqual(classify_intent("bought 10 AAPL at 190").tool_ids, ["buy_position"])
        self.assertEqual(classify_intent("add 5000 EUR to Revolut").intent, "add_cash")
        self.assertEqual(classify_intent("buy cash").intent, "unknown")

    def test_sell_everything_narrows_to_sell_all(self):
        self.assertEqual(classify_intent("sold all my TSLA").tool_ids, ["sell_all"])
        self.assertEqual(classify_intent("sold half my ETH").tool_ids, ["sell_partial", "sell_all"])

    def test_cash_balance(self):
        self.assertEqual(classify_intent("my EUR balance is 1200").intent, "update_cash")

    def test_wallet_add(self):
        self.assertEqual(classify_intent("connect wallet 0x1234").intent, "add_wallet")

    def test_price_override(self):
        self.assertEqual(classify_intent("set BTC price to $65000").intent, "set_price")

    def test_update_position(self):
        self.assertEqual(classify_intent("update my AAPL position to 12 shares").intent, "update_position")

    def test_toggle_and_settings(self):
        self.assertEqual(classify_intent("hide balances").intent, "toggle")
        self.assertEqual(classify_intent("risk-free rate 4.5%").intent, "set_risk_free_rate")
        self.assertEqual(classify_intent("go to settings").intent, "navigate")

    def test_queries(self):
        res = classify_intent("what is my net worth")
        self.assertEqual(res.intent, "query")
        self.assertEqual(res.tool_ids, list(QUERY_TOOL_IDS))
        self.assertEqual(classify_intent("ETH?").intent, "query")

    def test_unknown_offers_everything(self):
        res = classify_intent("hello there")
        self.assertEqual(res.intent, "unknown")
        self.assertEqual(res.tool_ids, [])
        self.assertEqual(classify_intent("   ").intent, "unknown")


if __name__ == "__main__":
    unittest.main()
