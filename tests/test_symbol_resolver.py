import unittest

from services.commands.symbol_resolver import (
    SymbolMatchConfig,
    guess_symbol_from_free_text,
    resolve_closest_symbol,
    similarity,
    symbol_tokens,
)


CATALOG = ["AAPL", "MSFT", "ETH", "BTC", "GOOGL", "NVDA"]


class SymbolResolverTests(unittest.TestCase):
    def test_exact_match_wins_over_near_misses(self):
        catalog = ["ETH", "ETHW", "ETC", "ETHFI"]
        self.assertEqual(resolve_closest_symbol(catalog, "ETH"), "ETH")
        self.assertEqual(resolve_closest_symbol(catalog, "eth"), "ETH")

    def test_single_prefix_match(self):
        self.assertEqual(resolve_closest_symbol(CATALOG, "GOOG"), "GOOGL")

    def test_typo_resolves_to_closest(self):
        self.assertEqual(resolve_closest_symbol(CATALOG, "NVDIA"), "NVDA")
        self.assertEqual(resolve_closest_symbol(CATALOG, "APPL"), "AAPL")

    def test_equal_scores_return_input(self):
        # One edit away from both candidates, each scoring above the threshold.
        self.assertEqual(resolve_closest_symbol(["ABCDE1", "ABCDE2"], "ABCDE3"), "ABCDE3")

    def test_low_score_returns_input_uppercased(self):
        self.assertEqual(resolve_closest_symbol(CATALOG, "xyz"), "XYZ")

    def test_empty_input_and_empty_catalog(self):
        self.assertEqual(resolve_closest_symbol(CATALOG, ""), "")
        self.assertEqual(resolve_closest_symbol([], "aapl"), "AAPL")

    def test_idempotent(self):
        for raw in ["aapl", "NVDIA", "GOOG", "xyz", "ABD", "btc", "APPL", "E"]:
            once = resolve_closest_symbol(CATALOG, raw)
            self.assertEqual(resolve_closest_symbol(CATALOG, once), once, raw)

    def test_thresholds_are_configurable(self):
        strict = SymbolMatchConfig(min_score=0.99, min_gap=0.12)
        self.assertEqual(resolve_closest_symbol(CATALOG, "APPL", strict), "APPL")

    def test_similarity_bounds(self):
        self.assertEqual(similarity("AAPL", "AAPL"), 1.0)
        self.assertEqual(similarity("", ""), 1.0)
        self.assertAlmostEqual(similarity("ABC", "ABD"), 2 / 3)

    def test_free_text_guess_skips_stopwords(self):
        self.assertEqual(symbol_tokens("sold half my ETH"), ["ETH"])
        self.assertEqual(guess_symbol_from_free_text(CATALOG, "sold half my eth today"), "ETH")
        self.assertIsNone(guess_symbol_from_free_text(CATALOG, "sold half of it"))
        self.assertIsNone(guess_symbol_from_free_text([], "sold my ETH"))


if __name__ == "__main__":
    unittest.main()
