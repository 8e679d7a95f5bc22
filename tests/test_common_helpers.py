import unittest
from datetime import date

from utils.common_helpers import as_positive_number, date_from_text, round8, to_date_only


TODAY = date(2026, 3, 15)


class PositiveNumberTests(unittest.TestCase):
    def test_plain_numbers(self):
        self.assertEqual(as_positive_number(5), 5.0)
        self.assertEqual(as_positive_number("1,234.5"), 1234.5)
        self.assertEqual(as_positive_number(" $ 20 "), 20.0)

    def test_suffixes(self):
        self.assertEqual(as_positive_number("$50k"), 50000.0)
        self.assertEqual(as_positive_number("2.5M"), 2500000.0)
        self.assertEqual(as_positive_number("1b"), 1e9)

    def test_rejects_bad_values(self):
        for bad in (None, True, 0, -3, "abc", "", float("nan"), float("inf"), [], "-5"):
            self.assertIsNone(as_positive_number(bad), bad)

    def test_round8(self):
        self.assertEqual(round8(50000 / 407), 122.85012285)


class DateTests(unittest.TestCase):
    def test_relative_words(self):
        self.assertEqual(to_date_only("today", TODAY), "2026-03-15")
        self.assertEqual(to_date_only("Yesterday", TODAY), "2026-03-14")
        self.assertEqual(to_date_only("tomorrow", TODAY), "2026-03-16")

    def test_iso_and_free_form(self):
        self.assertEqual(to_date_only("2025-12-01", TODAY), "2025-12-01")
        self.assertEqual(to_date_only("March 3, 2026", TODAY), "2026-03-03")
        self.assertEqual(to_date_only(date(2024, 1, 2), TODAY), "2024-01-02")

    def test_unparseable_falls_back_to_today(self):
        self.assertEqual(to_date_only(None, TODAY), "2026-03-15")
        self.assertEqual(to_date_only("2025-13-45", TODAY), "2026-03-15")
        self.assertEqual(to_date_only("whenever", TODAY), "2026-03-15")

    def test_date_from_text(self):
        self.assertEqual(date_from_text("sold my ETH yesterday", TODAY), "2026-03-14")
        self.assertEqual(date_from_text("bought on 2026-01-05 at 10", TODAY), "2026-01-05")
        self.assertIsNone(date_from_text("bought 10 AAPL", TODAY))


if __name__ == "__main__":
    unittest.main()
