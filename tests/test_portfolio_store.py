import asyncio
import json
import os
import tempfile
import unittest

from services.portfolio.store import PortfolioStore
from portfolio_fixtures import make_portfolio, make_position


class PortfolioStoreTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "nested", "db.json")

    def tearDown(self):
        self.tmp.cleanup()

    def test_missing_file_loads_empty(self):
        store = PortfolioStore(self.path)
        self.assertEqual(store.read().positions, [])
        self.assertEqual(store.read().risk_free_rate, 0.05)

    def test_corrupt_file_loads_empty(self):
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w", encoding="utf-8") as fh:
            fh.write("{not json")
        self.assertEqual(PortfolioStore(self.path).read().positions, [])

    def test_read_returns_copy(self):
        store = PortfolioStore(initial=make_portfolio([make_position("ETH", 1)]))
        snapshot = store.read()
        snapshot.positions.clear()
        self.assertEqual(len(store.read().positions), 1)

    def test_mutate_persists_camel_case_json(self):
        store = PortfolioStore(self.path)

        def add(data):
            data.positions.append(make_position("ETH", 2, cost_basis=6000))
            data.hide_dust = True
            return data, {"ok": True}

        result = asyncio.run(store.mutate(add))
        self.assertEqual(result, {"ok": True})
        with open(self.path, encoding="utf-8") as fh:
            raw = json.load(fh)
        self.assertTrue(raw["hideDust"])
        self.assertEqual(raw["positions"][0]["costBasis"], 6000)

        reloaded = PortfolioStore(self.path)
        self.assertEqual(reloaded.read().positions[0].symbol, "ETH")

    def test_failed_mutation_leaves_state_untouched(self):
        store = PortfolioStore(initial=make_portfolio([make_position("ETH", 1)]))

        def boom(data):
            data.positions.clear()
            raise RuntimeError("nope")

        with self.assertRaises(RuntimeError):
            asyncio.run(store.mutate(boom))
        self.assertEqual(len(store.read().positions), 1)

    def test_concurrent_mutations_do_not_lose_writes(self):
        store = PortfolioStore(initial=make_portfolio([make_position("ETH", 0.0)]))

        def bump(data):
            data.positions[0] = data.positions[0].model_copy(update={"amount": data.positions[0].amount + 1})
            return data, None

        async def run():
            await asyncio.gather(*(store.mutate(bump) for _ in range(20)))

        asyncio.run(run())
        self.assertEqual(store.read().positions[0].amount, 20)


if __name__ == "__main__":
    unittest.main()
