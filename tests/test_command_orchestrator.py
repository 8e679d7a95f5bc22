import asyncio
import json
import unittest
from datetime import date

from schemas.command_api import ChatTurn, CommandRequest
from services.commands.arg_enricher import ArgumentEnricher
from services.commands.command_orchestrator import (
    ROUNDS_EXHAUSTED_MESSAGE,
    CommandOrchestrator,
    build_system_prompt,
)
from services.commands.ollama_client import LLMMessage, LLMToolCall, LLMUnavailableError
from services.commands.tool_registry import ALL_TOOL_IDS
from services.portfolio.store import PortfolioStore
from portfolio_fixtures import make_account, make_portfolio, make_position


class _FakeLLM:
    def __init__(self, replies):
        self._replies = list(replies)
        self.calls = []

    async def chat(self, messages, tools, *, base_url=None, model=None):
        self.calls.append({
            "messages": [dict(m) for m in messages],
            "tools": [t["function"]["name"] for t in tools],
            "base_url": base_url,
            "model": model,
        })
        reply = self._replies.pop(0) if self._replies else LLMMessage(content="")
        if isinstance(reply, Exception):
            raise reply
        return reply


def _call(name, **arguments):
    return LLMMessage(tool_calls=[LLMToolCall(name=name, arguments=arguments)])


class CommandOrchestratorTests(unittest.TestCase):
    def setUp(self):
        self.store = PortfolioStore(initial=make_portfolio(
            [make_position("ETH", 10, pid="eth-1", account_id="ledger")],
            accounts=[make_account("Ledger", aid="ledger")],
            prices={"ETH": 3200},
        ))

    def _orchestrator(self, llm, max_rounds=5):
        return CommandOrchestrator(
            store=self.store,
            llm=llm,
            enricher=ArgumentEnricher(today_fn=lambda: date(2026, 3, 15)),
            max_rounds=max_rounds,
        )

    def test_system_prompt_has_portfolio_context(self):
        prompt = build_system_prompt(self.store.read())
        self.assertIn("Net worth: $32,000.00", prompt)
        self.assertIn("Ledger (manual)", prompt)
        self.assertIn("- ETH (crypto): 10 units, $32,000.00 in Ledger", prompt)

    def test_query_result_is_fed_back(self):
        llm = _FakeLLM([_call("query_net_worth"), LLMMessage(content="You have $32,000.")])
        resp = asyncio.run(self._orchestrator(llm).run(CommandRequest(text="what is my net worth")))

        self.assertEqual(resp.response, "You have $32,000.")
        self.assertFalse(resp.mutations)
        self.assertEqual(resp.tool_calls[0].name, "query_net_worth")
        self.assertEqual(resp.tool_calls[0].result["netWorth"], 32000.0)
        tool_msg = llm.calls[1]["messages"][-1]
        self.assertEqual(tool_msg["role"], "tool")
        self.assertEqual(json.loads(tool_msg["content"])["netWorth"], 32000.0)
        self.assertIn("query_net_worth", llm.calls[0]["tools"])
        self.assertNotIn("buy_position", llm.calls[0]["tools"])

    def test_confirmable_mutation_stops_with_pending_action(self):
        llm = _FakeLLM([_call("sell_partial", symbol="ETH")])
        resp = asyncio.run(self._orchestrator(llm).run(CommandRequest(text="sold half my ETH")))

        self.assertEqual(len(llm.calls), 1)
        self.assertEqual(resp.pending_action.action, "sell_partial")
        self.assertEqual(resp.pending_action.sell_percent, 50)
        self.assertEqual(resp.plan.status, "ready")
        self.assertEqual(resp.plan.resolved_args["positionId"], "eth-1")
        self.assertEqual(resp.response, resp.pending_action.summary)
        self.assertEqual(self.store.read().positions[0].amount, 10)

    def test_non_confirmable_mutation_executes(self):
        llm = _FakeLLM([_call("toggle_hide_balances"), LLMMessage(content="Balances hidden.")])
        resp = asyncio.run(self._orchestrator(llm).run(CommandRequest(text="hide balances")))
        self.assertTrue(resp.mutations)
        self.assertTrue(self.store.read().hide_balances)
        self.assertIsNone(resp.pending_action)

    def test_empty_first_reply_retries_with_full_catalog(self):
        llm = _FakeLLM([LLMMessage(content=""), LLMMessage(content="Done.")])
        resp = asyncio.run(self._orchestrator(llm).run(CommandRequest(text="what is my net worth")))
        self.assertEqual(resp.response, "Done.")
        self.assertEqual(len(llm.calls), 2)
        self.assertEqual(len(llm.calls[1]["tools"]), len(ALL_TOOL_IDS))

    def test_text_only_first_reply_retries_with_full_catalog(self):
        llm = _FakeLLM([
            LLMMessage(content="I cannot do that with these tools."),
            _call("query_net_worth"),
            LLMMessage(content="You have $32,000."),
        ])
        resp = asyncio.run(self._orchestrator(llm).run(CommandRequest(text="what is my net worth")))
        self.assertEqual(len(llm.calls), 3)
        self.assertLess(len(llm.calls[0]["tools"]), len(ALL_TOOL_IDS))
        self.assertEqual(len(llm.calls[1]["tools"]), len(ALL_TOOL_IDS))
        self.assertEqual(resp.response, "You have $32,000.")

    def test_text_reply_after_tool_results_is_final(self):
        llm = _FakeLLM([_call("query_net_worth"), LLMMessage(content="You have $32,000.")])
        asyncio.run(self._orchestrator(llm).run(CommandRequest(text="what is my net worth")))
        self.assertEqual(len(llm.calls), 2)
        self.assertEqual(llm.calls[0]["tools"], llm.calls[1]["tools"])

    def test_rounds_are_bounded(self):
        llm = _FakeLLM([_call("query_net_worth") for _ in range(10)])
        resp = asyncio.run(self._orchestrator(llm, max_rounds=3).run(CommandRequest(text="how much?")))
        self.assertEqual(len(llm.calls), 3)
        self.assertEqual(resp.response, ROUNDS_EXHAUSTED_MESSAGE)
        self.assertEqual(len(resp.tool_calls), 3)

    def test_history_and_overrides_are_passed(self):
        llm = _FakeLLM([LLMMessage(content="Hi!")])
        req = CommandRequest(
            text="hello",
            ollama_url="http://gpu-box:11434",
            ollama_model="qwen2.5",
            history=[ChatTurn(role="user", content="earlier"), ChatTurn(role="assistant", content="reply")],
        )
        asyncio.run(self._orchestrator(llm).run(req))
        call = llm.calls[0]
        self.assertEqual((call["base_url"], call["model"]), ("http://gpu-box:11434", "qwen2.5"))
        self.assertEqual([m["role"] for m in call["messages"]], ["system", "user", "assistant", "user"])
        self.assertEqual(len(call["tools"]), len(ALL_TOOL_IDS))

    def test_llm_errors_propagate(self):
        llm = _FakeLLM([LLMUnavailableError("Ollama not reachable")])
        with self.assertRaises(LLMUnavailableError):
            asyncio.run(self._orchestrator(llm).run(CommandRequest(text="what is my net worth")))


if __name__ == "__main__":
    unittest.main()
