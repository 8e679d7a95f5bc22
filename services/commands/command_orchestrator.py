"""Command orchestrator: LLM tool loop over the portfolio tools.

Flow:
  1. System prompt with portfolio context (accounts, largest positions, net worth)
  2. Intent classification narrows the tool slice offered to the model
  3. Up to ``max_rounds`` rounds:
       enrich each tool call; confirmable mutations stop the loop and come
       back as ``pendingAction`` + ``plan``; everything else executes and
       its result is fed back as a ``tool`` message
  4. Final assistant text, or the last one seen when rounds run out
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional

from schemas.command_api import CommandRequest, CommandResponse, ToolCallLog
from schemas.portfolio import PortfolioData
from services.commands.action_mapper import fmt_money, tool_call_to_action
from services.commands.arg_enricher import ArgumentEnricher
from services.commands.intent_classifier import classify_intent
from services.commands.ollama_client import ChatClient
from services.commands.pipeline import run_command_pipeline
from services.commands.tool_executor import PortfolioToolExecutor
from services.commands.tool_registry import CONFIRM_MUTATION_TOOLS, tool_schemas
from services.portfolio import analytics
from services.portfolio.store import PortfolioStore

logger = logging.getLogger(__name__)

CONTEXT_TOP_POSITIONS = 10

SYSTEM_PROMPT = (
    "You are the command assistant of a personal portfolio tracker. "
    "Use the provided tools to answer questions about the portfolio or to change it. "
    "Call a tool whenever the user asks for data or an action; never invent numbers. "
    "Symbols are tickers (AAPL, BTC). Dates are YYYY-MM-DD. "
    "Reply briefly in plain text once you have what you need."
)

ROUNDS_EXHAUSTED_MESSAGE = "I could not finish that request. Try rephrasing it."


def build_portfolio_context(data: PortfolioData) -> str:
    df = analytics.visible_positions(data)
    lines: List[str] = [f"Net worth: {fmt_money(float(df['value'].sum()) if len(df) else 0.0)}"]

    if data.accounts:
        names = ", ".join(
            f"{a.name} ({'manual' if a.is_manual else a.connection.data_source})" for a in data.accounts
        )
        lines.append(f"Accounts: {names}")

    if len(df):
        top = df.assign(abs_value=df["value"].abs()).sort_values("abs_value", ascending=False).head(CONTEXT_TOP_POSITIONS)
        accounts = {a.id: a.name for a in data.accounts}
        lines.append("Largest positions:")
        for row in top.itertuples(index=False):
            where = f" in {accounts[row.account_id]}" if row.account_id in accounts else ""
            lines.append(f"- {row.symbol} ({row.type}): {row.amount:g} units, {fmt_money(float(row.value))}{where}")
    else:
        lines.append("The portfolio is empty.")
    return "\n".join(lines)


def build_system_prompt(data: PortfolioData) -> str:
    return f"{SYSTEM_PROMPT}\n\nPortfolio:\n{build_portfolio_context(data)}"


class CommandOrchestrator:
    def __init__(
        self,
        *,
        store: PortfolioStore,
        llm: ChatClient,
        executor: Optional[PortfolioToolExecutor] = None,
        enricher: Optional[ArgumentEnricher] = None,
        max_rounds: int = 5,
    ):
        self.store = store
        self.llm = llm
        self.executor = executor or PortfolioToolExecutor(store)
        self.enricher = enricher or ArgumentEnricher()
        self.max_rounds = max(1, int(max_rounds))

    # ── helpers ──────────────────────────────────────────────────────

    def _initial_messages(self, req: CommandRequest, data: PortfolioData) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": build_system_prompt(data)}]
        messages.extend({"role": t.role, "content": t.content} for t in req.history)
        messages.append({"role": "user", "content": req.text})
        return messages

    async def _chat(self, req: CommandRequest, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]):
        return await self.llm.chat(messages, tools, base_url=req.ollama_url, model=req.ollama_model)

    # ── main loop ────────────────────────────────────────────────────

    async def run(self, req: CommandRequest, req_id: str = "-") -> CommandResponse:
        started = time.perf_counter()
        data = self.store.read()
        intent = classify_intent(req.text)
        messages = self._initial_messages(req, data)
        tools = tool_schemas(intent.tool_ids)
        logger.info(
            "command.start req_id=%s intent=%s tools=%s text_len=%s",
            req_id, intent.intent, len(tools), len(req.text),
        )

        calls: List[ToolCallLog] = []
        mutated = False
        last_content = ""
        retried_full = False
        rounds = 0

        while rounds < self.max_rounds:
            rounds += 1
            reply = await self._chat(req, messages, tools)
            logger.info(
                "command.round req_id=%s round=%s tool_calls=%s",
                req_id, rounds, [c.name for c in reply.tool_calls],
            )

            if not reply.tool_calls and rounds == 1 and intent.tool_ids and not retried_full:
                retried_full = True
                rounds -= 1
                tools = tool_schemas(None)
                logger.info("command.retry_full_catalog req_id=%s", req_id)
                continue

            if reply.content.strip():
                last_content = reply.content
            if not reply.tool_calls:
                break

            messages.append(reply.to_history())
            for call in reply.tool_calls:
                data = self.store.read()
                args = await self.enricher.enrich(call.name, call.arguments, data, req.text)

                if call.name in CONFIRM_MUTATION_TOOLS:
                    action = tool_call_to_action(call.name, args, data)
                    plan = run_command_pipeline(call.name, args, data, req.text)
                    calls.append(ToolCallLog(name=call.name, args=args, result={"pending": True}, is_mutation=True))
                    logger.info(
                        "command.pending req_id=%s tool=%s plan_status=%s elapsed_ms=%s",
                        req_id, call.name, plan.status, int((time.perf_counter() - started) * 1000),
                    )
                    return CommandResponse(
                        response=reply.content.strip() or (action.summary if action else ""),
                        tool_calls=calls,
                        mutations=mutated,
                        pending_action=action,
                        plan=plan,
                    )

                execution = await self.executor.execute(call.name, args)
                mutated = mutated or (execution.is_mutation and execution.ok)
                calls.append(ToolCallLog(
                    name=call.name, args=args, result=execution.result, is_mutation=execution.is_mutation,
                ))
                messages.append({"role": "tool", "content": json.dumps(execution.result, default=str)})
        else:
            logger.warning("command.rounds_exhausted req_id=%s rounds=%s", req_id, self.max_rounds)

        logger.info(
            "command.done req_id=%s rounds=%s tool_calls=%s mutations=%s elapsed_ms=%s",
            req_id, rounds, len(calls), mutated, int((time.perf_counter() - started) * 1000),
        )
        return CommandResponse(
            response=last_content or ROUNDS_EXHAUSTED_MESSAGE,
            tool_calls=calls,
            mutations=mutated,
        )
