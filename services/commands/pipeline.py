"""
Frame -> resolve -> plan.

``build_command_frame_from_tool_call`` normalizes raw tool arguments,
``resolve_command_target`` matches them against accounts and positions,
and ``build_execution_plan`` decides whether the command can run as-is.
Each stage is pure; ambiguity is reported, never guessed away.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from schemas.commands import (
    CommandFrame,
    CommandMetadata,
    CommandMode,
    CommandQuantity,
    CommandTarget,
    ExecutionPlan,
    ResolutionResult,
)
from schemas.portfolio import Account, PortfolioData, Position
from services.commands.account_resolver import account_hint_from_args, resolve_account
from services.commands.cash_resolver import is_cash_symbol, normalize_currency_code, resolve_cash_position
from services.commands.tool_registry import get_tool
from services.portfolio.positions import find_positions_by_symbol
from utils.common_helpers import as_positive_number, to_date_only

CASH_COMMANDS = frozenset({"add_cash", "update_cash"})
POSITION_REQUIRED_COMMANDS = frozenset({"sell_partial", "sell_all", "remove_position", "update_position"})

_DELTA_WORDS = re.compile(r"\b(add|deposit|top\s*up|increase)\b", re.IGNORECASE)


def infer_mode(command_id: str, user_text: Optional[str]) -> Optional[CommandMode]:
    if command_id == "add_cash":
        return "delta"
    if command_id == "update_cash":
        return "absolute"
    if command_id == "update_position":
        return "delta" if _DELTA_WORDS.search(user_text or "") else "absolute"
    return None


def infer_quantity(command_id: str, args: Dict[str, Any]) -> CommandQuantity:
    units = as_positive_number(args.get("amount"))
    if command_id == "buy_position":
        notional = as_positive_number(args.get("totalCost"))
        if notional is not None:
            return CommandQuantity(notional=notional, units=units)
        return CommandQuantity(units=units)
    if command_id == "sell_partial":
        percent = as_positive_number(args.get("percent"))
        if percent is not None:
            return CommandQuantity(percent=percent)
        return CommandQuantity(units=units)
    if command_id == "sell_all":
        return CommandQuantity()
    if command_id in ("update_position", "update_cash", "add_cash"):
        return CommandQuantity(units=units)
    return CommandQuantity()


def is_cash_command(command_id: str, symbol: Optional[str], asset_type: Optional[str]) -> bool:
    """Cash tools, plus an ``update_position`` aimed at a cash balance."""
    if command_id in CASH_COMMANDS:
        return True
    return command_id == "update_position" and (asset_type == "cash" or is_cash_symbol(symbol))


def build_target(command_id: str, args: Dict[str, Any]) -> CommandTarget:
    symbol = str(args.get("symbol") or "").strip().upper() or None
    asset_type = str(args.get("assetType") or "").strip().lower() or None
    cash = is_cash_command(command_id, symbol, asset_type)
    currency = normalize_currency_code(str(args.get("currency") or ""))
    if cash:
        currency = currency or normalize_currency_code(symbol)
        symbol = currency
    return CommandTarget(
        symbol=symbol,
        account_name=account_hint_from_args(args),
        currency=currency,
        position_id=str(args.get("positionId") or "").strip() or None,
        asset_type_hint="cash" if cash else asset_type,
    )


def build_command_frame_from_tool_call(
    command_id: str,
    args: Optional[Dict[str, Any]],
    user_text: Optional[str] = None,
) -> CommandFrame:
    raw = dict(args or {})
    tool = get_tool(command_id)
    warnings: List[str] = []
    if tool is None:
        warnings.append(f"Unknown command: {command_id}")
    return CommandFrame(
        command_id=command_id,
        kind=tool.kind if tool else "mutation",
        mode=infer_mode(command_id, user_text),
        target=build_target(command_id, raw),
        quantity=infer_quantity(command_id, raw),
        date=to_date_only(raw["date"]) if raw.get("date") else None,
        args=raw,
        metadata=CommandMetadata(confidence=1.0 if tool else 0.0, warnings=warnings, source="tool_call"),
    )


def resolve_command_target(
    frame: CommandFrame,
    accounts: List[Account],
    positions: List[Position],
) -> ResolutionResult:
    target = frame.target.model_copy()
    cash = is_cash_command(frame.command_id, target.symbol, target.asset_type_hint)
    status = "matched"
    warnings: List[str] = []

    if target.account_name:
        resolution = resolve_account(
            accounts,
            target.account_name,
            manual_only=cash,
        )
        if resolution.status == "matched" and resolution.account is not None:
            target.account_id = resolution.account.id
            target.account_name = resolution.account.name
        elif resolution.status == "ambiguous":
            status = "ambiguous"
            warnings.append("Account match is ambiguous.")
        else:
            status = "unresolved"
            warnings.append("Account match not found.")

    requires_position = frame.command_id in POSITION_REQUIRED_COMMANDS and not cash
    if target.position_id:
        held = next((p for p in positions if p.id == target.position_id), None)
        if held is None and requires_position:
            status = "unresolved" if status != "ambiguous" else status
            warnings.append("Position match not found.")
        elif held is not None:
            target.symbol = held.symbol.upper()
            target.account_id = target.account_id or held.account_id
    elif cash:
        if status == "matched" and target.currency:
            held_cash = resolve_cash_position(positions, target.currency, target.account_id)
            if held_cash is not None:
                target.position_id = held_cash.id
                target.account_id = target.account_id or held_cash.account_id
    elif target.symbol:
        matches = find_positions_by_symbol(positions, target.symbol, target.account_id)
        if len(matches) == 1:
            target.position_id = matches[0].id
            target.symbol = matches[0].symbol.upper()
            target.account_id = target.account_id or matches[0].account_id
        elif requires_position and len(matches) > 1:
            status = "ambiguous"
            warnings.append("Position match is ambiguous.")
        elif requires_position:
            status = "unresolved" if status != "ambiguous" else status
            warnings.append("Position match not found.")

    return ResolutionResult(status=status, target=target, warnings=warnings)


def build_execution_plan(frame: CommandFrame, resolution: ResolutionResult) -> ExecutionPlan:
    if frame.metadata.confidence <= 0:
        status = "blocked"
    elif resolution.status == "matched":
        status = "ready"
    else:
        status = "needs_clarification"
    resolved = {**frame.args, **resolution.target.model_dump(by_alias=True, exclude_none=True)}
    if frame.mode and "mode" not in resolved:
        resolved["mode"] = frame.mode
    return ExecutionPlan(
        command_id=frame.command_id,
        kind=frame.kind,
        status=status,
        resolved_args=resolved,
        warnings=[*frame.metadata.warnings, *resolution.warnings],
    )


def run_command_pipeline(
    command_id: str,
    args: Optional[Dict[str, Any]],
    data: PortfolioData,
    user_text: Optional[str] = None,
) -> ExecutionPlan:
    frame = build_command_frame_from_tool_call(command_id, args, user_text)
    resolution = resolve_command_target(frame, data.accounts, data.positions)
    return build_execution_plan(frame, resolution)
