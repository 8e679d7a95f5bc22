"""Turn an enriched tool call into the action shown on the confirmation dialog."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from schemas.commands import AccountResolution, ParsedPositionAction
from schemas.portfolio import Account, PortfolioData, Position
from services.commands.account_resolver import account_hint_from_args, resolve_account
from services.commands.cash_resolver import is_cash_symbol, normalize_currency_code, resolve_cash_position
from services.commands.position_matcher import find_sell_position, find_unique_position, stored_price
from services.commands.tool_registry import CONFIRM_MUTATION_TOOLS
from services.portfolio.positions import find_positions_by_symbol
from utils.common_helpers import as_positive_number

ACTION_CONFIDENCE = 0.9

_ASSET_TYPES = {"crypto", "stock", "etf", "cash", "manual"}


def fmt_amount(value: Optional[float]) -> str:
    if value is None:
        return "?"
    return f"{value:,.8f}".rstrip("0").rstrip(".")


def fmt_money(value: Optional[float]) -> str:
    if value is None:
        return "$?"
    return f"${value:,.2f}"


def _asset_type(value: Any, default: str = "crypto") -> str:
    s = str(value or "").strip().lower()
    return s if s in _ASSET_TYPES else default


def _account_for(data: PortfolioData, args: Dict[str, Any], manual_only: bool = False) -> Tuple[Optional[str], AccountResolution]:
    hint = account_hint_from_args(args)
    return hint, resolve_account(data.accounts, hint, manual_only=manual_only)


def _account_warning(hint: Optional[str], resolution: AccountResolution) -> List[str]:
    if resolution.status == "ambiguous":
        names = ", ".join(a.name for a in resolution.candidates)
        return [f'Account "{hint}" matches several accounts ({names}); pick one.']
    if resolution.status == "unmatched":
        return [f'No account named "{hint}" was found.']
    return []


def _matched_account(resolution: AccountResolution) -> Optional[Account]:
    return resolution.account if resolution.status == "matched" else None


def _unique_or_warn(data: PortfolioData, symbol: str, account_id: Optional[str]) -> Tuple[Optional[Position], List[str]]:
    matches = find_positions_by_symbol(data.positions, symbol, account_id)
    if len(matches) == 1:
        return matches[0], []
    if len(matches) > 1:
        return None, [f"{len(matches)} positions hold {symbol}; say which account."]
    return None, [f"No position found for {symbol}."] if symbol else []


# ── per-tool mapping ───────────────────────────────────────────────────

def _buy(args: Dict[str, Any], data: PortfolioData) -> ParsedPositionAction:
    symbol = str(args.get("symbol") or "").strip().upper()
    amount = as_positive_number(args.get("amount"))
    price = as_positive_number(args.get("price"))
    total = as_positive_number(args.get("totalCost"))
    hint, acct = _account_for(data, args)
    account = _matched_account(acct)
    matched = find_unique_position(data, symbol, account.id if account else None)

    if amount is not None and price is not None:
        summary = f"Buy {fmt_amount(amount)} {symbol} at {fmt_money(price)}"
    elif total is not None:
        summary = f"Buy {fmt_money(total)} worth of {symbol}"
    elif amount is not None:
        summary = f"Buy {fmt_amount(amount)} {symbol}"
    else:
        summary = f"Buy {symbol}"

    missing = []
    if amount is None:
        missing.append("amount")
    if price is None and total is None:
        missing.append("price")
    return ParsedPositionAction(
        action="buy",
        symbol=symbol,
        name=str(args.get("name") or symbol),
        asset_type=_asset_type(args.get("assetType")),
        amount=amount,
        price_per_unit=price,
        total_cost=total if total is not None else (amount * price if amount and price else None),
        price_source=args.get("priceSource"),
        date=args.get("date"),
        account_name=account.name if account else hint,
        matched_position_id=matched.id if matched else None,
        matched_account_id=account.id if account else None,
        confidence=ACTION_CONFIDENCE,
        summary=summary,
        warnings=_account_warning(hint, acct),
        missing_fields=missing,
    )


def _sell(tool_name: str, args: Dict[str, Any], data: PortfolioData) -> ParsedPositionAction:
    requested = str(args.get("symbol") or "").strip().upper()
    hint = account_hint_from_args(args)
    position = find_sell_position(data, requested, hint)
    symbol = position.symbol.upper() if position else requested

    sell_price = as_positive_number(args.get("price"))
    price_source = args.get("priceSource")
    if sell_price is None:
        sell_price = stored_price(data, position.symbol if position else None, requested)
        price_source = "stored" if sell_price else None

    warnings: List[str] = []
    if position is None:
        warnings.append(f"No position found for {requested or 'that symbol'}.")
    if price_source == "cost_basis":
        warnings.append("No live price available; sale price estimated from average cost basis.")

    if tool_name == "sell_all":
        return ParsedPositionAction(
            action="sell_all",
            symbol=symbol,
            asset_type=_asset_type(position.type if position else args.get("assetType")),
            sell_amount=position.amount if position else None,
            sell_price=sell_price,
            price_source=price_source,
            date=args.get("date"),
            matched_position_id=position.id if position else None,
            matched_account_id=position.account_id if position else None,
            confidence=ACTION_CONFIDENCE,
            summary=f"Sell all {symbol}",
            warnings=warnings,
            missing_fields=[] if sell_price else ["price"],
        )

    sell_amount = as_positive_number(args.get("amount"))
    sell_percent = as_positive_number(args.get("percent"))
    if sell_amount is not None:
        summary = f"Sell {fmt_amount(sell_amount)} {symbol}"
    elif sell_percent is not None:
        summary = f"Sell {fmt_amount(sell_percent)}% of {symbol}"
        if position is not None:
            summary += f" ({fmt_amount(round(position.amount * sell_percent / 100.0, 8))} units)"
    else:
        summary = f"Sell {symbol}"

    missing = []
    if sell_amount is None and sell_percent is None:
        missing.append("amount")
    if not sell_price:
        missing.append("price")
    return ParsedPositionAction(
        action="sell_partial",
        symbol=symbol,
        asset_type=_asset_type(position.type if position else args.get("assetType")),
        sell_amount=sell_amount,
        sell_percent=sell_percent,
        sell_price=sell_price,
        price_source=price_source,
        date=args.get("date"),
        matched_position_id=position.id if position else None,
        matched_account_id=position.account_id if position else None,
        confidence=ACTION_CONFIDENCE,
        summary=summary,
        warnings=warnings,
        missing_fields=missing,
    )


def _remove(args: Dict[str, Any], data: PortfolioData) -> ParsedPositionAction:
    symbol = str(args.get("symbol") or "").strip().upper()
    hint, acct = _account_for(data, args)
    account = _matched_account(acct)
    position, warnings = _unique_or_warn(data, symbol, account.id if account else None)
    return ParsedPositionAction(
        action="remove",
        symbol=symbol,
        asset_type=_asset_type(position.type if position else None),
        matched_position_id=position.id if position else None,
        matched_account_id=position.account_id if position else (account.id if account else None),
        account_name=account.name if account else hint,
        confidence=ACTION_CONFIDENCE,
        summary=f"Remove {symbol} from portfolio",
        warnings=_account_warning(hint, acct) + warnings,
    )


def _update_cash(args: Dict[str, Any], data: PortfolioData) -> ParsedPositionAction:
    currency = normalize_currency_code(str(args.get("currency") or args.get("symbol") or "")) or "USD"
    amount = as_positive_number(args.get("amount"))
    hint, acct = _account_for(data, args, manual_only=True)
    account = _matched_account(acct)
    position = None
    if account is not None or acct.status == "missing":
        position = resolve_cash_position(data.positions, currency, account.id if account else None)
    where = f" in {account.name if account else hint}" if (account or hint) else ""
    warnings = _account_warning(hint, acct)
    if position is None and acct.status in ("matched", "missing"):
        warnings.append(f"No single {currency} cash position found; a new one will be created.")
    return ParsedPositionAction(
        action="update_position",
        symbol=currency,
        asset_type="cash",
        amount=amount,
        currency=currency,
        mode=args.get("mode") if args.get("mode") in ("delta", "absolute") else "absolute",
        account_name=account.name if account else hint,
        matched_position_id=position.id if position else None,
        matched_account_id=account.id if account else (position.account_id if position else None),
        confidence=ACTION_CONFIDENCE,
        summary=f"Update {currency} balance to {fmt_amount(amount)}{where}",
        warnings=warnings,
        missing_fields=[] if amount is not None else ["amount"],
    )


def _update_position(args: Dict[str, Any], data: PortfolioData) -> ParsedPositionAction:
    symbol = str(args.get("symbol") or "").strip().upper()
    if _asset_type(args.get("assetType"), "") == "cash" or is_cash_symbol(symbol):
        return _update_cash(args, data)

    hint, acct = _account_for(data, args)
    account = _matched_account(acct)
    position, warnings = _unique_or_warn(data, symbol, account.id if account else None)
    return ParsedPositionAction(
        action="update_position",
        symbol=symbol,
        asset_type=_asset_type(position.type if position else args.get("assetType")),
        amount=as_positive_number(args.get("amount")),
        cost_basis=as_positive_number(args.get("costBasis")),
        date=args.get("date"),
        mode=args.get("mode") if args.get("mode") in ("delta", "absolute") else None,
        account_name=account.name if account else hint,
        matched_position_id=position.id if position else None,
        matched_account_id=position.account_id if position else (account.id if account else None),
        confidence=ACTION_CONFIDENCE,
        summary=f"Update {symbol} position",
        warnings=_account_warning(hint, acct) + warnings,
    )


def _set_price(args: Dict[str, Any], data: PortfolioData) -> ParsedPositionAction:
    symbol = str(args.get("symbol") or "").strip().upper()
    price = as_positive_number(args.get("price"))
    held = next((p for p in data.positions if p.symbol.upper() == symbol), None)
    return ParsedPositionAction(
        action="set_price",
        symbol=symbol,
        asset_type=_asset_type(held.type if held else None),
        new_price=price,
        confidence=ACTION_CONFIDENCE,
        summary=f"Set {symbol} price to {fmt_money(price)}",
        missing_fields=[] if price is not None else ["price"],
    )


def _add_cash(args: Dict[str, Any], data: PortfolioData) -> ParsedPositionAction:
    currency = normalize_currency_code(str(args.get("currency") or "")) or "USD"
    amount = as_positive_number(args.get("amount"))
    hint, acct = _account_for(data, args, manual_only=True)
    account = _matched_account(acct)
    position = None
    if account is not None or acct.status == "missing":
        position = resolve_cash_position(data.positions, currency, account.id if account else None)
    account_name = account.name if account else hint
    return ParsedPositionAction(
        action="add_cash",
        symbol=currency,
        asset_type="cash",
        amount=amount,
        currency=currency,
        mode="delta",
        account_name=account_name,
        matched_position_id=position.id if position else None,
        matched_account_id=account.id if account else None,
        confidence=ACTION_CONFIDENCE,
        summary=f"Add {fmt_amount(amount)} {currency}" + (f" to {account_name}" if account_name else ""),
        warnings=_account_warning(hint, acct),
        missing_fields=[] if amount is not None else ["amount"],
    )


def tool_call_to_action(
    tool_name: str,
    args: Optional[Dict[str, Any]],
    data: PortfolioData,
) -> Optional[ParsedPositionAction]:
    """None for anything that is not a confirmable mutation."""
    if tool_name not in CONFIRM_MUTATION_TOOLS:
        return None
    a = dict(args or {})
    if tool_name == "buy_position":
        return _buy(a, data)
    if tool_name in ("sell_partial", "sell_all"):
        return _sell(tool_name, a, data)
    if tool_name == "remove_position":
        return _remove(a, data)
    if tool_name == "update_position":
        return _update_position(a, data)
    if tool_name == "update_cash":
        return _update_cash(a, data)
    if tool_name == "set_price":
        return _set_price(a, data)
    if tool_name == "add_cash":
        return _add_cash(a, data)
    return None
