from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import Field, ValidationError, field_validator

from schemas.portfolio import Account, AccountConnection, CamelModel, CustomPrice, PortfolioData, Position
from services.commands.account_resolver import account_hint_from_args, resolve_account
from services.commands.cash_resolver import (
    is_cash_symbol,
    normalize_currency_code,
    position_currency,
    resolve_cash_position,
)
from services.commands.position_matcher import find_sell_position, stored_price
from services.commands.tool_registry import PAGES, get_tool
from services.portfolio import analytics
from services.portfolio.positions import (
    PositionOperationError,
    PositionOperationResult,
    asset_class_for,
    execute_buy,
    execute_full_sell,
    execute_partial_sell,
    find_positions_by_symbol,
)
from services.portfolio.store import PortfolioStore
from services.quotes.coingecko_quotes import has_known_mapping
from utils.common_helpers import as_positive_number, now_iso, to_date_only

logger = logging.getLogger(__name__)

SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

Result = Dict[str, Any]


@dataclass
class ToolExecution:
    result: Result
    is_mutation: bool

    @property
    def ok(self) -> bool:
        return "error" not in self.result


# ── arg models ─────────────────────────────────────────────────────────

class _Args(CamelModel):
    @field_validator("amount", "price", "total_cost", "percent", "cost_basis", mode="before", check_fields=False)
    @classmethod
    def _positive(cls, v: Any) -> Optional[float]:
        return as_positive_number(v)


class PositionArgs(_Args):
    symbol: str = Field(default="", max_length=32)
    amount: Optional[float] = None
    price: Optional[float] = None
    total_cost: Optional[float] = None
    percent: Optional[float] = None
    cost_basis: Optional[float] = None
    date: Optional[str] = None
    asset_type: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=128)
    account: Optional[str] = Field(default=None, max_length=128)
    position_id: Optional[str] = None
    mode: Optional[str] = None
    currency: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=256)

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, v: str) -> str:
        return (v or "").strip().upper()

    @field_validator("asset_type")
    @classmethod
    def _normalize_type(cls, v: Optional[str]) -> Optional[str]:
        out = (v or "").strip().lower()
        return out if out in {"crypto", "stock", "etf", "cash", "manual"} else None


class CashArgs(_Args):
    currency: str = Field(default="USD", max_length=64)
    amount: Optional[float] = None
    account: Optional[str] = Field(default=None, max_length=128)
    position_id: Optional[str] = None
    mode: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, v: str) -> str:
        return normalize_currency_code(v) or ""


class WalletArgs(CamelModel):
    address: str = Field(min_length=1, max_length=128)
    name: Optional[str] = Field(default=None, max_length=128)
    chains: List[str] = Field(default_factory=lambda: ["eth"])

    @field_validator("address")
    @classmethod
    def _strip(cls, v: str) -> str:
        return (v or "").strip()

    @field_validator("chains", mode="before")
    @classmethod
    def _split_chains(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            v = v.split(",")
        chains = [str(c).strip().lower() for c in (v or []) if str(c).strip()]
        return chains or ["eth"]


class RateArgs(CamelModel):
    rate: float


class NavigateArgs(CamelModel):
    page: str

    @field_validator("page")
    @classmethod
    def _known_page(cls, v: str) -> str:
        page = (v or "").strip().lower()
        if page not in PAGES:
            raise ValueError(f"unknown page {v!r}")
        return page


class QueryArgs(CamelModel):
    symbol: Optional[str] = None
    asset_type: Optional[str] = None
    category: Optional[str] = None
    limit: int = Field(default=5, ge=1, le=50)


# ── helpers ────────────────────────────────────────────────────────────

def _error(data: PortfolioData, message: str) -> Tuple[PortfolioData, Result]:
    return data, {"error": message}


def _apply_operation(data: PortfolioData, op: PositionOperationResult) -> None:
    if op.removed_position_id:
        data.positions = [p for p in data.positions if p.id != op.removed_position_id]
    if op.updated_position is not None:
        data.positions = [op.updated_position if p.id == op.updated_position.id else p for p in data.positions]
    if op.new_position is not None:
        data.positions.append(op.new_position)
    data.transactions.append(op.transaction)


def _resolve_account_id(
    data: PortfolioData,
    hint: Optional[str],
    *,
    manual_only: bool = False,
) -> Tuple[Optional[str], Optional[str]]:
    """(account_id, error). Unknown names resolve to no account."""
    resolution = resolve_account(data.accounts, hint, manual_only=manual_only)
    if resolution.status == "ambiguous":
        names = ", ".join(a.name for a in resolution.candidates)
        return None, f'Account "{hint}" is ambiguous: {names}'
    if resolution.status == "matched" and resolution.account is not None:
        return resolution.account.id, None
    return None, None


def _position_for(data: PortfolioData, args: PositionArgs) -> Tuple[Optional[Position], Optional[str]]:
    if args.position_id:
        held = data.position_by_id(args.position_id)
        return (held, None) if held else (None, f"Position {args.position_id} not found")
    if not args.symbol:
        return None, "symbol is required"
    account_id, err = _resolve_account_id(data, args.account)
    if err:
        return None, err
    matches = find_positions_by_symbol(data.positions, args.symbol, account_id)
    if len(matches) == 1:
        return matches[0], None
    if len(matches) > 1:
        return None, f"Several positions hold {args.symbol}; specify the account"
    return None, f"No position found for {args.symbol}"


# ── executor ───────────────────────────────────────────────────────────

class PortfolioToolExecutor:
    """Runs one resolved tool call against the store.

    Every failure a user can cause comes back as ``{"error": "..."}``;
    mutations go through ``store.mutate`` so each is one atomic write.
    """

    def __init__(self, store: PortfolioStore):
        self.store = store
        self._mutations: Dict[str, Tuple[type, Callable[[PortfolioData, Any], Tuple[PortfolioData, Result]]]] = {
            "buy_position": (PositionArgs, self._buy),
            "sell_partial": (PositionArgs, self._sell_partial),
            "sell_all": (PositionArgs, self._sell_all),
            "remove_position": (PositionArgs, self._remove),
            "update_position": (PositionArgs, self._update_position),
            "set_price": (PositionArgs, self._set_price),
            "add_cash": (CashArgs, self._add_cash),
            "update_cash": (CashArgs, self._update_cash),
            "add_wallet": (WalletArgs, self._add_wallet),
            "remove_wallet": (WalletArgs, self._remove_wallet),
            "toggle_hide_balances": (CamelModel, self._toggle_balances),
            "toggle_hide_dust": (CamelModel, self._toggle_dust),
            "set_risk_free_rate": (RateArgs, self._set_risk_free_rate),
        }

    # ── dispatch ────────────────────────────────────────────────────

    async def execute(self, tool_name: str, arguments: Optional[Dict[str, Any]]) -> ToolExecution:
        tool = get_tool(tool_name)
        if tool is None:
            return ToolExecution({"error": f"Unknown tool: {tool_name}"}, False)

        args = dict(arguments or {})
        hint = account_hint_from_args(args)
        if hint:
            args["account"] = hint
        started = time.perf_counter()
        try:
            if tool.kind == "query":
                return ToolExecution(self._query(tool_name, QueryArgs.model_validate(args)), False)
            if tool.kind == "navigation":
                parsed = NavigateArgs.model_validate(args)
                return ToolExecution({"navigate": parsed.page, "url": f"/{parsed.page}"}, False)

            model, handler = self._mutations[tool_name]
            parsed = model.model_validate(args)
            result = await self.store.mutate(lambda data: handler(data, parsed))
            logger.info(
                "tool.mutation tool=%s ok=%s elapsed_ms=%s",
                tool_name, "error" not in result, int((time.perf_counter() - started) * 1000),
            )
            return ToolExecution(result, True)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(x) for x in e.get("loc", ())) or "input" for e in exc.errors())
            return ToolExecution({"error": f"Invalid arguments for {tool_name}: {fields}"}, tool.kind == "mutation")
        except Exception:
            logger.exception("tool.execute.failed tool=%s", tool_name)
            return ToolExecution({"error": f"{tool_name} failed unexpectedly"}, tool.kind == "mutation")

    # ── queries ─────────────────────────────────────────────────────

    def _query(self, tool_name: str, args: QueryArgs) -> Result:
        data = self.store.read()
        if tool_name == "query_net_worth":
            return analytics.net_worth(data)
        if tool_name == "query_portfolio_summary":
            return analytics.portfolio_summary(data)
        if tool_name == "query_top_positions":
            return analytics.top_positions(data, args.limit)
        if tool_name == "query_position_details":
            if not args.symbol:
                return {"error": "symbol is required"}
            return analytics.position_details(data, args.symbol)
        if tool_name == "query_positions_by_type":
            return analytics.positions_by_type(data, args.asset_type or "")
        if tool_name == "query_exposure":
            return analytics.exposure(data)
        if tool_name == "query_crypto_exposure":
            return analytics.crypto_exposure(data)
        if tool_name == "query_performance":
            return analytics.performance(data)
        if tool_name == "query_24h_change":
            return analytics.change_24h(data)
        if tool_name == "query_category_value":
            return analytics.category_value(data, args.category or "")
        if tool_name == "query_position_count":
            return analytics.position_count(data)
        if tool_name == "query_debt_summary":
            return analytics.debt_summary(data)
        if tool_name == "query_leverage":
            return analytics.leverage(data)
        if tool_name == "query_perps_summary":
            return analytics.perps_summary(data)
        if tool_name == "query_risk_profile":
            return analytics.risk_profile(data)
        return {"error": f"Unsupported query: {tool_name}"}

    # ── positions ───────────────────────────────────────────────────

    def _buy(self, data: PortfolioData, args: PositionArgs) -> Tuple[PortfolioData, Result]:
        if not args.symbol:
            return _error(data, "symbol is required")
        amount, price, total = args.amount, args.price, args.total_cost
        if amount is None and total is not None and price:
            amount = total / price
        if amount is None:
            if total is not None:
                return _error(data, f"Could not resolve a price for {args.symbol}; give the amount or price per unit")
            return _error(data, "Buy amount must be greater than zero")
        if price is None and total is not None:
            price = total / amount

        account_id, err = _resolve_account_id(data, args.account)
        if err:
            return _error(data, err)

        existing: Optional[Position] = data.position_by_id(args.position_id)
        if existing is None:
            matches = find_positions_by_symbol(data.positions, args.symbol, account_id)
            if len(matches) > 1:
                unlinked = [p for p in matches if not p.account_id]
                if len(unlinked) != 1:
                    return _error(data, f"Several positions hold {args.symbol}; specify the account")
                matches = unlinked
            existing = matches[0] if matches else None

        asset_type = args.asset_type if args.asset_type and args.asset_type != "cash" else None
        if asset_type is None:
            asset_type = "crypto" if has_known_mapping(args.symbol) else "stock"
        try:
            op = execute_buy(
                existing,
                symbol=args.symbol,
                amount=amount,
                price_per_unit=price or 0.0,
                date=to_date_only(args.date),
                asset_type=asset_type,
                name=args.name,
                total_cost=total,
                account_id=account_id,
                notes=args.note,
            )
        except PositionOperationError as exc:
            return _error(data, str(exc))
        _apply_operation(data, op)
        position = op.updated_position or op.new_position
        return data, {
            "success": True,
            "positionId": position.id if position else None,
            "transactionId": op.transaction.id,
            "amount": position.amount if position else amount,
            "created": op.new_position is not None,
        }

    def _sell_price(self, data: PortfolioData, position: Position, args: PositionArgs) -> Optional[float]:
        if args.price:
            return args.price
        price = stored_price(data, position.symbol, args.symbol)
        if price:
            return price
        if position.cost_basis and position.amount > 0:
            return position.cost_basis / position.amount
        return None

    def _sell_target(self, data: PortfolioData, args: PositionArgs) -> Tuple[Optional[Position], Optional[str]]:
        if args.position_id:
            held = data.position_by_id(args.position_id)
            return (held, None) if held else (None, f"Position {args.position_id} not found")
        if not args.symbol:
            return None, "symbol is required"
        held = find_sell_position(data, args.symbol, args.account)
        return (held, None) if held else (None, f"No position found for {args.symbol}")

    def _sell_partial(self, data: PortfolioData, args: PositionArgs) -> Tuple[PortfolioData, Result]:
        position, err = self._sell_target(data, args)
        if position is None:
            return _error(data, err or "Position not found")
        amount = args.amount
        if amount is None and args.percent is not None:
            if args.percent > 100:
                return _error(data, "percent must be between 0 and 100")
            amount = position.amount * args.percent / 100.0
        if amount is None:
            return _error(data, "Specify an amount or percent to sell")
        price = self._sell_price(data, position, args)
        if price is None:
            return _error(data, f"Could not resolve a sell price for {position.symbol}")
        try:
            op = execute_partial_sell(position, amount, price, to_date_only(args.date), args.note)
        except PositionOperationError as exc:
            return _error(data, str(exc))
        _apply_operation(data, op)
        return data, {
            "success": True,
            "transactionId": op.transaction.id,
            "soldAmount": amount,
            "remainingAmount": op.updated_position.amount if op.updated_position else 0.0,
            "positionRemoved": op.removed_position_id is not None,
            "realizedPnL": op.transaction.realized_pnl,
        }

    def _sell_all(self, data: PortfolioData, args: PositionArgs) -> Tuple[PortfolioData, Result]:
        position, err = self._sell_target(data, args)
        if position is None:
            return _error(data, err or "Position not found")
        price = self._sell_price(data, position, args)
        if price is None:
            return _error(data, f"Could not resolve a sell price for {position.symbol}")
        op = execute_full_sell(position, price, to_date_only(args.date), args.note)
        _apply_operation(data, op)
        return data, {
            "success": True,
            "transactionId": op.transaction.id,
            "soldAmount": position.amount,
            "positionRemoved": True,
            "realizedPnL": op.transaction.realized_pnl,
        }

    def _remove(self, data: PortfolioData, args: PositionArgs) -> Tuple[PortfolioData, Result]:
        position, err = _position_for(data, args)
        if position is None:
            return _error(data, err or "Position not found")
        data.positions = [p for p in data.positions if p.id != position.id]
        return data, {"success": True, "removedPositionId": position.id, "symbol": position.symbol}

    def _update_position(self, data: PortfolioData, args: PositionArgs) -> Tuple[PortfolioData, Result]:
        if args.asset_type == "cash" or is_cash_symbol(args.symbol):
            cash_args = CashArgs(
                currency=args.currency or args.symbol,
                amount=args.amount,
                account=args.account,
                position_id=args.position_id,
                mode=args.mode,
            )
            return self._update_cash(data, cash_args)

        position, err = _position_for(data, args)
        if position is None:
            return _error(data, err or "Position not found")
        changes: Dict[str, Any] = {}
        if args.amount is not None:
            changes["amount"] = position.amount + args.amount if args.mode == "delta" else args.amount
        if args.cost_basis is not None:
            changes["cost_basis"] = args.cost_basis
        if args.date:
            changes["purchase_date"] = to_date_only(args.date)
        if not changes:
            return _error(data, "Nothing to update: give amount, costBasis or date")
        changes["updated_at"] = now_iso()
        updated = position.model_copy(update=changes)
        data.positions = [updated if p.id == position.id else p for p in data.positions]
        return data, {"success": True, "positionId": position.id, "amount": updated.amount}

    def _set_price(self, data: PortfolioData, args: PositionArgs) -> Tuple[PortfolioData, Result]:
        if not args.symbol:
            return _error(data, "symbol is required")
        if args.price is None:
            return _error(data, "price must be a positive number")
        data.custom_prices[args.symbol.lower()] = CustomPrice(price=args.price, note=args.note, set_at=now_iso())
        return data, {"success": True, "symbol": args.symbol, "price": args.price}

    # ── cash ────────────────────────────────────────────────────────

    def _cash_target(
        self, data: PortfolioData, args: CashArgs, *, create_account: bool
    ) -> Tuple[Optional[str], Optional[Position], Optional[str]]:
        """(account_id, cash position or None, error)."""
        if not args.currency:
            return None, None, "currency must be a 3-letter code"

        account_id: Optional[str] = None
        if args.account:
            resolution = resolve_account(data.accounts, args.account, manual_only=True)
            if resolution.status == "ambiguous":
                names = ", ".join(a.name for a in resolution.candidates)
                return None, None, f'Account "{args.account}" is ambiguous: {names}'
            if resolution.status == "matched" and resolution.account is not None:
                account_id = resolution.account.id
            elif create_account:
                account = Account(id=str(uuid.uuid4()), name=args.account.strip(), added_at=now_iso())
                data.accounts.append(account)
                account_id = account.id

        held = data.position_by_id(args.position_id)
        if held is not None and held.type == "cash" and position_currency(held) == args.currency:
            return account_id or held.account_id, held, None

        position = resolve_cash_position(data.positions, args.currency, account_id)
        if position is None and account_id is None:
            same_ccy = [p for p in data.positions if p.type == "cash" and position_currency(p) == args.currency]
            if len(same_ccy) > 1:
                return None, None, f"Several {args.currency} cash positions exist; specify the account"
        return account_id, position, None

    def _new_cash_position(self, currency: str, amount: float, account_id: Optional[str]) -> Position:
        stamp = now_iso()
        return Position(
            id=str(uuid.uuid4()),
            type="cash",
            symbol=f"CASH_{currency}_{int(time.time() * 1000)}",
            name=f"{currency} Cash",
            amount=amount,
            asset_class=asset_class_for(currency, "cash"),
            account_id=account_id,
            added_at=stamp,
            updated_at=stamp,
        )

    def _add_cash(self, data: PortfolioData, args: CashArgs) -> Tuple[PortfolioData, Result]:
        if args.amount is None:
            return _error(data, "amount must be a positive number")
        account_id, position, err = self._cash_target(data, args, create_account=True)
        if err:
            return _error(data, err)
        if position is not None:
            updated = position.model_copy(update={"amount": position.amount + args.amount, "updated_at": now_iso()})
            data.positions = [updated if p.id == position.id else p for p in data.positions]
            return data, {"success": True, "positionId": position.id, "amount": updated.amount, "created": False}
        created = self._new_cash_position(args.currency, args.amount, account_id)
        data.positions.append(created)
        return data, {"success": True, "positionId": created.id, "amount": created.amount, "created": True}

    def _update_cash(self, data: PortfolioData, args: CashArgs) -> Tuple[PortfolioData, Result]:
        if args.amount is None:
            return _error(data, "amount must be a positive number")
        account_id, position, err = self._cash_target(data, args, create_account=False)
        if err:
            return _error(data, err)
        if args.account and account_id is None:
            return _error(data, f'No manual account named "{args.account}"')
        if position is None:
            created = self._new_cash_position(args.currency, args.amount, account_id)
            data.positions.append(created)
            return data, {"success": True, "positionId": created.id, "amount": created.amount, "created": True}
        amount = position.amount + args.amount if args.mode == "delta" else args.amount
        updated = position.model_copy(update={"amount": amount, "updated_at": now_iso()})
        data.positions = [updated if p.id == position.id else p for p in data.positions]
        return data, {"success": True, "positionId": position.id, "amount": amount, "created": False}

    # ── wallets and settings ────────────────────────────────────────

    def _add_wallet(self, data: PortfolioData, args: WalletArgs) -> Tuple[PortfolioData, Result]:
        address = args.address
        if any((a.connection.address or "").lower() == address.lower() for a in data.accounts):
            return _error(data, "Wallet already connected")
        data_source = "helius" if SOLANA_ADDRESS_RE.match(address) else "debank"
        label = args.name or f"Wallet {address[:6]}...{address[-4:]}"
        account = Account(
            id=str(uuid.uuid4()),
            name=label,
            connection=AccountConnection(data_source=data_source, address=address, chains=args.chains),
            added_at=now_iso(),
        )
        data.accounts.append(account)
        return data, {"success": True, "accountId": account.id, "dataSource": data_source}

    def _remove_wallet(self, data: PortfolioData, args: WalletArgs) -> Tuple[PortfolioData, Result]:
        wallets = [a for a in data.accounts if a.connection.address]
        account = next((a for a in wallets if a.connection.address.lower() == args.address.lower()), None)
        if account is None:
            resolution = resolve_account(wallets, args.address)
            if resolution.status == "ambiguous":
                return _error(data, f'Wallet "{args.address}" is ambiguous')
            account = resolution.account if resolution.status == "matched" else None
        if account is None:
            return _error(data, "Wallet not found")
        before = len(data.positions)
        data.positions = [p for p in data.positions if p.account_id != account.id]
        data.accounts = [a for a in data.accounts if a.id != account.id]
        return data, {"success": True, "removedAccountId": account.id, "removedPositions": before - len(data.positions)}

    def _toggle_balances(self, data: PortfolioData, _args: Any) -> Tuple[PortfolioData, Result]:
        data.hide_balances = not data.hide_balances
        return data, {"success": True, "hideBalances": data.hide_balances}

    def _toggle_dust(self, data: PortfolioData, _args: Any) -> Tuple[PortfolioData, Result]:
        data.hide_dust = not data.hide_dust
        return data, {"success": True, "hideDust": data.hide_dust}

    def _set_risk_free_rate(self, data: PortfolioData, args: RateArgs) -> Tuple[PortfolioData, Result]:
        rate = args.rate / 100.0 if args.rate > 1 else args.rate
        if rate < 0 or rate > 1:
            return _error(data, "rate must be between 0 and 100%")
        data.risk_free_rate = rate
        return data, {"success": True, "riskFreeRate": rate}
