from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from schemas.portfolio import Position, Transaction
from utils.common_helpers import now_iso

logger = logging.getLogger(__name__)

DUST_REMAINDER = 1e-6

METALS_SYMBOLS = {"XAU", "XAG", "XPT", "XPD", "GOLD", "SILVER", "PLATINUM", "PALLADIUM", "GLD", "SLV", "IAU", "PAXG"}

_CLASS_BY_TYPE: Dict[str, str] = {
    "crypto": "crypto",
    "stock": "equity",
    "etf": "equity",
    "cash": "cash",
    "manual": "other",
}


class PositionOperationError(ValueError):
    """A buy/sell that cannot be applied to the position as it stands."""


def asset_class_for(symbol: str, asset_type: Optional[str]) -> str:
    if (symbol or "").upper() in METALS_SYMBOLS:
        return "metals"
    return _CLASS_BY_TYPE.get((asset_type or "").lower(), "other")


def position_asset_class(position: Position) -> str:
    return position.asset_class or asset_class_for(position.symbol, position.type)


def find_positions_by_symbol(
    positions: List[Position],
    symbol: Optional[str],
    account_id: Optional[str] = None,
) -> List[Position]:
    """All positions with this symbol (case-insensitive), optionally in one account."""
    s = (symbol or "").strip().lower()
    if not s:
        return []
    matches = [p for p in positions if p.symbol.lower() == s]
    if account_id:
        matches = [p for p in matches if p.account_id == account_id]
    return matches


@dataclass
class PositionOperationResult:
    transaction: Transaction
    updated_position: Optional[Position] = None
    new_position: Optional[Position] = None
    removed_position_id: Optional[str] = None
    notes: List[str] = field(default_factory=list)


def _transaction(**kwargs) -> Transaction:
    return Transaction(id=str(uuid.uuid4()), created_at=now_iso(), **kwargs)


def execute_buy(
    existing: Optional[Position],
    *,
    symbol: str,
    amount: float,
    price_per_unit: float,
    date: str,
    asset_type: str = "crypto",
    name: Optional[str] = None,
    total_cost: Optional[float] = None,
    account_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> PositionOperationResult:
    if not amount or amount <= 0:
        raise PositionOperationError("Buy amount must be greater than zero")
    total_value = total_cost if total_cost is not None else amount * (price_per_unit or 0.0)
    stamp = now_iso()

    if existing is not None:
        updated = existing.model_copy(update={
            "amount": existing.amount + amount,
            "cost_basis": (existing.cost_basis or 0.0) + total_value,
            "purchase_date": existing.purchase_date or date,
            "updated_at": stamp,
        })
        tx = _transaction(
            type="buy",
            symbol=existing.symbol,
            name=existing.name,
            asset_type=existing.type,
            amount=amount,
            price_per_unit=price_per_unit or 0.0,
            total_value=total_value,
            position_id=existing.id,
            date=date,
            notes=notes,
        )
        return PositionOperationResult(transaction=tx, updated_position=updated)

    position = Position(
        id=str(uuid.uuid4()),
        type=asset_type,
        symbol=symbol,
        name=name or symbol,
        amount=amount,
        asset_class=asset_class_for(symbol, asset_type),
        cost_basis=total_value,
        purchase_date=date,
        account_id=account_id,
        added_at=stamp,
        updated_at=stamp,
    )
    tx = _transaction(
        type="buy",
        symbol=symbol,
        name=position.name,
        asset_type=asset_type,
        amount=amount,
        price_per_unit=price_per_unit or 0.0,
        total_value=total_value,
        position_id=position.id,
        date=date,
        notes=notes,
    )
    return PositionOperationResult(transaction=tx, new_position=position)


def execute_partial_sell(
    position: Position,
    sell_amount: float,
    sell_price: float,
    date: str,
    notes: Optional[str] = None,
) -> PositionOperationResult:
    """Reduce the position; cost basis shrinks in proportion to what was sold."""
    original = position.amount
    if sell_amount <= 0:
        raise PositionOperationError("Sell amount must be greater than zero")
    remaining = original - sell_amount
    if remaining < -DUST_REMAINDER:
        raise PositionOperationError(
            f"Insufficient amount: cannot sell {sell_amount:g} {position.symbol}, only {original:g} held"
        )

    basis_sold: Optional[float] = None
    new_basis: Optional[float] = None
    if position.cost_basis is not None and original > 0:
        basis_sold = position.cost_basis * (sell_amount / original)
        new_basis = position.cost_basis * (max(remaining, 0.0) / original)

    total_value = sell_amount * sell_price
    tx = _transaction(
        type="sell",
        symbol=position.symbol,
        name=position.name,
        asset_type=position.type,
        amount=sell_amount,
        price_per_unit=sell_price,
        total_value=total_value,
        cost_basis_at_execution=basis_sold,
        realized_pnl=(total_value - basis_sold) if basis_sold is not None else None,
        position_id=position.id,
        date=date,
        notes=notes,
    )

    if remaining < DUST_REMAINDER:
        return PositionOperationResult(transaction=tx, removed_position_id=position.id)

    updated = position.model_copy(update={
        "amount": remaining,
        "cost_basis": new_basis,
        "updated_at": now_iso(),
    })
    return PositionOperationResult(transaction=tx, updated_position=updated)


def execute_full_sell(
    position: Position,
    sell_price: float,
    date: str,
    notes: Optional[str] = None,
) -> PositionOperationResult:
    total_value = position.amount * sell_price
    basis = position.cost_basis
    tx = _transaction(
        type="sell",
        symbol=position.symbol,
        name=position.name,
        asset_type=position.type,
        amount=position.amount,
        price_per_unit=sell_price,
        total_value=total_value,
        cost_basis_at_execution=basis,
        realized_pnl=(total_value - basis) if basis is not None else None,
        position_id=position.id,
        date=date,
        notes=notes,
    )
    return PositionOperationResult(transaction=tx, removed_position_id=position.id)
