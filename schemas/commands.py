from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from schemas.portfolio import Account, AssetType, CamelModel


CommandKind = Literal["mutation", "query", "navigation"]
CommandMode = Literal["delta", "absolute"]
ResolutionStatus = Literal["matched", "ambiguous", "unresolved"]
PlanStatus = Literal["ready", "needs_clarification", "blocked"]
AccountMatchStatus = Literal["missing", "matched", "unmatched", "ambiguous"]

ActionKind = Literal[
    "buy",
    "sell_partial",
    "sell_all",
    "remove",
    "update_position",
    "set_price",
    "add_cash",
]


# ── frame / resolve / plan ─────────────────────────────────────────────

class CommandTarget(CamelModel):
    symbol: Optional[str] = None
    account_name: Optional[str] = None
    account_id: Optional[str] = None
    currency: Optional[str] = None
    position_id: Optional[str] = None
    asset_type_hint: Optional[str] = None
    asset_class_hint: Optional[str] = None


class CommandQuantity(CamelModel):
    units: Optional[float] = None
    notional: Optional[float] = None
    percent: Optional[float] = None


class CommandMetadata(CamelModel):
    confidence: float = 1.0
    warnings: List[str] = Field(default_factory=list)
    source: Literal["tool_call", "text"] = "tool_call"


class CommandFrame(CamelModel):
    command_id: str
    kind: CommandKind
    mode: Optional[CommandMode] = None
    target: CommandTarget = Field(default_factory=CommandTarget)
    quantity: CommandQuantity = Field(default_factory=CommandQuantity)
    date: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)
    metadata: CommandMetadata = Field(default_factory=CommandMetadata)


class ResolutionResult(CamelModel):
    status: ResolutionStatus
    target: CommandTarget
    warnings: List[str] = Field(default_factory=list)


class ExecutionPlan(CamelModel):
    command_id: str
    kind: CommandKind
    status: PlanStatus
    resolved_args: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


class AccountResolution(CamelModel):
    status: AccountMatchStatus
    account: Optional[Account] = None
    candidates: List[Account] = Field(default_factory=list)


# ── confirmation-facing action ─────────────────────────────────────────

class ParsedPositionAction(CamelModel):
    action: ActionKind
    symbol: str
    name: Optional[str] = None
    asset_type: AssetType = "crypto"
    amount: Optional[float] = None
    price_per_unit: Optional[float] = None
    total_cost: Optional[float] = None
    sell_amount: Optional[float] = None
    sell_percent: Optional[float] = None
    sell_price: Optional[float] = None
    price_source: Optional[str] = None
    new_price: Optional[float] = None
    cost_basis: Optional[float] = None
    date: Optional[str] = None
    currency: Optional[str] = None
    mode: Optional[CommandMode] = None
    account_name: Optional[str] = None
    matched_position_id: Optional[str] = None
    matched_account_id: Optional[str] = None
    confidence: float = 0.9
    summary: str = ""
    warnings: List[str] = Field(default_factory=list)
    missing_fields: List[str] = Field(default_factory=list)
