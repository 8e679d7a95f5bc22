from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


AssetType = Literal["crypto", "stock", "etf", "cash", "manual"]
AssetClass = Literal["crypto", "equity", "cash", "metals", "other"]


class CamelModel(BaseModel):
    """camelCase on the wire and in db.json, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Position(CamelModel):
    id: str
    type: AssetType
    symbol: str
    name: str = ""
    amount: float = 0.0
    asset_class: Optional[AssetClass] = None
    cost_basis: Optional[float] = None
    purchase_date: Optional[str] = None
    account_id: Optional[str] = None
    wallet_address: Optional[str] = None
    chain: Optional[str] = None
    protocol: Optional[str] = None
    is_debt: bool = False
    added_at: str = ""
    updated_at: str = ""


class AccountConnection(CamelModel):
    data_source: str = "manual"
    address: Optional[str] = None
    chains: List[str] = Field(default_factory=list)


class Account(CamelModel):
    id: str
    name: str
    connection: AccountConnection = Field(default_factory=AccountConnection)
    added_at: str = ""

    @property
    def is_manual(self) -> bool:
        return (self.connection.data_source or "").lower() == "manual"


class Transaction(CamelModel):
    id: str
    type: Literal["buy", "sell"]
    symbol: str
    name: str = ""
    asset_type: AssetType = "crypto"
    amount: float
    price_per_unit: float = 0.0
    total_value: float = 0.0
    cost_basis_at_execution: Optional[float] = None
    realized_pnl: Optional[float] = Field(default=None, alias="realizedPnL")
    position_id: str
    date: str
    notes: Optional[str] = None
    created_at: str = ""


class PriceData(CamelModel):
    symbol: str
    price: float
    change24h: float = 0.0
    change_percent24h: float = 0.0
    last_updated: str = ""


class CustomPrice(CamelModel):
    price: float
    note: Optional[str] = None
    set_at: str = ""


class NetWorthSnapshot(CamelModel):
    date: str
    total_value: float
    crypto_value: Optional[float] = None
    equity_value: Optional[float] = None
    cash_value: Optional[float] = None


class PortfolioData(CamelModel):
    positions: List[Position] = Field(default_factory=list)
    accounts: List[Account] = Field(default_factory=list)
    prices: Dict[str, PriceData] = Field(default_factory=dict)
    custom_prices: Dict[str, CustomPrice] = Field(default_factory=dict)
    fx_rates: Dict[str, float] = Field(default_factory=dict)
    transactions: List[Transaction] = Field(default_factory=list)
    snapshots: List[NetWorthSnapshot] = Field(default_factory=list)
    last_refresh: Optional[str] = None
    hide_balances: bool = False
    hide_dust: bool = False
    risk_free_rate: float = 0.05

    def account_by_id(self, account_id: Optional[str]) -> Optional[Account]:
        if not account_id:
            return None
        return next((a for a in self.accounts if a.id == account_id), None)

    def position_by_id(self, position_id: Optional[str]) -> Optional[Position]:
        if not position_id:
            return None
        return next((p for p in self.positions if p.id == position_id), None)
