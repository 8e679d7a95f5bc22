"""Tool catalog offered to the LLM, plus its Ollama function-schema rendering."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple

ToolKind = Literal["query", "mutation", "navigation"]

ASSET_TYPES = ["crypto", "stock", "etf", "manual"]
PAGES = [
    "dashboard", "positions", "crypto", "equities", "metals", "cash",
    "exposure", "performance", "settings", "wallets", "perps", "other",
]
POSITION_TYPES = ["crypto", "stock", "etf", "cash", "manual"]
ASSET_CLASSES = ["crypto", "equity", "cash", "metals", "other"]


@dataclass(frozen=True)
class ToolField:
    name: str
    type: Literal["string", "number", "boolean"]
    description: str
    required: bool = False
    enum: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class ToolDefinition:
    id: str
    kind: ToolKind
    description: str
    fields: Tuple[ToolField, ...] = field(default_factory=tuple)

    def to_ollama_schema(self) -> Dict[str, Any]:
        properties: Dict[str, Any] = {}
        for f in self.fields:
            prop: Dict[str, Any] = {"type": f.type, "description": f.description}
            if f.enum:
                prop["enum"] = list(f.enum)
            properties[f.name] = prop
        return {
            "type": "function",
            "function": {
                "name": self.id,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": [f.name for f in self.fields if f.required],
                },
            },
        }


def _f(name: str, typ: str, desc: str, required: bool = False, enum: Optional[Iterable[str]] = None) -> ToolField:
    return ToolField(name=name, type=typ, description=desc, required=required, enum=tuple(enum) if enum else None)  # type: ignore[arg-type]


_SYMBOL = _f("symbol", "string", "Ticker or coin symbol, e.g. AAPL, BTC", required=True)
_ACCOUNT = _f("account", "string", "Account name the position or cash lives in")
_DATE = _f("date", "string", "Trade date: YYYY-MM-DD, today, yesterday")


TOOL_DEFINITIONS: Tuple[ToolDefinition, ...] = (
    # ── mutations ───────────────────────────────────────────────────────
    ToolDefinition("buy_position", "mutation", "Record a purchase of an asset (adds to an existing position).", (
        _SYMBOL,
        _f("amount", "number", "Units bought"),
        _f("price", "number", "Price per unit in USD"),
        _f("totalCost", "number", "Total amount spent in USD"),
        _DATE,
        _f("assetType", "string", "Asset type", enum=ASSET_TYPES),
        _f("name", "string", "Display name"),
        _ACCOUNT,
    )),
    ToolDefinition("sell_partial", "mutation", "Sell part of a position by units or percent.", (
        _SYMBOL,
        _f("amount", "number", "Units sold"),
        _f("percent", "number", "Percent of the position sold, 0-100"),
        _f("price", "number", "Sale price per unit in USD"),
        _DATE,
        _ACCOUNT,
    )),
    ToolDefinition("sell_all", "mutation", "Sell an entire position.", (
        _SYMBOL,
        _f("price", "number", "Sale price per unit in USD"),
        _DATE,
        _ACCOUNT,
    )),
    ToolDefinition("remove_position", "mutation", "Delete a position without recording a sale.", (
        _SYMBOL,
        _ACCOUNT,
    )),
    ToolDefinition("update_position", "mutation", "Correct amount, cost basis or purchase date of a position.", (
        _SYMBOL,
        _f("amount", "number", "New amount (or amount to add)"),
        _f("costBasis", "number", "Total cost basis in USD"),
        _f("date", "string", "Purchase date"),
        _f("assetType", "string", "Asset type", enum=POSITION_TYPES),
        _ACCOUNT,
    )),
    ToolDefinition("set_price", "mutation", "Override the price used for a symbol.", (
        _SYMBOL,
        _f("price", "number", "Price in USD", required=True),
        _f("note", "string", "Why the price is overridden"),
    )),
    ToolDefinition("add_cash", "mutation", "Add cash to an account.", (
        _f("currency", "string", "ISO currency code, e.g. USD, EUR", required=True),
        _f("amount", "number", "Amount to add", required=True),
        _ACCOUNT,
    )),
    ToolDefinition("update_cash", "mutation", "Set the cash balance of an account.", (
        _f("currency", "string", "ISO currency code", required=True),
        _f("amount", "number", "New balance", required=True),
        _ACCOUNT,
    )),
    ToolDefinition("add_wallet", "mutation", "Connect an on-chain wallet address.", (
        _f("address", "string", "Wallet address", required=True),
        _f("name", "string", "Wallet label"),
        _f("chains", "string", "Comma-separated chains, default eth"),
    )),
    ToolDefinition("remove_wallet", "mutation", "Disconnect a wallet and its positions.", (
        _f("address", "string", "Wallet address or label", required=True),
    )),
    ToolDefinition("toggle_hide_balances", "mutation", "Show or hide balances in the UI."),
    ToolDefinition("toggle_hide_dust", "mutation", "Show or hide tiny positions."),
    ToolDefinition("set_risk_free_rate", "mutation", "Set the risk-free rate used in risk metrics.", (
        _f("rate", "number", "Rate as a fraction (0.05) or percent (5)", required=True),
    )),
    # ── navigation ──────────────────────────────────────────────────────
    ToolDefinition("navigate", "navigation", "Open a page of the app.", (
        _f("page", "string", "Page to open", required=True, enum=PAGES),
    )),
    # ── queries ─────────────────────────────────────────────────────────
    ToolDefinition("query_net_worth", "query", "Total portfolio value."),
    ToolDefinition("query_portfolio_summary", "query", "Totals by asset class and position counts."),
    ToolDefinition("query_top_positions", "query", "Largest positions by value.", (
        _f("limit", "number", "How many, default 5"),
    )),
    ToolDefinition("query_position_details", "query", "Details of the positions holding a symbol.", (
        _SYMBOL,
    )),
    ToolDefinition("query_positions_by_type", "query", "Positions of one asset type.", (
        _f("assetType", "string", "Asset type", required=True, enum=POSITION_TYPES),
    )),
    ToolDefinition("query_exposure", "query", "Long, short, gross and net exposure."),
    ToolDefinition("query_crypto_exposure", "query", "Crypto holdings and their share of the portfolio."),
    ToolDefinition("query_performance", "query", "Change in value across recorded snapshots."),
    ToolDefinition("query_24h_change", "query", "Portfolio value change over the last 24h."),
    ToolDefinition("query_category_value", "query", "Value of one asset class.", (
        _f("category", "string", "Asset class", required=True, enum=ASSET_CLASSES),
    )),
    ToolDefinition("query_position_count", "query", "Number of positions and distinct assets."),
    ToolDefinition("query_debt_summary", "query", "Borrowed positions and total debt."),
    ToolDefinition("query_leverage", "query", "Gross assets over net worth."),
    ToolDefinition("query_perps_summary", "query", "Perpetual futures positions."),
    ToolDefinition("query_risk_profile", "query", "Concentration and the configured risk-free rate."),
)

TOOLS_BY_ID: Dict[str, ToolDefinition] = {t.id: t for t in TOOL_DEFINITIONS}
ALL_TOOL_IDS: Tuple[str, ...] = tuple(TOOLS_BY_ID)

# Mutations that stop at a confirmation step instead of executing directly.
CONFIRM_MUTATION_TOOLS = frozenset({
    "buy_position",
    "sell_partial",
    "sell_all",
    "remove_position",
    "update_position",
    "set_price",
    "add_cash",
    "update_cash",
})


def get_tool(tool_id: Optional[str]) -> Optional[ToolDefinition]:
    return TOOLS_BY_ID.get((tool_id or "").strip())


def tool_schemas(tool_ids: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
    """Ollama schemas for ``tool_ids`` (unknown ids skipped); the full catalog when None/empty."""
    ids = list(tool_ids or [])
    if not ids:
        return [t.to_ollama_schema() for t in TOOL_DEFINITIONS]
    return [TOOLS_BY_ID[i].to_ollama_schema() for i in ids if i in TOOLS_BY_ID]
