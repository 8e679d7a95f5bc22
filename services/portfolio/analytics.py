"""
Read-only aggregations behind the query tools.

Valuation: custom price, then market price, then 1.0 for cash, converted
with ``fx_rates`` for non-USD cash. Debt counts negative.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import pandas as pd

from schemas.portfolio import PortfolioData, Position
from services.commands.cash_resolver import position_currency
from services.commands.position_matcher import stored_price
from services.portfolio.positions import position_asset_class

DUST_THRESHOLD_USD = 1.0

_COLUMNS = [
    "id", "symbol", "name", "type", "asset_class", "amount", "price",
    "value", "change24h", "account_id", "is_debt", "protocol", "cost_basis",
]


def _unit_price(position: Position, data: PortfolioData) -> float:
    if position.type == "cash":
        ccy = position_currency(position) or "USD"
        if ccy == "USD":
            return 1.0
        return float(data.fx_rates.get(ccy) or data.fx_rates.get(ccy.lower()) or 0.0)
    return stored_price(data, position.symbol) or 0.0


def _change24h(position: Position, data: PortfolioData) -> float:
    key = position.symbol.lower()
    for k, v in data.prices.items():
        if k.lower() == key:
            return float(v.change24h or 0.0)
    return 0.0


def positions_frame(data: PortfolioData) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for p in data.positions:
        price = _unit_price(p, data)
        sign = -1.0 if p.is_debt else 1.0
        rows.append({
            "id": p.id,
            "symbol": p.symbol,
            "name": p.name,
            "type": p.type,
            "asset_class": position_asset_class(p),
            "amount": p.amount,
            "price": price,
            "value": sign * abs(p.amount) * price if p.is_debt else p.amount * price,
            "change24h": sign * abs(p.amount) * _change24h(p, data),
            "account_id": p.account_id,
            "is_debt": p.is_debt,
            "protocol": p.protocol,
            "cost_basis": p.cost_basis,
        })
    return pd.DataFrame(rows, columns=_COLUMNS)


def _records(df: pd.DataFrame, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    out = df[["id", "symbol", "name", "type", "asset_class", "amount", "price", "value", "account_id"]]
    if limit is not None:
        out = out.head(limit)
    out = out.astype(object).where(pd.notna(out), None)
    out = out.rename(columns={"asset_class": "assetClass", "account_id": "accountId"})
    return [
        {**r, "value": round(float(r["value"]), 2), "price": round(float(r["price"]), 8)}
        for r in out.to_dict(orient="records")
    ]


def _sum(series: pd.Series) -> float:
    return round(float(series.sum()), 2) if len(series) else 0.0


def net_worth(data: PortfolioData) -> Dict[str, Any]:
    df = positions_frame(data)
    return {"netWorth": _sum(df["value"]), "currency": "USD"}


def portfolio_summary(data: PortfolioData) -> Dict[str, Any]:
    df = positions_frame(data)
    by_class = df.groupby("asset_class")["value"].sum().round(2).to_dict() if len(df) else {}
    return {
        "netWorth": _sum(df["value"]),
        "byAssetClass": by_class,
        "positionCount": int(len(df)),
        "assetCount": int(df["symbol"].str.upper().nunique()) if len(df) else 0,
        "accountCount": len(data.accounts),
    }


def top_positions(data: PortfolioData, limit: int = 5) -> Dict[str, Any]:
    df = positions_frame(data)
    if len(df):
        df = df.assign(abs_value=df["value"].abs()).sort_values("abs_value", ascending=False)
    return {"positions": _records(df, max(1, int(limit)))}


def position_details(data: PortfolioData, symbol: str) -> Dict[str, Any]:
    df = positions_frame(data)
    sym = (symbol or "").strip().upper()
    hits = df[df["symbol"].str.upper() == sym] if len(df) else df
    if not len(hits):
        return {"error": f"No position found for {sym}"}
    accounts = {a.id: a.name for a in data.accounts}
    records = _records(hits)
    for r in records:
        r["account"] = accounts.get(r.get("accountId") or "")
    return {"symbol": sym, "positions": records, "totalAmount": float(hits["amount"].sum()), "totalValue": _sum(hits["value"])}


def positions_by_type(data: PortfolioData, asset_type: str) -> Dict[str, Any]:
    df = positions_frame(data)
    typ = (asset_type or "").strip().lower()
    hits = df[df["type"] == typ] if len(df) else df
    if len(hits):
        hits = hits.sort_values("value", ascending=False)
    return {"assetType": typ, "positions": _records(hits), "totalValue": _sum(hits["value"])}


def exposure(data: PortfolioData) -> Dict[str, Any]:
    df = positions_frame(data)
    long = df[df["value"] > 0]["value"] if len(df) else df["value"]
    short = df[df["value"] < 0]["value"] if len(df) else df["value"]
    by_class = df.groupby("asset_class")["value"].sum().round(2).to_dict() if len(df) else {}
    long_total, short_total = _sum(long), _sum(short)
    return {
        "long": long_total,
        "short": short_total,
        "gross": round(long_total - short_total, 2),
        "net": round(long_total + short_total, 2),
        "byAssetClass": by_class,
    }


def crypto_exposure(data: PortfolioData) -> Dict[str, Any]:
    df = positions_frame(data)
    crypto = df[df["asset_class"] == "crypto"] if len(df) else df
    total = _sum(df["value"])
    crypto_total = _sum(crypto["value"])
    grouped = crypto.groupby(crypto["symbol"].str.upper())["value"].sum().sort_values(ascending=False) if len(crypto) else pd.Series(dtype=float)
    return {
        "cryptoValue": crypto_total,
        "shareOfPortfolio": round(crypto_total / total, 4) if total else 0.0,
        "bySymbol": {k: round(float(v), 2) for k, v in grouped.items()},
    }


def performance(data: PortfolioData) -> Dict[str, Any]:
    if len(data.snapshots) < 2:
        return {"error": "Not enough snapshots to measure performance"}
    snaps = pd.DataFrame([{"date": s.date, "value": s.total_value} for s in data.snapshots])
    snaps = snaps.sort_values("date")
    first, last = snaps.iloc[0], snaps.iloc[-1]
    change = float(last["value"] - first["value"])
    return {
        "from": first["date"],
        "to": last["date"],
        "startValue": round(float(first["value"]), 2),
        "endValue": round(float(last["value"]), 2),
        "change": round(change, 2),
        "changePercent": round(change / float(first["value"]) * 100, 2) if first["value"] else None,
    }


def change_24h(data: PortfolioData) -> Dict[str, Any]:
    df = positions_frame(data)
    change = _sum(df["change24h"])
    total = _sum(df["value"])
    base = total - change
    return {"change24h": change, "changePercent24h": round(change / base * 100, 2) if base else None}


def category_value(data: PortfolioData, category: str) -> Dict[str, Any]:
    df = positions_frame(data)
    cat = (category or "").strip().lower()
    hits = df[df["asset_class"] == cat] if len(df) else df
    return {"category": cat, "value": _sum(hits["value"]), "positionCount": int(len(hits))}


def position_count(data: PortfolioData) -> Dict[str, Any]:
    df = positions_frame(data)
    return {
        "positionCount": int(len(df)),
        "assetCount": int(df["symbol"].str.upper().nunique()) if len(df) else 0,
        "byType": {k: int(v) for k, v in df["type"].value_counts().items()},
    }


def debt_summary(data: PortfolioData) -> Dict[str, Any]:
    df = positions_frame(data)
    debt = df[df["is_debt"]] if len(df) else df
    return {"totalDebt": round(abs(_sum(debt["value"])), 2), "positions": _records(debt)}


def leverage(data: PortfolioData) -> Dict[str, Any]:
    exp = exposure(data)
    net = exp["net"]
    return {
        "grossAssets": exp["long"],
        "debt": abs(exp["short"]),
        "netWorth": net,
        "leverage": round(exp["long"] / net, 4) if net > 0 else None,
    }


def perps_summary(data: PortfolioData) -> Dict[str, Any]:
    df = positions_frame(data)
    if len(df):
        mask = df["protocol"].fillna("").str.lower().str.contains("perp") | df["name"].fillna("").str.lower().str.contains("perp")
        perps = df[mask]
    else:
        perps = df
    return {"positions": _records(perps), "totalValue": _sum(perps["value"])}


def risk_profile(data: PortfolioData) -> Dict[str, Any]:
    df = positions_frame(data)
    assets = df[df["value"] > 0] if len(df) else df
    total = _sum(assets["value"])
    if not total:
        return {"topHoldingShare": 0.0, "top5Share": 0.0, "riskFreeRate": data.risk_free_rate}
    by_symbol = assets.groupby(assets["symbol"].str.upper())["value"].sum().sort_values(ascending=False)
    shares = by_symbol / total
    return {
        "topHolding": str(shares.index[0]),
        "topHoldingShare": round(float(shares.iloc[0]), 4),
        "top5Share": round(float(shares.head(5).sum()), 4),
        "riskFreeRate": data.risk_free_rate,
    }


def visible_positions(data: PortfolioData) -> pd.DataFrame:
    """Positions the dashboard shows, honoring the hide-dust setting."""
    df = positions_frame(data)
    if data.hide_dust and len(df):
        df = df[df["value"].abs() >= DUST_THRESHOLD_USD]
    return df
