from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

import pandas as pd

from ledger.models import LedgerState
from ledger.services.commands import table_charge
from ledger.utils import parse_iso

DELETED_PRODUCT_LABEL = "(deleted product)"
CSV_COLUMNS = ["tipo", "fecha", "detalle", "cantidad", "total", "ganancia"]


def _local(iso: object) -> Optional[datetime]:
    dt = parse_iso(iso)
    return dt.astimezone() if dt is not None else None


def _within(iso: object, start: datetime, end: datetime) -> bool:
    dt = _local(iso)
    return dt is not None and start <= dt < end


def _sum(values: Iterable[object]) -> float:
    return float(sum(float(v or 0) for v in values))


def _period_bounds(now: datetime) -> dict[str, tuple[datetime, datetime]]:
    day0 = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week0 = day0 - timedelta(days=day0.weekday())
    month0 = day0.replace(day=1)
    month1 = (month0 + timedelta(days=32)).replace(day=1)
    return {
        "today": (day0, day0 + timedelta(days=1)),
        "week": (week0, week0 + timedelta(days=7)),
        "month": (month0, month1),
    }


def compute_kpis(state: LedgerState, now: Optional[datetime] = None) -> dict:
    """
    Income and profit for today / this week (Monday start) / this month in local time.
    Income counts sales plus finished table sessions; profit is sale profit minus expenses.
    """
    now = (now or datetime.now()).astimezone()
    finished = [t for t in state.tables if not t.get("active") and t.get("endAt")]

    out: dict = {}
    for period, (start, end) in _period_bounds(now).items():
        sales = [s for s in state.sales if _within(s.get("at"), start, end)]
        expenses = [e for e in state.expenses if _within(e.get("at"), start, end)]
        tables = [t for t in finished if _within(t.get("endAt"), start, end)]
        out[f"income_{period}"] = _sum(s.get("total") for s in sales) + _sum(t.get("total") for t in tables)
        out[f"profit_{period}"] = _sum(s.get("profit") for s in sales) - _sum(e.get("amount") for e in expenses)
        if period == "today":
            out["expenses_today"] = _sum(e.get("amount") for e in expenses)

    out["active_tables"] = sum(1 for t in state.tables if t.get("active"))
    low = [p for p in state.products if float(p.get("stock", 0)) <= float(p.get("stockMin", 0))]
    low.sort(key=lambda p: float(p.get("stock", 0)) - float(p.get("stockMin", 0)))
    out["low_stock"] = low[:8]
    return out


def product_name(state: LedgerState, product_id: object) -> str:
    p = state.find_product(product_id)
    return str(p["name"]) if p else DELETED_PRODUCT_LABEL


def sales_rows(state: LedgerState, limit: int = 80) -> list[dict]:
    sales = sorted(state.sales, key=lambda s: str(s.get("at", "")), reverse=True)[:limit]
    return [
        {
            "id": s.get("id"),
            "at": s.get("at"),
            "product": product_name(state, s.get("productId")),
            "qty": s.get("qty"),
            "total": s.get("total"),
            "profit": s.get("profit"),
            "notes": s.get("notes", ""),
        }
        for s in sales
    ]


def expense_rows(state: LedgerState, limit: int = 120) -> list[dict]:
    expenses = sorted(state.expenses, key=lambda e: str(e.get("at", "")), reverse=True)[:limit]
    return [
        {
            "id": e.get("id"),
            "at": e.get("at"),
            "type": e.get("type"),
            "amount": e.get("amount"),
            "description": e.get("description", ""),
        }
        for e in expenses
    ]


def active_table_rows(state: LedgerState, now: Optional[datetime] = None) -> list[dict]:
    now = (now or datetime.now()).astimezone()
    rows = []
    for t in sorted((t for t in state.tables if t.get("active")), key=lambda t: int(t.get("table") or 0)):
        mins, total = table_charge(t, now)
        rows.append(
            {
                "id": t.get("id"),
                "table": t.get("table"),
                "players": t.get("players"),
                "rate": t.get("rate"),
                "minutes": mins,
                "total": round(total, 2),
            }
        )
    return rows


def _cell(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def movements_frame(state: LedgerState) -> pd.DataFrame:
    rows: list[list[str]] = []
    for s in state.sales:
        rows.append(["venta", s.get("at"), product_name(state, s.get("productId")), s.get("qty"), s.get("total"), s.get("profit")])
    for e in state.expenses:
        rows.append(["gasto", e.get("at"), e.get("type"), "", e.get("amount"), ""])
    for t in state.tables:
        if t.get("active") or not t.get("endAt"):
            continue
        rows.append(["mesa", t.get("endAt"), f"Mesa {t.get('table')}", t.get("players"), t.get("total") or 0, ""])
    return pd.DataFrame([[_cell(v) for v in r] for r in rows], columns=CSV_COLUMNS, dtype=str)


def movements_csv(state: LedgerState) -> str:
    """One row per sale, expense and finished table session; standard CSV quoting."""
    return movements_frame(state).to_csv(index=False, lineterminator="\n")
