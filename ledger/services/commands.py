from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from ledger.models import LedgerState
from ledger.utils import clamp_int, money, new_id, parse_iso, parse_money, to_iso

MAX_QTY = 1_000_000


@dataclass
class AddProduct:
    name: str
    category: str
    cost: float
    price: float
    stock: int = 0
    stock_min: int = 0


@dataclass
class UpdateProduct:
    product_id: int
    name: str
    category: str
    cost: float
    price: float
    stock: int = 0
    stock_min: int = 0


@dataclass
class DeleteProduct:
    product_id: int


@dataclass
class RecordSale:
    product_id: int
    qty: int
    notes: Optional[str] = None


@dataclass
class DeleteSale:
    sale_id: int


@dataclass
class AddExpense:
    type: str
    amount: float
    description: Optional[str] = None


@dataclass
class DeleteExpense:
    expense_id: int


@dataclass
class StartTable:
    table: int
    players: int
    rate: float


@dataclass
class AddPlayer:
    session_id: int


@dataclass
class StopTable:
    session_id: int


Command = Union[
    AddProduct,
    UpdateProduct,
    DeleteProduct,
    RecordSale,
    DeleteSale,
    AddExpense,
    DeleteExpense,
    StartTable,
    AddPlayer,
    StopTable,
]


def _normalize_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s if s else None


def _product_fields(cmd: Union[AddProduct, UpdateProduct]) -> dict:
    name = _normalize_text(cmd.name)
    if not name:
        raise ValueError("Product name is required.")
    cost = parse_money(cmd.cost)
    price = parse_money(cmd.price)
    if cost < 0 or price < 0 or price < cost:
        raise ValueError("Price must be >= cost (and both valid).")
    return {
        "name": name,
        "category": _normalize_text(cmd.category) or "otro",
        "cost": cost,
        "price": price,
        "stock": clamp_int(cmd.stock, 0, MAX_QTY),
        "stockMin": clamp_int(cmd.stock_min, 0, MAX_QTY),
    }


def table_charge(session: dict, now: datetime) -> tuple[int, float]:
    """(elapsed whole minutes, amount) for a table session at `now`."""
    started = parse_iso(session.get("startAt")) or now
    mins = max(0, math.floor((now - started).total_seconds() / 60))
    total = (mins / 60) * parse_money(session.get("rate")) * int(session.get("players") or 0)
    return mins, total


def apply_command(state: LedgerState, command: Command, now: Optional[datetime] = None) -> LedgerState:
    """
    Apply one user action and return the resulting state.
    The given state is never mutated; invalid input raises ValueError.
    """
    now = now or datetime.now(timezone.utc)
    nxt = state.clone()

    if isinstance(command, AddProduct):
        nxt.products.append({"id": new_id(), **_product_fields(command)})

    elif isinstance(command, UpdateProduct):
        product = nxt.find_product(command.product_id)
        if product is None:
            raise ValueError("Product not found.")
        product.update(_product_fields(command))

    elif isinstance(command, DeleteProduct):
        # Sales keep their productId; a missing product renders as deleted.
        if nxt.find_product(command.product_id) is None:
            raise ValueError("Product not found.")
        nxt.products = [p for p in nxt.products if p.get("id") != command.product_id]

    elif isinstance(command, RecordSale):
        product = nxt.find_product(command.product_id)
        if product is None:
            raise ValueError("Select a product.")
        qty = clamp_int(command.qty, 1, MAX_QTY)
        if int(product.get("stock", 0)) < qty:
            raise ValueError(f"Insufficient stock: only {product.get('stock', 0)} units available.")
        price = parse_money(product.get("price"))
        cost = parse_money(product.get("cost"))
        sale = {
            "id": new_id(),
            "at": to_iso(now),
            "productId": product["id"],
            "qty": qty,
            "unitPrice": price,
            "unitCost": cost,
            "total": qty * price,
            "profit": qty * (price - cost),
        }
        notes = _normalize_text(command.notes)
        if notes:
            sale["notes"] = notes
        nxt.sales.append(sale)
        product["stock"] = int(product.get("stock", 0)) - qty

    elif isinstance(command, DeleteSale):
        # Deleting a sale does not restock the product.
        nxt.sales = [s for s in nxt.sales if s.get("id") != command.sale_id]

    elif isinstance(command, AddExpense):
        exp_type = _normalize_text(command.type)
        if not exp_type:
            raise ValueError("Select the expense type.")
        amount = parse_money(command.amount)
        if not amount > 0:
            raise ValueError("Amount must be greater than 0.")
        expense = {"id": new_id(), "at": to_iso(now), "type": exp_type, "amount": amount}
        description = _normalize_text(command.description)
        if description:
            expense["description"] = description
        nxt.expenses.append(expense)

    elif isinstance(command, DeleteExpense):
        nxt.expenses = [e for e in nxt.expenses if e.get("id") != command.expense_id]

    elif isinstance(command, StartTable):
        table = clamp_int(command.table, 1, 100)
        players = clamp_int(command.players, 1, 50)
        rate = parse_money(command.rate)
        if not rate > 0:
            raise ValueError("Rate must be greater than 0.")
        if nxt.active_table(table) is not None:
            raise ValueError(f"Table {table} is already active.")
        nxt.tables.append(
            {
                "id": new_id(),
                "table": table,
                "players": players,
                "rate": rate,
                "startAt": to_iso(now),
                "active": True,
            }
        )

    elif isinstance(command, AddPlayer):
        session = nxt.find_table(command.session_id)
        if session is None or not session.get("active"):
            raise ValueError("Active table session not found.")
        session["players"] = int(session.get("players") or 0) + 1

    elif isinstance(command, StopTable):
        session = nxt.find_table(command.session_id)
        if session is None:
            raise ValueError("Table session not found.")
        if not session.get("active"):
            raise ValueError("Table session already finished.")
        _, total = table_charge(session, now)
        session["active"] = False
        session["endAt"] = to_iso(now)
        session["total"] = money(total)

    else:
        raise ValueError(f"Unknown command: {command!r}")

    return nxt
