from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from ledger.models import LedgerState
from ledger.utils import new_id, to_iso

DEFAULT_PRODUCTS = [
    ("Coca-Cola 500ml", "bebida", 5, 8, 24, 5),
    ("Cerveza Nacional", "bebida", 6, 12, 36, 10),
    ("Papas fritas", "snack", 3, 6, 15, 5),
]


def seed_if_empty(state: LedgerState, now: Optional[datetime] = None) -> LedgerState:
    """Example products and one running table for a brand-new store. Non-empty states are returned as-is."""
    if not state.is_empty():
        return state

    now = now or datetime.now(timezone.utc)
    seeded = state.clone()
    for pid, (name, category, cost, price, stock, stock_min) in enumerate(DEFAULT_PRODUCTS, start=1):
        seeded.products.append(
            {
                "id": pid,
                "name": name,
                "category": category,
                "cost": cost,
                "price": price,
                "stock": stock,
                "stockMin": stock_min,
            }
        )
    seeded.tables.append(
        {
            "id": new_id(),
            "table": 1,
            "players": 2,
            "rate": 10,
            "startAt": to_iso(now - timedelta(minutes=45)),
            "active": True,
        }
    )
    return seeded
