from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from ledger.errors import ShapeError

STATE_VERSION = 1
DEFAULT_BUSINESS_NAME = "M&S - Control Finanzas"
DEFAULT_CURRENCY = "GTQ"
COLLECTIONS = ("products", "sales", "expenses", "tables")


def _default_business() -> dict:
    return {"name": DEFAULT_BUSINESS_NAME, "currency": DEFAULT_CURRENCY}


def is_valid_state_shape(doc: Any) -> bool:
    return isinstance(doc, dict) and all(isinstance(doc.get(k), list) for k in COLLECTIONS)


@dataclass
class LedgerState:
    """
    The single current ledger document.

    Entities are plain dicts with the camelCase field names used by the export
    file and the remote document, so a state can be handed to `json` as-is.
    """

    version: int = STATE_VERSION
    business: dict = field(default_factory=_default_business)
    products: list[dict] = field(default_factory=list)
    sales: list[dict] = field(default_factory=list)
    expenses: list[dict] = field(default_factory=list)
    tables: list[dict] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.products or self.sales or self.expenses or self.tables)

    def clone(self) -> "LedgerState":
        return copy.deepcopy(self)

    def to_document(self) -> dict:
        return copy.deepcopy(
            {
                "version": self.version,
                "business": self.business,
                "products": self.products,
                "sales": self.sales,
                "expenses": self.expenses,
                "tables": self.tables,
            }
        )

    @classmethod
    def from_document(cls, doc: Any) -> "LedgerState":
        if not is_valid_state_shape(doc):
            raise ShapeError("Document does not contain the expected structure (products, sales, expenses, tables).")
        doc = copy.deepcopy(doc)
        business = doc.get("business")
        try:
            version = int(doc.get("version", STATE_VERSION))
        except (TypeError, ValueError):
            version = STATE_VERSION
        return cls(
            version=version,
            business=business if isinstance(business, dict) else _default_business(),
            products=doc["products"],
            sales=doc["sales"],
            expenses=doc["expenses"],
            tables=doc["tables"],
        )

    # Lookups used by commands and reports

    def find_product(self, product_id: Any) -> dict | None:
        return next((p for p in self.products if p.get("id") == product_id), None)

    def find_table(self, session_id: Any) -> dict | None:
        return next((t for t in self.tables if t.get("id") == session_id), None)

    def active_table(self, table: int) -> dict | None:
        return next((t for t in self.tables if t.get("active") and t.get("table") == table), None)
