from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ledger.errors import StorageError
from ledger.models import LedgerState, is_valid_state_shape
from ledger.utils import clamp_int, money, new_id, parse_iso, parse_money, to_iso

logger = logging.getLogger(__name__)

LEGACY_STATE_KEY = "ms_finanzas_offline_v1"
LEGACY_PRODUCTS_KEY = "productos"
LEGACY_SALES_KEY = "ventas"
LEGACY_TABLES_KEY = "mesasActivas"

MAX_QTY = 1_000_000
PLACEHOLDER_PRODUCT_NAME = "Producto (migrado)"


class LegacyArea:
    """
    Older flat storage: one raw-text file per legacy key inside a directory.
    The importer only reads from it; `remove` is used for the whole-state blob cleanup.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def read_raw(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("cannot read legacy key %s: %s", key, exc)
            return None

    def read_json(self, key: str) -> Any:
        raw = self.read_raw(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot remove legacy key {key!r}: {exc}") from exc


def _normalize_name(s: Any) -> str:
    return str(s or "").strip().casefold()


def _first(record: Any, *names: str) -> Any:
    """First non-blank value among the candidate field names (legacy names first)."""
    if not isinstance(record, dict):
        return None
    for name in names:
        value = record.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        return value
    return None


def _legacy_date(value: Any) -> datetime:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return datetime.now(timezone.utc)
    return parse_iso(value) or datetime.now(timezone.utc)


def _convert_product(lp: Any) -> Optional[dict]:
    name = str(_first(lp, "nombre", "name") or "").strip()
    if not name:
        return None
    return {
        "id": new_id(),
        "name": name,
        "category": str(_first(lp, "categoria") or "otro"),
        "cost": parse_money(_first(lp, "costo")),
        "price": parse_money(_first(lp, "precio")),
        "stock": clamp_int(_first(lp, "stock"), 0, MAX_QTY),
        "stockMin": clamp_int(_first(lp, "stockMinimo"), 0, MAX_QTY),
    }


def _placeholder_product(name: str, unit_price: float, qty: int, profit: float) -> dict:
    unit_profit = profit / qty if qty else 0.0
    unit_cost = max(0.0, unit_price - unit_profit)
    return {
        "id": new_id(),
        "name": name or PLACEHOLDER_PRODUCT_NAME,
        "category": "otro",
        "cost": money(unit_cost),
        "price": money(unit_price),
        "stock": 0,
        "stockMin": 0,
    }


def import_legacy_records(state: LedgerState, area: LegacyArea) -> tuple[LedgerState, bool]:
    """
    Convert the legacy products/sales/table records into a fresh ledger state.

    Only runs into an empty state. Bad records are skipped or coerced; nothing
    here raises on malformed legacy data, and the legacy area is left untouched.
    Returns (state, migrated).
    """
    if not state.is_empty():
        return state, False

    legacy_products = area.read_json(LEGACY_PRODUCTS_KEY)
    legacy_sales = area.read_json(LEGACY_SALES_KEY)
    legacy_tables = area.read_json(LEGACY_TABLES_KEY)

    legacy_products = legacy_products if isinstance(legacy_products, list) else []
    legacy_sales = legacy_sales if isinstance(legacy_sales, list) else []
    legacy_tables = legacy_tables if isinstance(legacy_tables, list) else []

    if not (legacy_products or legacy_sales or legacy_tables):
        return state, False

    nxt = LedgerState(business=dict(state.business))

    by_name: dict[str, dict] = {}
    for lp in legacy_products:
        product = _convert_product(lp)
        if product is None:
            continue
        nxt.products.append(product)
        by_name[_normalize_name(product["name"])] = product

    for ls in legacy_sales:
        qty = clamp_int(_first(ls, "cantidad", "qty"), 1, MAX_QTY)
        unit_price = parse_money(_first(ls, "precio", "unitPrice"))
        total_raw = _first(ls, "total")
        total = parse_money(total_raw) if total_raw is not None else unit_price * qty
        profit = parse_money(_first(ls, "ganancia", "profit"))
        name = str(_first(ls, "producto", "product") or "").strip()
        at = _legacy_date(_first(ls, "hora", "at"))

        product = by_name.get(_normalize_name(name))
        if product is None:
            product = _placeholder_product(name, unit_price, qty, profit)
            nxt.products.append(product)
            by_name[_normalize_name(product["name"])] = product

        nxt.sales.append(
            {
                "id": new_id(),
                "at": to_iso(at),
                "productId": product["id"],
                "qty": qty,
                "unitPrice": money(unit_price),
                "unitCost": money(product["cost"]),
                "total": money(total),
                "profit": money(profit),
                "notes": "Migrado",
            }
        )

    # Finished legacy sessions carry no end time; only open ones are kept.
    for lt in legacy_tables:
        if isinstance(lt, dict) and lt.get("activa") is False:
            continue
        nxt.tables.append(
            {
                "id": new_id(),
                "table": clamp_int(_first(lt, "mesa"), 1, MAX_QTY),
                "players": clamp_int(_first(lt, "jugadores"), 1, 100),
                "rate": parse_money(_first(lt, "tarifa")),
                "startAt": to_iso(_legacy_date(_first(lt, "inicio"))),
                "active": True,
            }
        )

    logger.info(
        "legacy import: %d products, %d sales, %d tables",
        len(nxt.products),
        len(nxt.sales),
        len(nxt.tables),
    )
    return nxt, True


def read_legacy_state_blob(area: LegacyArea) -> Optional[LedgerState]:
    """The older whole-state document, when present and well-formed."""
    doc = area.read_json(LEGACY_STATE_KEY)
    if not is_valid_state_shape(doc):
        return None
    return LedgerState.from_document(doc)
