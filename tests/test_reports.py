import csv
import io
from datetime import datetime, timedelta

from ledger.models import LedgerState
from ledger.services.reports import (
    CSV_COLUMNS,
    DELETED_PRODUCT_LABEL,
    active_table_rows,
    compute_kpis,
    movements_csv,
    sales_rows,
)
from ledger.utils import to_iso

from conftest import sample_state

# Wednesday, local time.
NOW = datetime(2026, 1, 7, 12, 0).astimezone()


def test_csv_header_and_rows(state):
    text = movements_csv(state)
    lines = text.splitlines()

    assert lines[0] == ",".join(CSV_COLUMNS)
    assert lines[1] == "venta,2026-01-05T15:00:00.000Z,Soda,2,16,6"
    assert lines[2] == "gasto,2026-01-05T16:00:00.000Z,servicios,,50.5,"
    # Active table sessions are not movements yet.
    assert len(lines) == 3


def test_csv_quotes_commas_and_quotes():
    state = sample_state()
    state.products[0]["name"] = 'Soda, "grande"'
    state.tables[0].update(active=False, endAt="2026-01-05T15:30:00.000Z", total=18.0)

    text = movements_csv(state)

    assert '"Soda, ""grande"""' in text
    rows = list(csv.reader(io.StringIO(text)))
    assert rows[1][2] == 'Soda, "grande"'
    assert rows[3] == ["mesa", "2026-01-05T15:30:00.000Z", "Mesa 2", "3", "18", ""]


def test_csv_of_empty_state_is_header_only():
    assert movements_csv(LedgerState()) == ",".join(CSV_COLUMNS) + "\n"


def test_deleted_product_label():
    state = sample_state()
    state.products = []

    assert sales_rows(state)[0]["product"] == DELETED_PRODUCT_LABEL
    assert DELETED_PRODUCT_LABEL in movements_csv(state)


def _at(delta: timedelta) -> str:
    return to_iso(NOW + delta)


def test_kpis_by_period():
    state = LedgerState(
        products=[
            {"id": 1, "name": "Soda", "cost": 5, "price": 8, "stock": 1, "stockMin": 2},
            {"id": 2, "name": "Chips", "cost": 3, "price": 6, "stock": 50, "stockMin": 5},
        ],
        sales=[
            {"id": 10, "at": _at(timedelta(hours=-1)), "productId": 1, "total": 16, "profit": 6},
            {"id": 11, "at": _at(timedelta(days=-2)), "productId": 1, "total": 8, "profit": 3},
            {"id": 12, "at": _at(timedelta(days=-6)), "productId": 2, "total": 6, "profit": 3},
            {"id": 13, "at": _at(timedelta(days=-40)), "productId": 2, "total": 100, "profit": 50},
        ],
        expenses=[
            {"id": 20, "at": _at(timedelta(hours=-2)), "type": "luz", "amount": 4},
            {"id": 21, "at": _at(timedelta(days=-2)), "type": "agua", "amount": 1},
        ],
        tables=[
            {"id": 30, "table": 1, "players": 2, "rate": 10, "startAt": _at(timedelta(hours=-3)),
             "endAt": _at(timedelta(hours=-2)), "active": False, "total": 20},
            {"id": 31, "table": 2, "players": 2, "rate": 10, "startAt": _at(timedelta(minutes=-30)), "active": True},
        ],
    )

    kpis = compute_kpis(state, NOW)

    assert kpis["income_today"] == 36
    assert kpis["profit_today"] == 2
    assert kpis["expenses_today"] == 4
    # Week starts Monday the 5th.
    assert kpis["income_week"] == 44
    assert kpis["profit_week"] == 4
    assert kpis["income_month"] == 50
    assert kpis["profit_month"] == 7
    assert kpis["active_tables"] == 1
    assert [p["name"] for p in kpis["low_stock"]] == ["Soda"]


def test_active_table_rows_show_running_charge():
    state = LedgerState(
        tables=[{"id": 31, "table": 2, "players": 2, "rate": 10, "startAt": _at(timedelta(minutes=-30)), "active": True}]
    )

    rows = active_table_rows(state, NOW)

    assert rows == [{"id": 31, "table": 2, "players": 2, "rate": 10, "minutes": 30, "total": 10.0}]
