# Shared fixtures: a throwaway SQLite store per test and an in-memory
# remote document server behind httpx.MockTransport.

import json
from typing import Optional

import httpx
import pytest

from ledger.db import KVStore
from ledger.models import LedgerState
from ledger.services.metadata import MetadataStore
from ledger.services.session import LedgerSession
from ledger.services.state_repo import StateRepository

REMOTE_URL = "https://dav.example.test/ledger/ms_finanzas.json"


class FakeRemote:
    """GET returns the stored document (404 when absent); PUT replaces it."""

    def __init__(self):
        self.doc: Optional[dict] = None
        self.raw_body: Optional[str] = None
        self.force_status: Optional[int] = None
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.force_status is not None:
            return httpx.Response(self.force_status)
        if request.method == "GET":
            if self.raw_body is not None:
                return httpx.Response(200, text=self.raw_body)
            if self.doc is None:
                return httpx.Response(404)
            return httpx.Response(200, json=self.doc)
        if request.method == "PUT":
            self.doc = json.loads(request.content.decode("utf-8"))
            return httpx.Response(201)
        return httpx.Response(405)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def store(tmp_path):
    kv = KVStore(tmp_path / "ledger.db")
    yield kv
    kv.close()


@pytest.fixture
def meta(store):
    return MetadataStore(store)


@pytest.fixture
def repo(store, meta):
    return StateRepository(store, meta)


@pytest.fixture
def legacy_dir(tmp_path):
    path = tmp_path / "legacy"
    path.mkdir()
    return path


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def session(tmp_path, legacy_dir, remote):
    s = LedgerSession(tmp_path / "ledger.db", legacy_dir, transport=remote.transport, seed_demo=False)
    yield s
    s.store.close()


def sample_state() -> LedgerState:
    return LedgerState(
        products=[
            {"id": 1, "name": "Soda", "category": "bebida", "cost": 5, "price": 8, "stock": 10, "stockMin": 2},
        ],
        sales=[
            {
                "id": 10,
                "at": "2026-01-05T15:00:00.000Z",
                "productId": 1,
                "qty": 2,
                "unitPrice": 8,
                "unitCost": 5,
                "total": 16,
                "profit": 6,
                "notes": "walk-in",
            }
        ],
        expenses=[{"id": 20, "at": "2026-01-05T16:00:00.000Z", "type": "servicios", "amount": 50.5}],
        tables=[{"id": 30, "table": 2, "players": 3, "rate": 12, "startAt": "2026-01-05T14:00:00.000Z", "active": True}],
    )


@pytest.fixture
def state():
    return sample_state()
