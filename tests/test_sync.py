import base64

import pytest

from ledger.errors import ConflictError, NotFoundError, ShapeError, TransportError
from ledger.models import LedgerState
from ledger.services.sync import SyncConfig, needs_confirmation

from conftest import REMOTE_URL

T_OLD = "2026-01-01T00:00:00.000Z"
T_NEW = "2026-01-02T00:00:00.000Z"


def remote_state() -> dict:
    return LedgerState(
        products=[{"id": 7, "name": "Remote beer", "category": "bebida", "cost": 6, "price": 12, "stock": 3, "stockMin": 1}],
    ).to_document()


def configure(session, **overrides):
    cfg = SyncConfig(url=REMOTE_URL, **overrides)
    session.set_sync_config(cfg)
    return cfg


def set_local(session, state, updated_at):
    session.state = state
    meta = session.meta.load()
    meta.pop("stateUpdatedAt", None)
    if updated_at:
        meta["stateUpdatedAt"] = updated_at
    session.meta.save(meta)


class Recorder:
    def __init__(self, answer):
        self.answer = answer
        self.messages = []

    def __call__(self, message):
        self.messages.append(message)
        return self.answer


CONFLICT_MATRIX = [
    # local, remote, push needs confirm, pull needs confirm
    (T_OLD, T_NEW, True, False),
    (T_NEW, T_OLD, False, True),
    (T_OLD, T_OLD, False, False),
    (None, T_NEW, False, False),
    (T_NEW, None, False, False),
    (None, None, False, False),
    ("garbage", T_NEW, False, False),
]


@pytest.mark.parametrize("local_at, remote_at, push_gated, pull_gated", CONFLICT_MATRIX)
def test_needs_confirmation_matrix(local_at, remote_at, push_gated, pull_gated):
    assert needs_confirmation(local_at, remote_at) is push_gated
    assert needs_confirmation(remote_at, local_at) is pull_gated


@pytest.mark.parametrize("local_at, remote_at, push_gated, pull_gated", CONFLICT_MATRIX)
def test_push_gate(session, remote, state, local_at, remote_at, push_gated, pull_gated):
    session.load_or_init()
    cfg = configure(session)
    set_local(session, state, local_at)
    remote.doc = {"app": "ms-finanzas", "format": 1, "state": remote_state()}
    if remote_at:
        remote.doc["updatedAt"] = remote_at
    before = dict(remote.doc)

    confirm = Recorder(False)
    if push_gated:
        with pytest.raises(ConflictError):
            session.sync.push(cfg, session.state, confirm)
        assert remote.doc == before
        assert len(confirm.messages) == 1
    else:
        session.sync.push(cfg, session.state, confirm)
        assert confirm.messages == []
        assert remote.doc["state"] == state.to_document()


@pytest.mark.parametrize("local_at, remote_at, push_gated, pull_gated", CONFLICT_MATRIX)
def test_pull_gate(session, remote, state, local_at, remote_at, push_gated, pull_gated):
    session.load_or_init()
    cfg = configure(session)
    set_local(session, state, local_at)
    remote.doc = {"app": "ms-finanzas", "format": 1, "updatedBy": "dev-remote", "state": remote_state()}
    if remote_at:
        remote.doc["updatedAt"] = remote_at

    confirm = Recorder(False)
    if pull_gated:
        with pytest.raises(ConflictError):
            session.sync.pull(cfg, confirm)
        assert len(confirm.messages) == 1
        assert session.repo.load() is None
    else:
        pulled = session.sync.pull(cfg, confirm)
        assert confirm.messages == []
        assert pulled.products[0]["name"] == "Remote beer"


def test_push_payload_and_bookkeeping(session, remote, state):
    session.load_or_init()
    cfg = configure(session, user="ana", password="s3cret")
    session.repo.save(state, updated_at=T_OLD)
    session.state = state

    payload = session.sync.push(cfg, state)

    meta = session.meta.load()
    assert remote.doc == payload
    assert payload["app"] == "ms-finanzas"
    assert payload["format"] == 1
    assert payload["updatedAt"] == T_OLD
    assert payload["updatedBy"] == meta["deviceId"]
    assert payload["state"] == state.to_document()
    assert meta["lastSyncPushAt"]

    put = [r for r in remote.requests if r.method == "PUT"][0]
    expected = "Basic " + base64.b64encode(b"ana:s3cret").decode("ascii")
    assert put.headers["Authorization"] == expected
    assert put.headers["Content-Type"].startswith("application/json")


def test_push_stamps_now_without_local_timestamp(session, remote, state):
    session.load_or_init()
    cfg = configure(session)

    payload = session.sync.push(cfg, state)
    assert payload["updatedAt"].endswith("Z")


def test_no_auth_header_without_credentials(session, remote, state):
    session.load_or_init()
    cfg = configure(session)
    session.sync.push(cfg, state)
    assert all("Authorization" not in r.headers for r in remote.requests)


def test_pull_installs_remote_metadata(session, remote):
    session.load_or_init()
    cfg = configure(session)
    remote.doc = {"updatedAt": T_NEW, "updatedBy": "dev-remote", "state": remote_state()}

    pulled = session.sync.pull(cfg)

    meta = session.meta.load()
    assert session.repo.load() == pulled
    assert meta["stateUpdatedAt"] == T_NEW
    assert meta["stateUpdatedBy"] == "dev-remote"
    assert meta["stateUpdatedSource"] == "sync-pull"
    assert meta["lastSyncPullAt"]


@pytest.mark.parametrize("missing", ["products", "sales", "expenses", "tables"])
def test_pull_rejects_incomplete_remote(session, remote, state, missing):
    session.load_or_init()
    cfg = configure(session)
    session.repo.save(state, updated_at=T_OLD)
    session.state = state
    meta_before = session.meta.load()

    bad = remote_state()
    del bad[missing]
    remote.doc = {"updatedAt": T_NEW, "state": bad}

    with pytest.raises(ShapeError):
        session.sync.pull(cfg)

    assert session.repo.load() == state
    assert session.meta.load() == meta_before


def test_pull_without_remote_document(session, remote):
    session.load_or_init()
    cfg = configure(session)
    with pytest.raises(NotFoundError):
        session.sync.pull(cfg)

    remote.doc = {"updatedAt": T_NEW}
    with pytest.raises(NotFoundError):
        session.sync.pull(cfg)


def test_fetch_treats_404_as_absent(session, remote):
    session.load_or_init()
    assert session.sync.fetch_remote(configure(session)) is None


def test_http_error_status(session, remote, state):
    session.load_or_init()
    cfg = configure(session)
    remote.force_status = 500

    with pytest.raises(TransportError, match="HTTP 500"):
        session.sync.fetch_remote(cfg)
    with pytest.raises(TransportError):
        session.sync.push(cfg, state)
    assert "lastSyncPushAt" not in session.meta.load()


def test_unparsable_remote_is_shape_error(session, remote):
    session.load_or_init()
    cfg = configure(session)
    remote.raw_body = "<html>not json</html>"
    with pytest.raises(ShapeError):
        session.sync.fetch_remote(cfg)

    remote.raw_body = "[1, 2, 3]"
    with pytest.raises(ShapeError):
        session.sync.fetch_remote(cfg)


def test_sync_config_round_trip(session):
    session.load_or_init()
    assert session.get_sync_config() == SyncConfig()

    cfg = SyncConfig(url=" https://x/y.json ", user=" bob ", password=" pw ", auto=True)
    session.set_sync_config(cfg)

    assert session.store.get("syncConfig") == {"url": "https://x/y.json", "user": "bob", "pass": " pw ", "auto": True}
    assert session.get_sync_config() == SyncConfig(url="https://x/y.json", user="bob", password=" pw ", auto=True)


def test_auto_sync_pulls_newer_remote_without_prompt(session, remote, state):
    session.load_or_init()
    configure(session, auto=True)
    session.repo.save(state, updated_at=T_OLD)
    session.state = state
    remote.doc = {"updatedAt": T_NEW, "updatedBy": "dev-remote", "state": remote_state()}

    status = session.auto_sync(is_online=lambda url: True)

    assert status == "Auto-sync: remote data applied"
    assert session.state.products[0]["name"] == "Remote beer"
    assert session.meta.load()["stateUpdatedSource"] == "sync-auto-pull"


def test_auto_sync_keeps_newer_local(session, remote, state):
    session.load_or_init()
    configure(session, auto=True)
    session.repo.save(state, updated_at=T_NEW)
    session.state = state
    remote.doc = {"updatedAt": T_OLD, "state": remote_state()}

    assert session.auto_sync(is_online=lambda url: True) == "Auto-sync: no changes"
    assert session.state == state


def test_auto_sync_skipped_when_disabled_or_offline(session, remote, state):
    session.load_or_init()
    remote.doc = {"updatedAt": T_NEW, "state": remote_state()}

    configure(session, auto=False)
    assert session.auto_sync(is_online=lambda url: True) == "Ready"

    configure(session, auto=True)
    assert session.auto_sync(is_online=lambda url: False) == "Ready"
    assert remote.requests == []


def test_auto_sync_swallows_failures(session, remote):
    session.load_or_init()
    configure(session, auto=True)
    remote.force_status = 503

    assert session.auto_sync(is_online=lambda url: True) == "Ready"
