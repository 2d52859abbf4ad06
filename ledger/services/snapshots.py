from __future__ import annotations

import logging
from typing import Optional

from ledger.db import KVStore
from ledger.errors import NotFoundError, best_effort
from ledger.models import LedgerState
from ledger.schema import SNAPSHOT_INDEX_KEY, SNAPSHOT_PREFIX
from ledger.services.metadata import MetadataStore
from ledger.utils import iso_now, iso_today

logger = logging.getLogger(__name__)

MAX_SNAPSHOTS = 20
DAILY_REASON = "auto-diario"


def _split_id(snapshot_id: str) -> tuple[str, int]:
    # "2026-10-18T10:00:00.123Z-002" -> ("2026-10-18T10:00:00.123Z", 2)
    base, sep, suffix = snapshot_id.partition("Z-")
    if not sep:
        return snapshot_id, 0
    return base + "Z", int(suffix) if suffix.isdigit() else 0


def next_snapshot_id(newest_id: Optional[str], now_iso: str) -> str:
    """
    Timestamp id that sorts after `newest_id`.
    Two snapshots in the same millisecond get a -001, -002, ... suffix.
    """
    if not newest_id:
        return now_iso
    newest_base, n = _split_id(str(newest_id))
    if now_iso > newest_base:
        return now_iso
    return f"{newest_base}-{n + 1:03d}"


class SnapshotEngine:
    """
    Point-in-time copies of the ledger state.

    Bodies live under `snapshot:<id>`; the index (`snapshotIndex`, newest first)
    is the only thing scanned to list them. Writing a body and updating the index
    are two separate single-key writes, so a crash in between can leave an
    orphaned body or an entry whose body is gone; restore reports the latter as
    NotFoundError.
    """

    def __init__(self, store: KVStore, meta: MetadataStore, *, max_snapshots: int = MAX_SNAPSHOTS):
        self.store = store
        self.meta = meta
        self.max_snapshots = max(1, int(max_snapshots))

    def list(self) -> list[dict]:
        idx = self.store.get(SNAPSHOT_INDEX_KEY)
        if not isinstance(idx, list):
            return []
        return [dict(e) for e in idx if isinstance(e, dict) and e.get("id")]

    def create(self, state: LedgerState, reason: str = "manual") -> dict:
        idx = self.list()
        at = iso_now()
        snapshot_id = next_snapshot_id(idx[0]["id"] if idx else None, at)
        snapshot = {
            "id": snapshot_id,
            "at": at,
            "reason": str(reason or "manual"),
            "state": state.clone().to_document(),
        }

        self.store.put(SNAPSHOT_PREFIX + snapshot_id, snapshot)

        idx.insert(0, {"id": snapshot_id, "at": at, "reason": snapshot["reason"]})
        trimmed = idx[self.max_snapshots:]
        idx = idx[: self.max_snapshots]
        self.store.put(SNAPSHOT_INDEX_KEY, idx)

        for removed in trimmed:
            with best_effort(f"snapshot/trim {removed['id']}"):
                self.store.delete(SNAPSHOT_PREFIX + str(removed["id"]))

        logger.info("snapshot %s created (%s), %d kept", snapshot_id, snapshot["reason"], len(idx))
        return snapshot

    def ensure_daily(self, state: LedgerState) -> Optional[dict]:
        if state.is_empty():
            return None
        today = iso_today()
        if self.meta.load().get("lastSnapshotDay") == today:
            return None

        snapshot = self.create(state, DAILY_REASON)
        self.meta.try_update("snapshot/daily", lastSnapshotDay=today)
        return snapshot

    def get(self, snapshot_id: str) -> dict:
        if not any(e["id"] == snapshot_id for e in self.list()):
            raise NotFoundError(f"Snapshot {snapshot_id} not found.")
        body = self.store.get(SNAPSHOT_PREFIX + str(snapshot_id))
        if not isinstance(body, dict) or body.get("state") is None:
            raise NotFoundError(f"Snapshot {snapshot_id} not found.")
        return body

    def restore(self, snapshot_id: str) -> LedgerState:
        """Copy of the archived state. The caller installs it and saves; the index is untouched."""
        body = self.get(snapshot_id)
        return LedgerState.from_document(body["state"])

    def orphans(self) -> list[str]:
        indexed = {e["id"] for e in self.list()}
        bodies = [k[len(SNAPSHOT_PREFIX):] for k in self.store.keys(SNAPSHOT_PREFIX)]
        return [b for b in bodies if b not in indexed]
