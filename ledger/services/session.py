from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import httpx

from ledger.db import KVStore
from ledger.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    ShapeError,
    StorageError,
    TransportError,
    best_effort,
)
from ledger.models import LedgerState
from ledger.services.backup import export_state_json, parse_state_json, snapshot_filename
from ledger.services.commands import Command, apply_command
from ledger.services.demo_data import seed_if_empty
from ledger.services.legacy import LEGACY_STATE_KEY, LegacyArea, import_legacy_records, read_legacy_state_blob
from ledger.services.metadata import MetadataStore
from ledger.services.reports import movements_csv
from ledger.services.snapshots import SnapshotEngine
from ledger.services.state_repo import StateRepository
from ledger.services.sync import Confirm, SyncClient, SyncConfig
from ledger.utils import iso_now

logger = logging.getLogger(__name__)


@dataclass
class SyncOutcome:
    ok: bool
    status: str  # ok / cancelled / no-remote / missing-url / error
    message: str


class LedgerSession:
    """
    Holds the live ledger state for one process and exposes every operation the
    UI needs. Each mutation produces a new state, persists it, then swaps it in;
    a failed save leaves the previous state in place.
    """

    def __init__(
        self,
        db_path: Path,
        legacy_dir: Path,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        seed_demo: bool = True,
    ):
        self.store = KVStore(db_path)
        self.legacy = LegacyArea(legacy_dir)
        self.meta = MetadataStore(self.store)
        self.repo = StateRepository(self.store, self.meta)
        self.snapshots = SnapshotEngine(self.store, self.meta)
        self.sync = SyncClient(self.store, self.meta, self.repo, transport=transport)
        self.seed_demo = seed_demo
        self.state = LedgerState()
        self.load_warning: Optional[str] = None

    # Startup

    def _adopt_legacy_blob(self) -> Optional[LedgerState]:
        blob = read_legacy_state_blob(self.legacy)
        if blob is None:
            return None
        try:
            self.repo.save(blob, source="legacy-v1")
        except LedgerError as exc:
            # Keep the legacy blob as the fallback when it could not be copied over.
            logger.warning("could not persist legacy state blob: %s", exc)
            return blob
        with best_effort("legacy/cleanup"):
            self.legacy.remove(LEGACY_STATE_KEY)
        logger.info("adopted legacy whole-state document")
        return blob

    def load_or_init(self, now: Optional[datetime] = None) -> LedgerState:
        with best_effort("meta/device-id"):
            self.meta.ensure_device_id()

        try:
            state = self.repo.load()
        except (StorageError, ShapeError) as exc:
            # Leave the unreadable document in place; the next explicit change replaces it.
            logger.warning("stored state could not be loaded: %s", exc)
            self.load_warning = f"Stored data could not be read ({exc}). Restore a snapshot or import a backup."
            fallback = None
            with best_effort("legacy/read"):
                fallback = read_legacy_state_blob(self.legacy)
            self.state = fallback or LedgerState()
            return self.state

        if state is None:
            state = self._adopt_legacy_blob() or LedgerState()

        if not self.meta.load().get("legacyImportedAt") and state.is_empty():
            migrated_state, migrated = import_legacy_records(state, self.legacy)
            if migrated:
                state = migrated_state
                self.repo.save(state, source="migracion")
                self.meta.try_update("legacy/imported", legacyImportedAt=iso_now())

        if self.seed_demo and state.is_empty():
            state = seed_if_empty(state, now)
            self.repo.save(state, source="init")

        with best_effort("snapshot/daily"):
            self.snapshots.ensure_daily(state)

        self.state = state
        return state

    def import_legacy(self) -> str:
        """Manual legacy import; only into an empty ledger. Returns not-empty / no-data / imported."""
        if not self.state.is_empty():
            return "not-empty"
        migrated_state, migrated = import_legacy_records(self.state, self.legacy)
        if not migrated:
            return "no-data"
        self.repo.save(migrated_state, source="migracion-manual")
        self.state = migrated_state
        self.meta.try_update("legacy/imported", legacyImportedAt=iso_now())
        with best_effort("snapshot/daily"):
            self.snapshots.ensure_daily(self.state)
        return "imported"

    # Mutations

    def _install(self, state: LedgerState, source: Optional[str] = None) -> LedgerState:
        self.repo.save(state, source=source)
        self.state = state
        self.load_warning = None
        return state

    def apply(self, command: Command, now: Optional[datetime] = None) -> LedgerState:
        return self._install(apply_command(self.state, command, now))

    def mutate(self, fn: Callable[[LedgerState], None]) -> LedgerState:
        draft = self.state.clone()
        fn(draft)
        return self._install(draft)

    # Snapshots

    def list_snapshots(self) -> list[dict]:
        return self.snapshots.list()

    def create_snapshot(self, reason: str = "manual") -> dict:
        return self.snapshots.create(self.state, reason)

    def restore_snapshot(self, snapshot_id: str) -> LedgerState:
        return self._install(self.snapshots.restore(snapshot_id), source="snapshot-restore")

    def snapshot_json(self, snapshot_id: str) -> tuple[str, str]:
        body = self.snapshots.get(snapshot_id)
        return snapshot_filename(snapshot_id), export_state_json(LedgerState.from_document(body["state"]))

    def snapshot_summary(self) -> dict:
        idx = self.snapshots.list()
        return {
            "last_at": idx[0]["at"] if idx else None,
            "count": len(idx),
            "daily": self.meta.load().get("lastSnapshotDay"),
        }

    # Backup files

    def export_json(self) -> str:
        return export_state_json(self.state)

    def import_json(self, text: str) -> LedgerState:
        return self._install(parse_state_json(text), source="import")

    def export_csv(self) -> str:
        return movements_csv(self.state)

    def clear_all(self) -> LedgerState:
        self.store.clear_all()
        with best_effort("legacy/cleanup"):
            self.legacy.remove(LEGACY_STATE_KEY)
        logger.info("all local data cleared")
        return self._install(LedgerState(), source="clear")

    # Sync

    def get_sync_config(self) -> SyncConfig:
        return self.sync.get_config()

    def set_sync_config(self, config: SyncConfig) -> None:
        self.sync.set_config(config)

    def test_sync(self) -> SyncOutcome:
        config = self.get_sync_config()
        if not config.url:
            return SyncOutcome(False, "missing-url", "Enter the URL of the remote .json file.")
        try:
            self.sync.test_connection(config)
        except LedgerError as exc:
            return SyncOutcome(False, "error", f"Error: {exc}")
        return SyncOutcome(True, "ok", "Connection OK.")

    def run_sync(self, direction: str, confirm: Optional[Confirm] = None) -> SyncOutcome:
        config = self.get_sync_config()
        if not config.url:
            return SyncOutcome(False, "missing-url", "Enter the URL of the remote .json file.")
        try:
            if direction == "push":
                self.sync.push(config, self.state, confirm)
                return SyncOutcome(True, "ok", "Data uploaded to the remote.")
            if direction == "pull":
                self.state = self.sync.pull(config, confirm)
                self.load_warning = None
                return SyncOutcome(True, "ok", "Data downloaded from the remote.")
            raise ValueError(f"Unknown sync direction: {direction!r}")
        except ConflictError as exc:
            return SyncOutcome(False, "cancelled", str(exc))
        except NotFoundError as exc:
            return SyncOutcome(False, "no-remote", str(exc))
        except (TransportError, ShapeError) as exc:
            logger.warning("sync %s failed: %s", direction, exc)
            return SyncOutcome(False, "error", f"Error: {exc}")

    def auto_sync(self, is_online: Optional[Callable[[str], bool]] = None) -> str:
        state, status = self.sync.auto_sync_on_startup(is_online=is_online)
        if state is not None:
            self.state = state
            self.load_warning = None
        return status

    # Teardown

    def close(self) -> None:
        if self.load_warning:
            # Nothing to persist over an unreadable document.
            self.store.close()
            return
        # Final save keeps the existing write stamp so teardown never looks like a newer edit.
        with best_effort("close/final-save"):
            meta = self.meta.load()
            self.repo.save(
                self.state,
                updated_at=meta.get("stateUpdatedAt"),
                updated_by=meta.get("stateUpdatedBy"),
                source=meta.get("stateUpdatedSource"),
            )
        self.store.close()
