from __future__ import annotations

import logging
from typing import Any

from ledger.db import KVStore
from ledger.errors import best_effort
from ledger.schema import META_KEY
from ledger.utils import random_device_id

logger = logging.getLogger(__name__)


class MetadataStore:
    """
    Bookkeeping document kept beside the ledger state:
    deviceId, stateUpdatedAt/By/Source, lastSnapshotDay, legacyImportedAt,
    lastSyncPushAt, lastSyncPullAt.
    """

    def __init__(self, store: KVStore):
        self.store = store

    def load(self) -> dict:
        meta = self.store.get(META_KEY)
        return meta if isinstance(meta, dict) else {}

    def save(self, meta: dict) -> None:
        self.store.put(META_KEY, meta)

    def ensure_device_id(self) -> str:
        meta = self.load()
        if not meta.get("deviceId"):
            meta["deviceId"] = random_device_id()
            self.save(meta)
            logger.info("generated device id %s", meta["deviceId"])
        return str(meta["deviceId"])

    def update(self, **fields: Any) -> dict:
        meta = self.load()
        meta.update(fields)
        self.save(meta)
        return meta

    def try_update(self, action: str, **fields: Any) -> None:
        with best_effort(f"meta/{action}"):
            self.update(**fields)
