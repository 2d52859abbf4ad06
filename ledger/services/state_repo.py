from __future__ import annotations

import logging
from typing import Optional

from ledger.db import KVStore
from ledger.errors import best_effort
from ledger.models import LedgerState
from ledger.schema import STATE_KEY
from ledger.services.metadata import MetadataStore
from ledger.utils import iso_now, random_device_id

logger = logging.getLogger(__name__)


class StateRepository:
    def __init__(self, store: KVStore, meta: MetadataStore):
        self.store = store
        self.meta = meta

    def load(self) -> Optional[LedgerState]:
        doc = self.store.get(STATE_KEY)
        if doc is None:
            return None
        return LedgerState.from_document(doc)

    def save(
        self,
        state: LedgerState,
        *,
        updated_at: Optional[str] = None,
        updated_by: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        """
        Write the full state document, then stamp metadata.
        A failed state write raises StorageError; a failed metadata write is only logged.
        """
        self.store.put(STATE_KEY, state.to_document())

        with best_effort("save/meta"):
            meta = self.meta.load()
            meta["deviceId"] = meta.get("deviceId") or random_device_id()
            meta["stateUpdatedAt"] = updated_at or iso_now()
            meta["stateUpdatedBy"] = updated_by or meta["deviceId"]
            meta["stateUpdatedSource"] = source or "local"
            self.meta.save(meta)
        logger.debug("state saved (source=%s)", source or "local")
