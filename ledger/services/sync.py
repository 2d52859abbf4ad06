from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

import httpx

from ledger.db import KVStore
from ledger.errors import ConflictError, NotFoundError, ShapeError, TransportError
from ledger.models import LedgerState, is_valid_state_shape
from ledger.schema import SYNC_CONFIG_KEY
from ledger.services.metadata import MetadataStore
from ledger.services.state_repo import StateRepository
from ledger.utils import is_newer, iso_now, parse_iso

logger = logging.getLogger(__name__)

APP_TAG = "ms-finanzas"
FORMAT_VERSION = 1

PUSH_CONFLICT_MESSAGE = "The remote looks newer than this device. Overwrite the remote with local data?"
PULL_CONFLICT_MESSAGE = "This device looks newer than the remote. Replace local data with the remote copy?"

Confirm = Callable[[str], bool]


@dataclass
class SyncConfig:
    url: str = ""
    user: str = ""
    password: str = ""
    auto: bool = False

    @classmethod
    def from_document(cls, doc: Any) -> "SyncConfig":
        if not isinstance(doc, dict):
            return cls()
        return cls(
            url=doc["url"].strip() if isinstance(doc.get("url"), str) else "",
            user=doc["user"] if isinstance(doc.get("user"), str) else "",
            password=doc["pass"] if isinstance(doc.get("pass"), str) else "",
            auto=bool(doc.get("auto")),
        )

    def to_document(self) -> dict:
        return {"url": self.url.strip(), "user": self.user.strip(), "pass": self.password, "auto": bool(self.auto)}


def needs_confirmation(incoming_at: Any, current_at: Any) -> bool:
    """Overwriting `current` with `incoming` is gated only when both stamps exist and current is strictly newer."""
    if parse_iso(incoming_at) is None or parse_iso(current_at) is None:
        return False
    return is_newer(current_at, incoming_at)


def remote_updated_at(remote: Optional[dict]) -> Optional[str]:
    if not isinstance(remote, dict):
        return None
    nested = remote.get("meta")
    return remote.get("updatedAt") or (nested.get("updatedAt") if isinstance(nested, dict) else None)


def network_available(url: str, timeout: float = 2.0) -> bool:
    parts = urlsplit(url)
    if not parts.hostname:
        return False
    port = parts.port or (443 if parts.scheme == "https" else 80)
    try:
        with socket.create_connection((parts.hostname, port), timeout=timeout):
            return True
    except OSError:
        return False


class SyncClient:
    """
    Whole-document sync against one URL: GET fetches the remote copy, PUT
    replaces it. No merge; conflicts are decided on the last-write timestamps
    with a confirmation callback for overwrites that could lose newer work.
    """

    def __init__(
        self,
        store: KVStore,
        meta: MetadataStore,
        repo: StateRepository,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.store = store
        self.meta = meta
        self.repo = repo
        self.transport = transport

    # Config

    def get_config(self) -> SyncConfig:
        return SyncConfig.from_document(self.store.get(SYNC_CONFIG_KEY))

    def set_config(self, config: SyncConfig) -> None:
        self.store.put(SYNC_CONFIG_KEY, config.to_document())

    # Transport

    def _client(self, config: SyncConfig) -> httpx.Client:
        auth = None
        if config.user or config.password:
            auth = httpx.BasicAuth(config.user, config.password)
        return httpx.Client(auth=auth, transport=self.transport, headers={"Cache-Control": "no-store"})

    def fetch_remote(self, config: SyncConfig) -> Optional[dict]:
        try:
            with self._client(config) as client:
                res = client.get(config.url)
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc

        if res.status_code == 404:
            return None
        if not res.is_success:
            raise TransportError(f"HTTP {res.status_code}")
        try:
            parsed = json.loads(res.text)
        except ValueError as exc:
            raise ShapeError("Invalid remote response.") from exc
        if not isinstance(parsed, dict):
            raise ShapeError("Invalid remote response.")
        return parsed

    def replace_remote(self, config: SyncConfig, payload: dict) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        try:
            with self._client(config) as client:
                res = client.put(
                    config.url,
                    content=body,
                    headers={"Content-Type": "application/json; charset=utf-8"},
                )
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        if not res.is_success:
            raise TransportError(f"HTTP {res.status_code}")

    # Operations

    def test_connection(self, config: SyncConfig) -> None:
        self.fetch_remote(config)

    def push(self, config: SyncConfig, state: LedgerState, confirm: Optional[Confirm] = None) -> dict:
        remote = self.fetch_remote(config)
        meta = self.meta.load()
        local_at = meta.get("stateUpdatedAt") or None

        if needs_confirmation(local_at, remote_updated_at(remote)):
            if confirm is None or not confirm(PUSH_CONFLICT_MESSAGE):
                raise ConflictError("Cancelled (remote is newer).")

        device_id = meta.get("deviceId") or self.meta.ensure_device_id()
        payload = {
            "app": APP_TAG,
            "format": FORMAT_VERSION,
            "updatedAt": local_at or iso_now(),
            "updatedBy": device_id,
            "state": state.to_document(),
        }
        self.replace_remote(config, payload)
        self.meta.try_update("sync/push", lastSyncPushAt=iso_now())
        logger.info("pushed state to %s (updatedAt=%s)", config.url, payload["updatedAt"])
        return payload

    def _validated_remote_state(self, remote: Optional[dict]) -> LedgerState:
        if not remote or not remote.get("state"):
            raise NotFoundError("No valid remote document found (or it is empty).")
        if not is_valid_state_shape(remote["state"]):
            raise ShapeError("The remote document does not contain the expected structure.")
        return LedgerState.from_document(remote["state"])

    def _install(self, remote: dict, state: LedgerState, source: str) -> None:
        meta = self.meta.load()
        self.repo.save(
            state,
            source=source,
            updated_at=remote.get("updatedAt") or iso_now(),
            updated_by=remote.get("updatedBy") or meta.get("deviceId"),
        )
        self.meta.try_update("sync/pull", lastSyncPullAt=iso_now())

    def pull(self, config: SyncConfig, confirm: Optional[Confirm] = None) -> LedgerState:
        remote = self.fetch_remote(config)
        state = self._validated_remote_state(remote)

        local_at = self.meta.load().get("stateUpdatedAt") or None
        if needs_confirmation(remote.get("updatedAt"), local_at):
            if confirm is None or not confirm(PULL_CONFLICT_MESSAGE):
                raise ConflictError("Cancelled (local is newer).")

        self._install(remote, state, "sync-pull")
        logger.info("pulled state from %s (updatedAt=%s)", config.url, remote.get("updatedAt"))
        return state

    def auto_sync_on_startup(
        self,
        config: Optional[SyncConfig] = None,
        is_online: Optional[Callable[[str], bool]] = None,
    ) -> tuple[Optional[LedgerState], str]:
        """
        Non-interactive pull at boot when the remote is strictly newer.
        Never raises; the outcome is reported as a status string.
        """
        config = config or self.get_config()
        check = is_online or network_available
        try:
            if not (config.auto and config.url and check(config.url)):
                return None, "Ready"
            remote = self.fetch_remote(config)
            if not (remote and is_valid_state_shape(remote.get("state"))):
                return None, "Auto-sync: no changes"
            local_at = self.meta.load().get("stateUpdatedAt") or None
            if not is_newer(remote.get("updatedAt"), local_at):
                return None, "Auto-sync: no changes"
            state = LedgerState.from_document(remote["state"])
            self._install(remote, state, "sync-auto-pull")
            return state, "Auto-sync: remote data applied"
        except Exception as exc:
            logger.warning("auto-sync failed: %s", exc)
            return None, "Ready"
