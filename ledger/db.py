from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Optional

from ledger.errors import StorageError
from ledger.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)


def _connect(db_path: Path) -> sqlite3.Connection:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=5.0, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()


class KVStore:
    """
    Durable key -> JSON document store on a single SQLite table.

    The connection is opened on first use and reused for the lifetime of the
    instance. Every write commits on its own, so each key is updated atomically;
    there are no multi-key transactions.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None

    def open(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                conn = _connect(self.db_path)
                ensure_schema(conn)
            except (sqlite3.Error, OSError) as exc:
                raise StorageError(f"Cannot open store at {self.db_path}: {exc}") from exc
            logger.debug("opened kv store %s", self.db_path)
            self._conn = conn
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def get(self, key: str) -> Any:
        conn = self.open()
        try:
            row = conn.execute("SELECT json_text FROM kv WHERE key=? LIMIT 1", (str(key),)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Read failed for {key!r}: {exc}") from exc
        if row is None:
            return None
        try:
            return json.loads(row["json_text"])
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Stored document {key!r} is not valid JSON: {exc}") from exc

    def put(self, key: str, document: Any) -> None:
        try:
            text = json.dumps(document, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Document for {key!r} is not serializable: {exc}") from exc
        conn = self.open()
        try:
            conn.execute(
                """
                INSERT INTO kv (key, json_text, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET
                    json_text = excluded.json_text,
                    updated_at = datetime('now')
                """,
                (str(key), text),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Write failed for {key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        conn = self.open()
        try:
            conn.execute("DELETE FROM kv WHERE key=?", (str(key),))
            conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Delete failed for {key!r}: {exc}") from exc

    def clear_all(self) -> None:
        conn = self.open()
        try:
            conn.execute("DELETE FROM kv;")
            conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Clear failed: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        conn = self.open()
        # LIKE treats _ and % as wildcards; filter on the Python side instead.
        try:
            rows = conn.execute("SELECT key FROM kv ORDER BY key").fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Key scan failed: {exc}") from exc
        return [str(r["key"]) for r in rows if str(r["key"]).startswith(prefix)]
