SCHEMA_SQL = r"""
-- Key/value documents (state, meta, syncConfig, snapshotIndex, snapshot:<id>)
CREATE TABLE IF NOT EXISTS kv (
  key TEXT PRIMARY KEY,
  json_text TEXT NOT NULL,               -- JSON document
  updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

# Logical keys
STATE_KEY = "state"
META_KEY = "meta"
SYNC_CONFIG_KEY = "syncConfig"
SNAPSHOT_INDEX_KEY = "snapshotIndex"
SNAPSHOT_PREFIX = "snapshot:"
