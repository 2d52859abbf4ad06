from __future__ import annotations

import json

from ledger.errors import ShapeError
from ledger.models import LedgerState


def export_state_json(state: LedgerState) -> str:
    return json.dumps(state.to_document(), indent=2, ensure_ascii=False)


def parse_state_json(text: str) -> LedgerState:
    """Parse an exported backup; the four collections must be present as arrays."""
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        raise ShapeError(f"Invalid backup file: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ShapeError("Invalid backup file.")
    return LedgerState.from_document(parsed)


def snapshot_filename(snapshot_id: str) -> str:
    return f"ms_finanzas_snapshot_{snapshot_id.replace(':', '-')}.json"
