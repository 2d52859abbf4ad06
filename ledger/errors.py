"""Error types shared by the persistence, snapshot and sync layers.

Hard errors propagate to the caller and abort the operation. The soft tier is
`best_effort`: bookkeeping steps (metadata, legacy cleanup, snapshot trimming)
run inside it and a `StorageError` there is logged instead of raised.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    pass


class StorageError(LedgerError):
    """The KV engine failed to read, write or (de)serialize a document."""


class ShapeError(LedgerError, ValueError):
    """A loaded, imported or remote document fails structural validation."""


class NotFoundError(LedgerError, LookupError):
    """A snapshot id or the remote document does not exist."""


class ConflictError(LedgerError):
    """A confirmation-gated overwrite was declined."""


class TransportError(LedgerError):
    """Non-success HTTP status or network failure talking to the remote."""


@contextmanager
def best_effort(action: str):
    try:
        yield
    except StorageError as exc:
        logger.warning("best-effort step failed (%s): %s", action, exc)
