"""
stakeledger/protocol/journal.py

Undo journal for in-place ledger mutations.

Positions and pool states are mutable dataclasses handed out by their
stores. While a transaction is open, the first time a record is handed out
a copy of it is saved; rolling back puts the copies back. An operation
pays for the records it touches, not for the size of the ledger.

Usage:
    journal = Journal()
    journal.begin()
    journal.remember("users", users, key)   # before mutating users[key]
    ...
    journal.rollback()                      # or journal.commit()
"""

import copy
import logging
from typing import Any, Dict, Hashable, Optional, Tuple

logger = logging.getLogger("stakeledger.protocol.journal")

_MISSING = object()


class Journal:
    """Before-images of records touched inside one transaction."""

    def __init__(self):
        self._saved: Optional[Dict[Tuple[str, Hashable], Tuple[dict, Any]]] = None

    @property
    def active(self) -> bool:
        return self._saved is not None

    def begin(self) -> None:
        if self._saved is not None:
            raise RuntimeError("Journal already open")
        self._saved = {}

    def remember(self, name: str, table: Dict[Hashable, Any], key: Hashable) -> None:
        """Save `table[key]` as it was before this transaction first touched it."""
        if self._saved is None or (name, key) in self._saved:
            return
        value = table.get(key, _MISSING)
        if value is not _MISSING:
            value = copy.copy(value)
        self._saved[(name, key)] = (table, value)

    def commit(self) -> None:
        self._saved = None

    def rollback(self) -> None:
        saved, self._saved = self._saved or {}, None
        for (name, key), (table, value) in saved.items():
            if value is _MISSING:
                table.pop(key, None)
            else:
                table[key] = value
        if saved:
            logger.debug(f"Rolled back {len(saved)} journaled records")
