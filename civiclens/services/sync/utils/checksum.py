"""Checksums and per-adapter change hints.

Two different fingerprints are used on purpose:

- ``generate_checksum`` is a short, truncated digest used only as a change
  hint between syncs. It has no collision handling.
- ``content_digest`` is a full SHA-256 used as the durable manifesto
  version key.
"""
import hashlib
import json
from typing import Any, Dict

CHANGE_HINT_LENGTH = 16


def _canonical_json(record: Any) -> str:
    return json.dumps(record, sort_keys=True, separators=(',', ':'), default=str)


def generate_checksum(record: Any) -> str:
    """
    Stable, key-order-independent fingerprint of a record.

    Examples:
        >>> generate_checksum({'a': 1, 'b': 2}) == generate_checksum({'b': 2, 'a': 1})
        True
    """
    digest = hashlib.sha256(_canonical_json(record).encode('utf-8')).hexdigest()
    return digest[:CHANGE_HINT_LENGTH]


def content_digest(text: str) -> str:
    """Full SHA-256 hex digest of ``text``."""
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


class ChangeTracker:
    """
    In-memory record of the last hash seen per key.

    One tracker belongs to one adapter for the life of the process, so it is
    never shared and needs no locking.
    """

    def __init__(self):
        self._last_hash: Dict[str, str] = {}

    def has_data_changed(self, key: str, new_hash: str) -> bool:
        """
        Return False when ``new_hash`` equals the last hash seen for ``key``.

        Otherwise remember ``new_hash`` and return True.
        """
        if self._last_hash.get(key) == new_hash:
            return False
        self._last_hash[key] = new_hash
        return True

    def forget(self, key: str) -> None:
        """Drop the hint for ``key`` so the next sync re-processes it."""
        self._last_hash.pop(key, None)

    def clear(self) -> None:
        self._last_hash.clear()

    def __len__(self) -> int:
        return len(self._last_hash)
