"""
Temporary plaintext cache bridging a local write and its KV visibility.

Right after ``set_secret`` the value may not be readable from KV for a few
seconds. The writer already holds the plaintext, so it is parked here and
every read checks this cache first. Entries never expire.

One instance is owned by the composition root (``xanthus.vault.build_service``).
"""

from __future__ import annotations

import threading


class TempSecretCache:
    """Account-scoped plaintext map guarded by a single lock."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def set(self, account_id: str, logical_key: str, value: str) -> None:
        with self._lock:
            self._entries[(account_id, logical_key)] = value

    def get(self, account_id: str, logical_key: str) -> tuple[str, bool]:
        """Return (value, found). value is "" on a miss."""
        with self._lock:
            value = self._entries.get((account_id, logical_key))
        if value is None:
            return "", False
        return value, True

    def clear(self, account_id: str, logical_key: str | None = None) -> None:
        """Drop one entry, or every entry for the account when logical_key is None."""
        with self._lock:
            if logical_key is not None:
                self._entries.pop((account_id, logical_key), None)
                return
            for entry in [k for k in self._entries if k[0] == account_id]:
                del self._entries[entry]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
