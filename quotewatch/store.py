"""Persistence contract for watchlist state, plus an in-memory store.

The engine only needs string and string-list values; it owns its own
encoding for anything richer (see ``quotewatch.alerts.encode_rules``).
"""
from __future__ import annotations

import threading
from typing import Protocol


class PersistenceStore(Protocol):
    """Durable string-keyed key/value storage."""

    def get_string(self, key: str) -> str | None: ...

    def set_string(self, key: str, value: str) -> None: ...

    def get_string_list(self, key: str) -> list[str] | None: ...

    def set_string_list(self, key: str, values: list[str]) -> None: ...


class MemoryStore:
    """Process-local store; state is lost on exit."""

    def __init__(self) -> None:
        self._data: dict[str, str | list[str]] = {}
        self._lock = threading.Lock()

    def get_string(self, key: str) -> str | None:
        with self._lock:
            value = self._data.get(key)
        return value if isinstance(value, str) else None

    def set_string(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def get_string_list(self, key: str) -> list[str] | None:
        with self._lock:
            value = self._data.get(key)
        return list(value) if isinstance(value, list) else None

    def set_string_list(self, key: str, values: list[str]) -> None:
        with self._lock:
            self._data[key] = list(values)
