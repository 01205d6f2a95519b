from __future__ import annotations

import threading
from typing import Optional, Protocol


class KeyValueStore(Protocol):
    """String key-value storage used for identity (durable or volatile)."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def set_if_absent(self, key: str, value: str) -> str:
        """Store ``value`` unless the key exists; return the value now stored."""
        ...

    def increment(self, key: str, *, by: int = 1) -> int:
        """Add ``by`` to a decimal-string counter (missing/garbage = 0)."""
        ...

    def clear(self) -> None:
        ...


def _to_int(raw: Optional[str]) -> int:
    try:
        return int(raw) if raw is not None else 0
    except ValueError:
        return 0


class MemoryKeyValueStore:
    """Process-lifetime store. Plays the role of session-scoped storage:
    a new process is a new session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def set_if_absent(self, key: str, value: str) -> str:
        with self._lock:
            return self._data.setdefault(key, value)

    def increment(self, key: str, *, by: int = 1) -> int:
        with self._lock:
            n = _to_int(self._data.get(key)) + by
            self._data[key] = str(n)
            return n

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
