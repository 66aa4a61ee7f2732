"""An in-memory key/value store with expiring keys, string counters and hashes."""

from __future__ import annotations

import threading
import time as _time
from typing import Callable, Dict, Optional, Union

_Value = Union[str, Dict[str, str]]


class KeyValueStore:
    """A small cache holding string values and hashes, each key with an optional TTL.

    The ``lock`` attribute is re-entrant, so callers may hold it around a
    sequence of operations that must run as one atomic step.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or _time.time
        self._data: Dict[str, _Value] = {}
        self._expires: Dict[str, float] = {}
        self.lock = threading.RLock()

    def time(self) -> float:
        """Return the store's current time in seconds."""
        return self._clock()

    def _live(self, key: str) -> Optional[_Value]:
        deadline = self._expires.get(key)
        if deadline is not None and deadline <= self._clock():
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return self._data.get(key)

    def _string(self, key: str) -> Optional[str]:
        value = self._live(key)
        if isinstance(value, dict):
            raise TypeError(f"key {key!r} holds a hash, not a string")
        return value

    def _hash(self, key: str) -> Optional[Dict[str, str]]:
        value = self._live(key)
        if value is not None and not isinstance(value, dict):
            raise TypeError(f"key {key!r} holds a string, not a hash")
        return value

    def get(self, key: str) -> Optional[str]:
        """Return the string stored at ``key``, or None when it is absent."""
        with self.lock:
            return self._string(key)

    def set(self, key: str, value: object, ttl: Optional[float] = None) -> None:
        """Store ``value`` as a string; a positive ``ttl`` makes it expire."""
        if ttl is not None and ttl < 0:
            raise ValueError("ttl must not be negative")
        with self.lock:
            self._data[key] = str(value)
            if ttl:
                self._expires[key] = self._clock() + ttl
            else:
                self._expires.pop(key, None)

    def delete(self, key: str) -> bool:
        """Remove ``key``; return whether it existed."""
        with self.lock:
            existed = self._live(key) is not None
            self._data.pop(key, None)
            self._expires.pop(key, None)
            return existed

    def exists(self, key: str) -> bool:
        with self.lock:
            return self._live(key) is not None

    def expire(self, key: str, seconds: float) -> bool:
        """Set a TTL on an existing key; a non-positive TTL removes the key."""
        with self.lock:
            if self._live(key) is None:
                return False
            if seconds <= 0:
                self.delete(key)
            else:
                self._expires[key] = self._clock() + seconds
            return True

    def incr_by(self, key: str, amount: int) -> int:
        """Add ``amount`` to the integer at ``key`` (absent counts as 0)."""
        with self.lock:
            current = self._string(key)
            if current is None:
                base = 0
            else:
                try:
                    base = int(current)
                except ValueError:
                    raise ValueError(f"value at {key!r} is not an integer") from None
            result = base + amount
            self._data[key] = str(result)
            return result

    def decr_by(self, key: str, amount: int) -> int:
        """Subtract ``amount`` from the integer at ``key``."""
        return self.incr_by(key, -amount)

    def hget(self, key: str, field: str) -> Optional[str]:
        with self.lock:
            table = self._hash(key)
            return None if table is None else table.get(field)

    def hset(self, key: str, field: str, value: object) -> int:
        """Set a hash field; return 1 if the field is new, else 0."""
        with self.lock:
            table = self._hash(key)
            if table is None:
                table = {}
                self._data[key] = table
            is_new = field not in table
            table[field] = str(value)
            return int(is_new)