"""In-process keyed mutual exclusion with bounded waits.

Admission attempts for the same key (a resource id, or a ``(pass_id, date)``
pair) run one at a time. Keys for a multi-key admission are always taken in
sorted order so two callers can never hold each other's keys.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from threading import Lock
from typing import Hashable, Iterable, Iterator


class LockTimeoutError(Exception):
    """Raised when a key could not be acquired within the allowed wait."""

    def __init__(self, key: Hashable, timeout_seconds: float) -> None:
        super().__init__(f"Timed out after {timeout_seconds:.2f}s waiting for lock {key!r}")
        self.key = key
        self.timeout_seconds = timeout_seconds


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = Lock()
        self.holders = 0


class KeyedLockRegistry:
    """Hands out one lock per key and forgets keys nobody is waiting on."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def _checkout(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.holders += 1
            return entry

    def _checkin(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(key, None)

    @property
    def active_keys(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, keys: Iterable[Hashable], timeout_seconds: float) -> Iterator[None]:
        """Acquire every key (sorted, deduplicated) or raise LockTimeoutError.

        The timeout bounds the total wait across all keys. On failure every
        key already taken is released before the error propagates.
        """
        ordered = sorted(set(keys), key=repr)
        deadline = time.monotonic() + timeout_seconds
        acquired: list[tuple[Hashable, _Entry]] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not entry.lock.acquire(timeout=remaining):
                    self._checkin(key, entry)
                    raise LockTimeoutError(key, timeout_seconds)
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key, entry)
