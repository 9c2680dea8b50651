"""
Keyed mutual exclusion.

Locks are named by strings ("subject:<id>", "balance:<asset>:<address>").
Multiple keys are always taken in sorted order so two operations that need
overlapping key sets cannot deadlock. Acquisition is bounded by a timeout.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import Unavailable

DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLocks:
    """
    Lock manager handing out one mutex per key.

    Entries are reference counted and dropped once no holder or waiter
    remains, so the table does not grow with the number of addresses seen.

    Usage:
        locks = KeyedLocks(timeout=2.0)
        with locks.acquire("balance:0xaa..:0xbb..", "balance:0xaa..:0xcc.."):
            ...
    """

    def __init__(self, timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._entries: Dict[str, _Entry] = {}
        self._guard = threading.Lock()

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.refs += 1
            return entry

    def _checkin(self, key: str):
        with self._guard:
            entry = self._entries[key]
            entry.refs -= 1
            if entry.refs == 0:
                del self._entries[key]

    @contextmanager
    def acquire(self, *keys: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold every named lock for the duration of the block.

        Raises:
            Unavailable: if any lock cannot be taken within the timeout
        """
        timeout = self.timeout if timeout is None else timeout
        ordered = sorted(set(keys))
        held: List[Tuple[str, _Entry]] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                if not entry.lock.acquire(timeout=timeout):
                    self._checkin(key)
                    raise Unavailable(f"timed out waiting for lock {key}")
                held.append((key, entry))
            yield
        finally:
            for key, entry in reversed(held):
                entry.lock.release()
                self._checkin(key)

    def active_keys(self) -> List[str]:
        with self._guard:
            return sorted(self._entries)
