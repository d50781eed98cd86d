"""
Per-key mutual exclusion for webhook workers.

Webhook requests run concurrently in the FastAPI threadpool. Two deliveries
touching the same provider subscription must not interleave their
read-modify-write, so handlers hold the lock for that subscription id while
they write. Locks are dropped once no worker references them.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
    """A registry of reference-counted locks, one per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, waiters]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1

        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by every request handled by this process
subscription_locks = KeyedLock()
