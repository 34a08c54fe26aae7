from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from threading import Lock


class KeyedLocks:
    """Process-wide mutual exclusion scoped to a key (provider id, appointment id, ...)."""

    def __init__(self) -> None:
        self._registry_lock = Lock()
        self._locks: dict[Hashable, Lock] = {}

    def _lock_for(self, key: Hashable) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield


provider_locks = KeyedLocks()
appointment_locks = KeyedLocks()
actor_locks = KeyedLocks()
