"""In-process mutexes keyed by (product_id, warehouse_id)."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, List

from ...exceptions import RetryableInfraError

logger = logging.getLogger(__name__)


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class KeyedLockRegistry:
    """
    One lock per stock key, alive while some operation holds or waits on it.

    Callers holding several keys (transfers, multi-line sales) always take them
    in sorted order, so two operations can never wait on each other in a cycle.
    Locks are not reentrant: an operation must not re-acquire a key it holds.
    A key's lock is dropped once its last user leaves, so the registry only
    holds keys that are in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, _KeyLock] = {}

    def active_keys(self) -> List[Hashable]:
        with self._guard:
            return sorted(self._locks)

    def _checkout(self, key) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
            return entry.lock

    def _checkin(self, key) -> None:
        with self._guard:
            entry = self._locks[key]
            entry.users -= 1
            if not entry.users:
                del self._locks[key]

    def is_locked(self, key) -> bool:
        with self._guard:
            entry = self._locks.get(key)
        return entry is not None and entry.lock.locked()

    @contextmanager
    def hold(self, keys: Iterable[Hashable], timeout: float = 5.0):
        ordered: List[Hashable] = sorted(set(keys))
        checked_out: List[Hashable] = []
        acquired: List[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                if not lock.acquire(timeout=timeout):
                    logger.error(f"LOCK: timed out after {timeout}s waiting for stock key {key}")
                    raise RetryableInfraError(
                        f"Timed out waiting for stock key {key}",
                        key=list(key) if isinstance(key, tuple) else key,
                        timeout_seconds=timeout,
                    )
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in reversed(checked_out):
                self._checkin(key)


# Fallback for engine use outside an application that initialised its own registry
default_lock_registry = KeyedLockRegistry()
