"""
Endpoint Mutex Registry

Serializes change operations per (BMC endpoint, operation category), so
each physical target can be controlled separately while unrelated
categories or different targets never block each other.

No acquire timeout: under contention a caller waits out the full
submit+poll cycle of the current holder. Waiters are not ordered.
Only the thread that acquired a key may release it.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple, Union

from bmc.models import LockCategory

logger = logging.getLogger(__name__)

LockKey = Tuple[str, str]


def _key(endpoint: str, category: Union[str, LockCategory]) -> LockKey:
    if isinstance(category, LockCategory):
        category = category.value
    return (endpoint, str(category))


class EndpointMutexRegistry:
    """Owns one lock per key, created lazily"""

    def __init__(self):
        self._lock = threading.Lock()
        self._pool: Dict[LockKey, threading.Lock] = {}
        # key -> thread ident of the current holder
        self._owners: Dict[LockKey, int] = {}

    def _mutex(self, key: LockKey) -> threading.Lock:
        with self._lock:
            mutex = self._pool.get(key)
            if mutex is None:
                mutex = threading.Lock()
                self._pool[key] = mutex
            return mutex

    def acquire(self, endpoint: str, category: Union[str, LockCategory]) -> None:
        key = _key(endpoint, category)
        logger.info(f"Before locking mutex for endpoint '{key[0]}', category '{key[1]}'")
        self._mutex(key).acquire()
        with self._lock:
            self._owners[key] = threading.get_ident()
        logger.info(f"Successfully locked mutex for endpoint '{key[0]}', category '{key[1]}'")

    def release(self, endpoint: str, category: Union[str, LockCategory]) -> None:
        key = _key(endpoint, category)
        logger.info(f"Before unlocking mutex for endpoint '{key[0]}', category '{key[1]}'")
        mutex = self._mutex(key)
        with self._lock:
            if not mutex.locked():
                raise RuntimeError(f"Mutex for endpoint '{key[0]}', category '{key[1]}' is not held")
            if self._owners.get(key) != threading.get_ident():
                raise RuntimeError(
                    f"Mutex for endpoint '{key[0]}', category '{key[1]}' is held by another thread"
                )
            del self._owners[key]
            mutex.release()
        logger.info(f"Successfully unlocked mutex for endpoint '{key[0]}', category '{key[1]}'")

    def is_held(self, endpoint: str, category: Union[str, LockCategory]) -> bool:
        return self._mutex(_key(endpoint, category)).locked()

    @contextmanager
    def hold(self, endpoint: str, category: Union[str, LockCategory]) -> Iterator[None]:
        """Hold the key for the duration of the block, released on every exit path."""
        self.acquire(endpoint, category)
        try:
            yield
        finally:
            self.release(endpoint, category)
