"""Per-(tenant, role) mutation locks.

Serializes role mutations inside one process so two writers cannot both pass the
level check against the same stale level. Cross-process races are caught by the
role ``version`` column instead.
"""
from __future__ import annotations
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

LockKey = Tuple[Optional[int], int]


class RoleLocks:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[LockKey, threading.Lock] = {}

    def _lock_for(self, key: LockKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, tenant_id: Optional[int], role_id: int) -> Iterator[None]:
        lock = self._lock_for((tenant_id, role_id))
        with lock:
            yield

    def discard(self, tenant_id: Optional[int], role_id: int):
        with self._guard:
            self._locks.pop((tenant_id, role_id), None)


__all__ = ['RoleLocks']
