from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterator, Optional
import threading
from .errors import EvaluationTimeoutError


def shard_for(inmate_id: str) -> str:
    return f"Inmate:{inmate_id}"


def establishment_shard(establishment_id: str) -> str:
    return f"Establishment:{establishment_id}"


class _ShardLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0  # holders plus waiters


class ShardLockTable:
    """One exclusive lock per shard key, created on first use.

    Holders of different shards never contend; the table guard is only held
    while looking up, counting or dropping a shard's lock. A shard's lock is
    dropped once nobody holds or waits for it, so the table only ever holds
    shards in use.
    """

    def __init__(self):
        self._locks: Dict[str, _ShardLock] = {}
        self._guard = threading.Lock()

    def _checkout(self, shard: str) -> _ShardLock:
        with self._guard:
            entry = self._locks.get(shard)
            if entry is None:
                entry = self._locks[shard] = _ShardLock()
            entry.users += 1
            return entry

    def _checkin(self, shard: str):
        with self._guard:
            entry = self._locks[shard]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[shard]

    def acquire(self, shard: str, timeout: Optional[float] = None) -> bool:
        entry = self._checkout(shard)
        if timeout is None:
            acquired = entry.lock.acquire()
        else:
            acquired = entry.lock.acquire(timeout=max(timeout, 0))
        if not acquired:
            self._checkin(shard)
        return acquired

    def release(self, shard: str):
        with self._guard:
            entry = self._locks.get(shard)
        if entry is None:
            raise RuntimeError(f"release of unheld shard {shard}")
        entry.lock.release()
        self._checkin(shard)

    @contextmanager
    def hold(self, shard: str, timeout: Optional[float] = None) -> Iterator[str]:
        if not self.acquire(shard, timeout):
            raise EvaluationTimeoutError(f"timed out after {timeout}s waiting for {shard}")
        try:
            yield shard
        finally:
            self.release(shard)

    def is_locked(self, shard: str) -> bool:
        with self._guard:
            entry = self._locks.get(shard)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
