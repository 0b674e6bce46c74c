"""
In-process write serialization keyed by entity key.

Every write to a given key (a review id, a (review_id, task_id) pair, the
scoring config row, the active-version flag) runs under the lock for that
key, so concurrent writers race only on last-write-wins, never on an
interleaved field merge. Database unique constraints back this up across
processes.

A key's lock lives in the registry only while some thread holds or waits
for it; the last one out removes the entry.

Usage:
    from cuj_eval.services.helpers.locking import key_lock

    with key_lock(("task_evaluation", review_id, task_id)):
        ...
"""

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator

_registry_lock = threading.Lock()
# key -> [lock, number of holders and waiters]
_locks: dict[Hashable, list] = {}


def _acquire_entry(key: Hashable) -> threading.RLock:
    with _registry_lock:
        entry = _locks.get(key)
        if entry is None:
            entry = [threading.RLock(), 0]
            _locks[key] = entry
        entry[1] += 1
        return entry[0]


def _release_entry(key: Hashable) -> None:
    with _registry_lock:
        entry = _locks.get(key)
        if entry is None:
            return
        entry[1] -= 1
        if entry[1] <= 0:
            del _locks[key]


@contextmanager
def key_lock(key: Hashable) -> Iterator[None]:
    """Hold the re-entrant lock for ``key`` for the duration of the block."""
    lock = _acquire_entry(key)
    try:
        with lock:
            yield
    finally:
        _release_entry(key)


def registered_keys() -> list[Hashable]:
    """Keys whose lock is currently held or awaited."""
    with _registry_lock:
        return list(_locks)


def reset_locks() -> None:
    """Drop all registered locks (test isolation)."""
    with _registry_lock:
        _locks.clear()
