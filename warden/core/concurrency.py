"""Per-thread exclusive sections.

Recovery and audit runs mutate per-conversation state in place, so two steps
for the same thread id must never overlap. Different thread ids never block
each other. A thread id's lock exists only while some step holds or waits on
it; the map is empty whenever nothing runs.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from warden.core.logging import get_logger

logger = get_logger("core.concurrency")


class ThreadLocks:
    """Hands out one re-entrant lock per active conversation thread id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._users: dict[str, int] = {}

    def _checkout(self, thread_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(thread_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[thread_id] = lock
            self._users[thread_id] = self._users.get(thread_id, 0) + 1
            return lock

    def _checkin(self, thread_id: str) -> None:
        with self._guard:
            remaining = self._users[thread_id] - 1
            if remaining:
                self._users[thread_id] = remaining
            else:
                del self._users[thread_id]
                del self._locks[thread_id]

    @contextmanager
    def exclusive(self, thread_id: str) -> Iterator[None]:
        """Hold the thread's lock for the duration of the ``with`` block."""
        lock = self._checkout(thread_id)
        try:
            if not lock.acquire(blocking=False):
                logger.info("Thread %s busy, waiting for the running step to finish", thread_id)
                lock.acquire()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(thread_id)

    def __contains__(self, thread_id: object) -> bool:
        with self._guard:
            return thread_id in self._locks

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Module-level singleton shared by recovery and audit nodes
thread_locks = ThreadLocks()
