"""In-process session locks backed by ``threading.Lock``.

Suitable for a single worker process (development, tests, one uvicorn
worker). Multi-process deployments use the file adapter instead.
"""

import threading
from contextlib import contextmanager

from submissions.locking.port import SessionLocks
from submissions.session.errors import SessionConflict


class InProcessSessionLocks(SessionLocks):
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, session_id: str):
        key = str(session_id)
        # Acquire and release happen under the registry guard so an entry is
        # never dropped while another caller is about to use it
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            if not lock.acquire(blocking=False):
                raise SessionConflict(key)
        try:
            yield
        finally:
            with self._guard:
                lock.release()
                self._locks.pop(key, None)

    def is_held(self, session_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(str(session_id))
            return lock is not None and lock.locked()
