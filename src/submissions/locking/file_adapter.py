"""Cross-process session locks using ``filelock``.

One lock file per session in a shared directory (``SUBMISSIONS_LOCK_DIR``).
Works across worker processes on one host, or across hosts when the
directory is on a shared volume that supports file locking.
"""

from contextlib import contextmanager
from pathlib import Path

import structlog
from filelock import FileLock, Timeout

from submissions.locking.port import SessionLocks
from submissions.session.errors import SessionConflict

logger = structlog.get_logger(__name__)


class FileSessionLocks(SessionLocks):
    def __init__(self, lock_dir: Path) -> None:
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def _lock_path(self, session_id: str) -> Path:
        return self.lock_dir / f"{session_id}.lock"

    @contextmanager
    def hold(self, session_id: str):
        lock = FileLock(self._lock_path(session_id), timeout=0)
        try:
            lock.acquire()
        except Timeout:
            raise SessionConflict(str(session_id)) from None
        try:
            yield
        finally:
            lock.release()

    def is_held(self, session_id: str) -> bool:
        path = self._lock_path(session_id)
        if not path.exists():
            return False
        trial = FileLock(path, timeout=0)
        try:
            trial.acquire()
        except Timeout:
            return True
        trial.release()
        return False
