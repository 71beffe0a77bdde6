"""Session lock factory.

Provides get_session_locks() / set_session_locks() to swap implementations:
- InProcessSessionLocks for a single process (default)
- FileSessionLocks when SUBMISSIONS_LOCK_DIR names a shared lock directory
"""

from submissions.locking.file_adapter import FileSessionLocks
from submissions.locking.local_adapter import InProcessSessionLocks
from submissions.locking.port import SessionLocks
from submissions.settings import get_settings

_current_locks: SessionLocks | None = None


def get_session_locks() -> SessionLocks:
    """Return the current lock registry."""
    global _current_locks
    if _current_locks is None:
        lock_dir = get_settings().lock_dir
        _current_locks = FileSessionLocks(lock_dir) if lock_dir else InProcessSessionLocks()
    return _current_locks


def set_session_locks(locks: SessionLocks) -> None:
    """Override the active lock registry (useful for tests)."""
    global _current_locks
    _current_locks = locks


def reset_session_locks() -> None:
    """Reset to default lock registry."""
    global _current_locks
    _current_locks = None
