"""Per-session lock port (abstract interface).

Every mutating operation on a form session runs while holding its lock.
Acquisition never waits: a lock that is already held means another request
is working on the same session, which callers surface as ``SessionConflict``.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager


class SessionLocks(ABC):
    """Abstract per-session lock registry."""

    @abstractmethod
    def hold(self, session_id: str) -> AbstractContextManager:
        """Acquire the session's lock for the duration of a ``with`` block.

        Raises SessionConflict if the lock is already held.
        """
        ...

    @abstractmethod
    def is_held(self, session_id: str) -> bool:
        """Return True if some caller currently holds the session's lock."""
        ...
