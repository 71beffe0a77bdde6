"""Entity writer factory.

Provides get_entity_writer() / set_entity_writer() to swap implementations:
- FakeEntityWriter for development and testing
- the catalogue / seller repositories in production
"""

from submissions.persistence.fake_adapter import FakeEntityWriter
from submissions.persistence.port import EntityWriter

_current_writer: EntityWriter | None = None


def get_entity_writer() -> EntityWriter:
    """Return the current entity writer. Defaults to FakeEntityWriter."""
    global _current_writer
    if _current_writer is None:
        _current_writer = FakeEntityWriter()
    return _current_writer


def set_entity_writer(writer: EntityWriter) -> None:
    """Override the active entity writer (useful for tests)."""
    global _current_writer
    _current_writer = writer


def reset_entity_writer() -> None:
    """Reset to default entity writer."""
    global _current_writer
    _current_writer = None
