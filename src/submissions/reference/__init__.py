"""Reference-data factory.

Provides get_reference_data() / set_reference_data() to swap implementations:
- InMemoryReferenceData for development and testing
- a catalogue-backed lookup in production
"""

from submissions.reference.fake_adapter import InMemoryReferenceData
from submissions.reference.port import ReferenceData

_current_reference_data: ReferenceData | None = None


def get_reference_data() -> ReferenceData:
    """Return the current reference-data lookup. Defaults to an empty in-memory one."""
    global _current_reference_data
    if _current_reference_data is None:
        _current_reference_data = InMemoryReferenceData()
    return _current_reference_data


def set_reference_data(reference_data: ReferenceData) -> None:
    """Override the active reference-data lookup (useful for tests)."""
    global _current_reference_data
    _current_reference_data = reference_data


def reset_reference_data() -> None:
    """Reset to default reference data."""
    global _current_reference_data
    _current_reference_data = None
