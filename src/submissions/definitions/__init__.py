"""Form definition registry factory.

Provides get_registry() / set_registry() so the registry is resolved once at
startup from the configured TOML file and can be swapped in tests.
"""

from submissions.definitions.registry import FormRegistry
from submissions.settings import get_settings

_current_registry: FormRegistry | None = None


def get_registry() -> FormRegistry:
    """Return the active registry, loading the configured forms file on first use."""
    global _current_registry
    if _current_registry is None:
        _current_registry = FormRegistry.from_file(get_settings().forms_file)
    return _current_registry


def set_registry(registry: FormRegistry) -> None:
    """Override the active registry (useful for tests)."""
    global _current_registry
    _current_registry = registry


def reset_registry() -> None:
    """Reset to the configured registry."""
    global _current_registry
    _current_registry = None
