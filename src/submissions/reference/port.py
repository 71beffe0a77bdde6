"""Reference-data lookup port (abstract interface).

Referential field rules ("must be an existing attribute") and event label
resolution go through this contract, so the engine never queries catalogue
tables directly.
"""

from abc import ABC, abstractmethod


class ReferenceData(ABC):
    """Abstract reference-data lookup."""

    @abstractmethod
    def exists(self, entity_kind: str, entity_id) -> bool:
        """Return True if an entity of the given kind exists with this id."""
        ...

    @abstractmethod
    def label(self, entity_kind: str, entity_id) -> str | None:
        """Return the display name of an entity, or None if it does not exist."""
        ...
