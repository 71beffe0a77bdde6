"""Domain persistence port (abstract interface).

The finalizer hands the fully merged submission to this contract; the
catalogue (or seller onboarding) side decides how to store it and may reject
it with business-rule errors such as a duplicate product name.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class CreationRequest:
    """Everything a finalized session contributes to the new entity."""

    entity_kind: str
    form_type: str
    session_id: str
    owner_ref: str | None = None
    fields: dict = field(default_factory=dict)
    rows: dict[str, list[dict]] = field(default_factory=dict)
    files: dict[str, list[dict]] = field(default_factory=dict)


@dataclass(frozen=True)
class EntityRef:
    """Reference to a persisted domain entity."""

    entity_kind: str
    entity_id: str

    def __str__(self) -> str:
        return f"{self.entity_kind}:{self.entity_id}"


class DomainRejection(Exception):
    """The persistence layer refused the submission (uniqueness, business rules)."""

    def __init__(self, reason: str, errors: dict[str, list[str]] | None = None):
        super().__init__(reason)
        self.reason = reason
        self.errors = errors or {}


class EntityWriter(ABC):
    """Abstract domain-entity writer.

    Creation is keyed by ``CreationRequest.session_id``. The session is only
    marked completed after the entity exists, so a crash in between leaves a
    session that will send the same request again. A repeated request for a
    session that already produced an entity must return that entity's
    reference and take the repeated request's files, not create a second one.
    """

    @abstractmethod
    def create_entity(self, request: CreationRequest) -> EntityRef:
        """Persist a new entity, raising DomainRejection if the domain refuses it."""
        ...
