"""Configurable fake entity writer for development and testing.

Stores created entities in memory and enforces one business rule real
catalogues have: an entity ``name`` (or ``business_name``/``title``) must be
unique within its kind. It can also be told to reject every request, which
simulates a domain-layer outage or policy refusal.
"""

from dataclasses import replace
from uuid import uuid4

from submissions.persistence.port import CreationRequest, DomainRejection, EntityRef, EntityWriter

_NAME_FIELDS = ("name", "business_name", "title")


class FakeEntityWriter(EntityWriter):
    """Configurable fake entity writer."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Entity rejected by domain rules"
        self.calls: list[CreationRequest] = []
        self.entities: dict[str, CreationRequest] = {}
        self.by_session: dict[str, EntityRef] = {}

    def configure(self, should_succeed: bool, failure_reason: str = "Entity rejected by domain rules") -> None:
        """Configure writer behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def _name_of(self, request: CreationRequest) -> tuple[str, str] | None:
        for name_field in _NAME_FIELDS:
            if request.fields.get(name_field):
                return name_field, str(request.fields[name_field]).strip().lower()
        return None

    def create_entity(self, request: CreationRequest) -> EntityRef:
        self.calls.append(request)

        existing_ref = self.by_session.get(request.session_id)
        if existing_ref is not None:
            self.entities[existing_ref.entity_id] = replace(self.entities[existing_ref.entity_id], files=request.files)
            return existing_ref

        if not self.should_succeed:
            raise DomainRejection(self.failure_reason)

        name = self._name_of(request)
        if name is not None:
            for existing in self.entities.values():
                if existing.entity_kind == request.entity_kind and self._name_of(existing) == name:
                    raise DomainRejection(
                        f"A {request.entity_kind} with this {name[0]} already exists",
                        {name[0]: [f"The {name[0]} has already been taken."]},
                    )

        ref = EntityRef(entity_kind=request.entity_kind, entity_id=f"{request.entity_kind}_{uuid4().hex[:12]}")
        self.entities[ref.entity_id] = request
        self.by_session[request.session_id] = ref
        return ref
