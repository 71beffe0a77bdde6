"""In-memory reference data for development and testing.

Holds ``{entity_kind: {id: label}}`` and answers lookups from it. Ids are
compared as strings so ``5`` and ``"5"`` refer to the same row, the way a
form-encoded request and a JSON request would.
"""

from submissions.reference.port import ReferenceData


class InMemoryReferenceData(ReferenceData):
    """Configurable in-memory reference data."""

    def __init__(self, entries: dict[str, dict] | None = None) -> None:
        self._entries: dict[str, dict[str, str]] = {}
        self.lookups: list[tuple[str, str]] = []
        for kind, rows in (entries or {}).items():
            for entity_id, label in rows.items():
                self.add(kind, entity_id, label)

    def add(self, entity_kind: str, entity_id, label: str | None = None) -> None:
        self._entries.setdefault(entity_kind, {})[str(entity_id)] = label or f"{entity_kind}:{entity_id}"

    def remove(self, entity_kind: str, entity_id) -> None:
        self._entries.get(entity_kind, {}).pop(str(entity_id), None)

    def exists(self, entity_kind: str, entity_id) -> bool:
        self.lookups.append((entity_kind, str(entity_id)))
        return str(entity_id) in self._entries.get(entity_kind, {})

    def label(self, entity_kind: str, entity_id) -> str | None:
        return self._entries.get(entity_kind, {}).get(str(entity_id))
