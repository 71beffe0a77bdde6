"""Finalization: turns a fully validated session into a persisted domain entity.

The finalizer runs inside the final step's command handler, under the
session lock. It either creates the entity and returns its reference, or
leaves every external system as it found it:

1. Flatten the per-step data and resolve display labels for referenced ids.
2. Promote every staged file to permanent storage (all or nothing).
3. Ask the entity-persistence port to create the entity. If the domain
   rejects it, the promoted copies are deleted again.

Creation is idempotent per session (see ``EntityWriter``). If the session
fails to commit after the entity was created, the orchestrator deletes the
promoted copies of that attempt. The retry promotes again and receives the
same entity back with the new copies attached.

Staged blobs are never touched here; the session decides what happens to
them once the outcome is known.
"""

from dataclasses import dataclass, field

import structlog

from submissions.definitions.registry import FormTypeDefinition
from submissions.persistence import get_entity_writer
from submissions.persistence.port import CreationRequest, DomainRejection, EntityWriter
from submissions.reference import get_reference_data
from submissions.reference.port import ReferenceData
from submissions.session.errors import FieldError, FinalizationError, StorageError, SubmissionError
from submissions.session.merging import flatten, policies_for
from submissions.storage.stager import FileStager

logger = structlog.get_logger(__name__)


@dataclass
class FinalizationResult:
    entity_ref: str | None = None
    error: SubmissionError | None = None
    fields: dict = field(default_factory=dict)
    attributes: list[dict] = field(default_factory=list)
    images: list[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and self.entity_ref is not None


def _label_key(column: str) -> str:
    return f"{column.removesuffix('_id')}_name"


class Finalizer:
    def __init__(
        self,
        writer: EntityWriter | None = None,
        reference_data: ReferenceData | None = None,
        stager: FileStager | None = None,
    ) -> None:
        self.writer = writer or get_entity_writer()
        self.reference_data = reference_data or get_reference_data()
        self.stager = stager or FileStager()

    # -------------------------------------------------------------------
    # Request assembly
    # -------------------------------------------------------------------
    def _labelled_rows(self, rule, rows) -> list[dict]:
        labelled = []
        for row in rows or []:
            row = dict(row)
            for column in rule.columns:
                if column.exists and row.get(column.path) is not None:
                    row[_label_key(column.path)] = self.reference_data.label(column.exists, row[column.path])
            labelled.append(row)
        return labelled

    def build_request(self, session, definition: FormTypeDefinition, merged_steps: dict, promoted_files: dict):
        rules = definition.rules()
        flattened = flatten(merged_steps, policies_for(definition))

        fields: dict = {}
        rows: dict = {}
        for path, value in flattened.items():
            rule = rules.get(path)
            if rule is None or rule.is_file:
                continue
            if rule.kind == "rows":
                rows[path] = self._labelled_rows(rule, value)
                continue
            fields[path] = value
            if rule.exists and value is not None:
                fields[_label_key(path)] = self.reference_data.label(rule.exists, value)

        request = CreationRequest(
            entity_kind=definition.entity_kind,
            form_type=definition.form_type,
            session_id=str(session.id),
            owner_ref=session.owner_ref,
            fields=fields,
            rows=rows,
            files=promoted_files,
        )
        return request, flattened

    # -------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------
    def _promote(self, files) -> tuple[dict[str, list[dict]], list[str]]:
        """Promote staged files. Returns (field → permanent descriptors, permanent refs)."""
        promoted = self.stager.promote_all([f["storage_ref"] for f in files])
        by_field: dict[str, list[dict]] = {}
        for staged in files:
            by_field.setdefault(staged["field"], []).append(
                {
                    "original_name": staged["original_name"],
                    "content_type": staged["content_type"],
                    "size_bytes": staged["size_bytes"],
                    "content_hash": staged["content_hash"],
                    "storage_ref": promoted[staged["storage_ref"]],
                }
            )
        return by_field, list(promoted.values())

    def finalize(self, session, definition: FormTypeDefinition, merged_steps: dict, files) -> FinalizationResult:
        """Create the entity for ``session`` from ``merged_steps`` and the staged ``files``."""
        files = list(files)
        try:
            promoted_files, permanent_refs = self._promote(files)
        except StorageError as exc:
            logger.warning("File promotion failed", session_id=str(session.id), error=exc.message)
            return FinalizationResult(error=exc)

        try:
            request, flattened = self.build_request(session, definition, merged_steps, promoted_files)
            entity_ref = self.writer.create_entity(request)
        except DomainRejection as exc:
            self.stager.release_quietly(permanent_refs)
            errors = [FieldError(name, message) for name, messages in exc.errors.items() for message in messages]
            logger.info(
                "Entity creation rejected",
                session_id=str(session.id),
                form_type=definition.form_type,
                reason=exc.reason,
            )
            return FinalizationResult(error=FinalizationError(exc.reason, errors), fields=flattened)
        except Exception:
            self.stager.release_quietly(permanent_refs)
            raise

        for name, descriptors in promoted_files.items():
            flattened[name] = descriptors
        attributes = [row for labelled in request.rows.values() for row in labelled]
        images = [{"field": name, **d} for name, descriptors in promoted_files.items() for d in descriptors]

        logger.info(
            "Entity created from form session",
            session_id=str(session.id),
            form_type=definition.form_type,
            entity_ref=str(entity_ref),
            file_count=len(images),
        )
        return FinalizationResult(
            entity_ref=str(entity_ref),
            fields=flattened,
            attributes=attributes,
            images=images,
        )
