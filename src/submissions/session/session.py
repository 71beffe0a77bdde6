"""FormSession aggregate: server-side state of one staged submission.

A session accumulates validated step payloads until its last step is
finalized into a domain entity. It moves through a small state machine::

    in_progress(0) → in_progress(1) → ... → in_progress(N-1) → completed
          └──────────────┴── abandon / expiry ──┴──→ abandoned | expired

Closed sessions are immutable tombstones: they stay in the store until
their ``expires_at`` passes so that a reused session id is rejected and a
retried final step can be answered with the entity already created.
"""

import json
from datetime import timedelta
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Integer, String, Text

from shared.lifecycle import has_expired, utc_now
from submissions.domain import submissions
from submissions.session.events import (
    FormSessionAbandoned,
    FormSessionExpired,
    FormSessionStarted,
    FormStepAccepted,
    ResourceCreated,
    StepValidationFailed,
)


class SessionStatus(Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"


CLOSED_STATUSES = (
    SessionStatus.COMPLETED.value,
    SessionStatus.ABANDONED.value,
    SessionStatus.EXPIRED.value,
)


@submissions.entity(part_of="FormSession")
class StagedFile:
    step_number = Integer(required=True, min_value=1)
    field_name = String(required=True, max_length=100)
    original_name = String(max_length=255)
    content_type = String(max_length=100)
    storage_ref = String(required=True, max_length=500)
    size_bytes = Integer(default=0)
    content_hash = String(max_length=64)

    def to_dict(self) -> dict:
        return {
            "step_number": self.step_number,
            "field": self.field_name,
            "original_name": self.original_name,
            "content_type": self.content_type,
            "storage_ref": self.storage_ref,
            "size_bytes": self.size_bytes,
            "content_hash": self.content_hash,
        }


@submissions.aggregate
class FormSession:
    form_type = String(required=True, max_length=100)
    owner_ref = String(max_length=255)  # Null for guest sessions
    total_steps = Integer(required=True, min_value=1)
    current_step = Integer(default=0)
    status = String(choices=SessionStatus, default=SessionStatus.IN_PROGRESS.value)
    step_data = Text()  # JSON: {step_number: {field: value}}
    entity_ref = String(max_length=255)
    staged_files = HasMany(StagedFile)
    created_at = DateTime()
    updated_at = DateTime()
    expires_at = DateTime()  # Null while the expiration bypass is active

    @invariant.post
    def current_step_must_stay_within_bounds(self):
        if self.current_step is None or not 0 <= self.current_step <= self.total_steps:
            raise ValidationError({"current_step": [f"Current step must be between 0 and {self.total_steps}"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def start(cls, session_id, definition, owner_ref=None, now=None, ttl: timedelta | None = None):
        """Open a session at step 0. ``ttl=None`` leaves it without an expiry."""
        now = now or utc_now()
        session = cls(
            id=session_id,
            form_type=definition.form_type,
            owner_ref=owner_ref,
            total_steps=definition.total_steps,
            current_step=0,
            status=SessionStatus.IN_PROGRESS.value,
            step_data=json.dumps({}),
            created_at=now,
            updated_at=now,
            expires_at=now + ttl if ttl is not None else None,
        )
        session.raise_(
            FormSessionStarted(
                session_id=str(session.id),
                form_type=session.form_type,
                owner_ref=owner_ref,
                total_steps=session.total_steps,
                expires_at=session.expires_at,
                started_at=now,
            )
        )
        return session

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def is_expired(self, now=None) -> bool:
        return has_expired(self.expires_at, now or utc_now())

    def is_owned_by(self, owner_ref) -> bool:
        """Guest sessions accept any caller; owned sessions only their owner."""
        return self.owner_ref is None or str(self.owner_ref) == str(owner_ref)

    def steps(self) -> dict[int, dict]:
        raw = json.loads(self.step_data) if self.step_data else {}
        return {int(number): fields for number, fields in raw.items()}

    @property
    def completed_steps(self) -> list[int]:
        return sorted(self.steps())

    @property
    def next_step(self) -> int | None:
        if self.is_closed or self.current_step >= self.total_steps:
            return None
        return self.current_step + 1

    def files_for_step(self, step_number: int, field_name: str | None = None) -> list:
        return [
            f
            for f in self.staged_files
            if f.step_number == step_number and (field_name is None or f.field_name == field_name)
        ]

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def _ensure_in_progress(self):
        if self.is_closed:
            raise ValidationError({"status": [f"Session is {self.status} and can no longer change"]})

    def _stage_uploads(self, step_number, uploads, replaced_fields=()) -> list[str]:
        """Attach new uploads to a step, dropping prior files of replaced fields."""
        discarded = []
        for field_name in replaced_fields:
            for staged in self.files_for_step(step_number, field_name):
                discarded.append(staged.storage_ref)
                self.remove_staged_files(staged)

        for upload in uploads:
            self.add_staged_files(
                StagedFile(
                    step_number=step_number,
                    field_name=upload.field,
                    original_name=upload.original_name,
                    content_type=upload.content_type,
                    storage_ref=upload.storage_ref,
                    size_bytes=upload.size_bytes,
                    content_hash=upload.content_hash,
                )
            )
        return discarded

    def accept_step(
        self, step_number, merged_steps: dict, uploads=(), replaced_fields=(), now=None, attach_uploads=True
    ) -> list[str]:
        """Record a validated step and advance. Returns storage refs no longer referenced.

        A final step that completes the session in the same change passes
        ``attach_uploads=False``: its uploads were already promoted, so their
        staged refs are returned for release instead of becoming records that
        ``complete()`` would immediately remove again.
        """
        self._ensure_in_progress()
        if step_number != self.current_step + 1:
            raise ValidationError({"step_number": [f"Step {self.current_step + 1} is the next step"]})

        now = now or utc_now()
        discarded = self._stage_uploads(step_number, uploads if attach_uploads else (), replaced_fields)
        if not attach_uploads:
            discarded += [upload.storage_ref for upload in uploads]
        self.step_data = json.dumps({str(k): v for k, v in sorted(merged_steps.items())})
        self.current_step = step_number
        self.updated_at = now

        self.raise_(
            FormStepAccepted(
                session_id=str(self.id),
                form_type=self.form_type,
                step_number=step_number,
                current_step=self.current_step,
                total_steps=self.total_steps,
                field_names=json.dumps(sorted(merged_steps.get(step_number, {}))),
                file_count=len(uploads),
                accepted_at=now,
            )
        )
        return discarded

    def retain_uploads(self, step_number, uploads=(), replaced_fields=(), now=None) -> list[str]:
        """Keep uploads of a rejected final step so a corrected retry can reuse them."""
        self._ensure_in_progress()
        discarded = self._stage_uploads(step_number, uploads, replaced_fields)
        self.updated_at = now or utc_now()
        return discarded

    def record_validation_failure(self, step_number, errors: dict, payload=None, context="step", now=None):
        self.raise_(
            StepValidationFailed(
                session_id=str(self.id),
                form_type=self.form_type,
                owner_ref=self.owner_ref,
                step_number=step_number,
                failure_context=context,
                field_errors=json.dumps(errors),
                raw_payload=json.dumps(payload, default=str) if payload is not None else None,
                failed_at=now or utc_now(),
            )
        )

    def complete(self, entity_kind, entity_ref, flattened: dict, attributes=(), images=(), now=None) -> list[str]:
        """Close the session after its entity was created. Returns the staged refs to release."""
        self._ensure_in_progress()
        if self.current_step != self.total_steps:
            raise ValidationError({"current_step": ["Only a session with every step accepted can complete"]})

        now = now or utc_now()
        released = self.release_files()
        self.status = SessionStatus.COMPLETED.value
        self.entity_ref = str(entity_ref)
        self.updated_at = now

        self.raise_(
            ResourceCreated(
                session_id=str(self.id),
                form_type=self.form_type,
                entity_kind=entity_kind,
                entity_ref=str(entity_ref),
                owner_ref=self.owner_ref,
                step_data=json.dumps(flattened, default=str),
                attributes=json.dumps(list(attributes)),
                images=json.dumps(list(images)),
                created_at=now,
            )
        )
        return released

    def abandon(self, now=None) -> list[str]:
        self._ensure_in_progress()
        now = now or utc_now()
        released = self.release_files()
        self.status = SessionStatus.ABANDONED.value
        self.updated_at = now

        self.raise_(
            FormSessionAbandoned(
                session_id=str(self.id),
                form_type=self.form_type,
                current_step=self.current_step,
                abandoned_at=now,
            )
        )
        return released

    def expire(self, now=None) -> list[str]:
        self._ensure_in_progress()
        now = now or utc_now()
        released = self.release_files()
        self.status = SessionStatus.EXPIRED.value
        self.updated_at = now

        self.raise_(
            FormSessionExpired(
                session_id=str(self.id),
                form_type=self.form_type,
                current_step=self.current_step,
                expires_at=self.expires_at,
                expired_at=now,
            )
        )
        return released

    def release_files(self) -> list[str]:
        """Detach every staged file record and return their storage refs."""
        refs = []
        for staged in list(self.staged_files):
            refs.append(staged.storage_ref)
            self.remove_staged_files(staged)
        return refs
