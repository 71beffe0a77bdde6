"""Submission timeline: append-only audit trail of every form session event."""

import json
import uuid

from protean.core.projector import on
from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from submissions.domain import submissions
from submissions.session.events import (
    FormSessionAbandoned,
    FormSessionExpired,
    FormSessionStarted,
    FormStepAccepted,
    ResourceCreated,
    StepValidationFailed,
)
from submissions.session.session import FormSession


@submissions.projection
class SubmissionTimeline:
    entry_id = Identifier(identifier=True, required=True)
    session_id = Identifier(required=True)
    form_type = String(required=True)
    event_type = String(required=True)
    step_number = Integer()
    description = String(required=True, max_length=500)
    occurred_at = DateTime(required=True)
    event_metadata = Text()  # JSON: extra event data


def _add_entry(event, event_type, description, occurred_at, step_number=None, event_metadata=None):
    current_domain.repository_for(SubmissionTimeline).add(
        SubmissionTimeline(
            entry_id=str(uuid.uuid4()),
            session_id=event.session_id,
            form_type=event.form_type,
            event_type=event_type,
            step_number=step_number,
            description=description,
            occurred_at=occurred_at,
            event_metadata=event_metadata,
        )
    )


@submissions.projector(projector_for=SubmissionTimeline, aggregates=[FormSession])
class SubmissionTimelineProjector:
    @on(FormSessionStarted)
    def on_started(self, event):
        _add_entry(
            event,
            "FormSessionStarted",
            f"Session started ({event.total_steps} steps)",
            event.started_at,
            event_metadata=json.dumps({"owner_ref": event.owner_ref}),
        )

    @on(FormStepAccepted)
    def on_step_accepted(self, event):
        _add_entry(
            event,
            "FormStepAccepted",
            f"Step {event.step_number} of {event.total_steps} accepted",
            event.accepted_at,
            step_number=event.step_number,
            event_metadata=json.dumps({"fields": json.loads(event.field_names or "[]"), "files": event.file_count}),
        )

    @on(StepValidationFailed)
    def on_validation_failed(self, event):
        _add_entry(
            event,
            "StepValidationFailed",
            f"Step {event.step_number} rejected during {event.failure_context}",
            event.failed_at,
            step_number=event.step_number,
            event_metadata=event.field_errors,
        )

    @on(ResourceCreated)
    def on_resource_created(self, event):
        _add_entry(
            event,
            "ResourceCreated",
            f"Created {event.entity_kind} {event.entity_ref}",
            event.created_at,
            event_metadata=json.dumps({"entity_ref": event.entity_ref}),
        )

    @on(FormSessionAbandoned)
    def on_abandoned(self, event):
        _add_entry(event, "FormSessionAbandoned", "Session abandoned", event.abandoned_at, event.current_step)

    @on(FormSessionExpired)
    def on_expired(self, event):
        _add_entry(event, "FormSessionExpired", "Session expired", event.expired_at, event.current_step)
