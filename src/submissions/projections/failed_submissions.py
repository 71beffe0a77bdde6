"""FailedSubmission: diagnostics for every rejected step, with the raw payload."""

import uuid

from protean.core.projector import on
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from submissions.domain import submissions
from submissions.session.events import ResourceCreated, StepValidationFailed
from submissions.session.session import FormSession


@submissions.projection
class FailedSubmission:
    failure_id = Identifier(identifier=True, required=True)
    session_id = Identifier(required=True)
    form_type = String(required=True)
    owner_ref = String()
    step_number = Integer(required=True)
    failure_context = String(required=True)
    field_errors = Text(required=True)  # JSON: {field: [messages]}
    raw_payload = Text()
    resolved = Boolean(default=False)
    failed_at = DateTime()


@submissions.projector(projector_for=FailedSubmission, aggregates=[FormSession])
class FailedSubmissionProjector:
    @on(StepValidationFailed)
    def on_validation_failed(self, event):
        current_domain.repository_for(FailedSubmission).add(
            FailedSubmission(
                failure_id=str(uuid.uuid4()),
                session_id=event.session_id,
                form_type=event.form_type,
                owner_ref=event.owner_ref,
                step_number=event.step_number,
                failure_context=event.failure_context,
                field_errors=event.field_errors,
                raw_payload=event.raw_payload,
                failed_at=event.failed_at,
            )
        )

    @on(ResourceCreated)
    def on_resource_created(self, event):
        """A session that eventually completed resolves its earlier failures."""
        repo = current_domain.repository_for(FailedSubmission)
        for failure in repo._dao.query.filter(session_id=event.session_id).all().items:
            failure.resolved = True
            repo.add(failure)
