"""Step submission: command and handler driving the session state machine.

One ``SubmitStep`` is one client request for one step. The handler checks
the session can accept the step, validates and merges the payload and, on
the last step, hands the merged data to the finalizer. Uploads arrive
already staged; the command carries their descriptors.
"""

import json

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from shared.lifecycle import utc_now
from submissions.definitions import get_registry
from submissions.domain import submissions
from submissions.reference import get_reference_data
from submissions.session.errors import (
    FinalizationError,
    OutOfOrderStep,
    SessionExpired,
    SessionNotFound,
    SessionOwnershipError,
    UnknownFormType,
    UnknownStep,
    ValidationFailure,
    errors_by_field,
)
from submissions.session.finalization import Finalizer
from submissions.session.merging import merge, policies_for
from submissions.session.outcome import ACCEPTED, COMPLETED, StepOutcome
from submissions.session.session import FormSession
from submissions.session.start import closed_error, load_session, open_session
from submissions.session.validation import validate_step
from submissions.settings import get_settings
from submissions.storage.stager import StagedUpload

logger = structlog.get_logger(__name__)


@submissions.command(part_of="FormSession")
class SubmitStep:
    """Submit the payload (and staged uploads) of one step of a form session."""

    session_id = Identifier(required=True)
    step_number = Integer(required=True)
    form_type = String(max_length=100)  # Only needed to start a session implicitly
    owner_ref = String(max_length=255)
    step_payload = Text()  # JSON: field → value
    uploads = Text()  # JSON: list of staged upload descriptors
    as_of = DateTime()  # Optional: defaults to now


def _seed_retained_files(steps: dict, step_number: int, definition, retained, replaced) -> dict:
    """Put files kept from a rejected final step back into that step's data."""
    step = definition.step(step_number)
    seeded = {}
    for staged in retained:
        rule = step.rule_for(staged.field_name)
        if rule is None or staged.field_name in replaced:
            continue
        descriptor = {k: v for k, v in staged.to_dict().items() if k not in ("step_number", "field")}
        if rule.kind == "file":
            seeded[staged.field_name] = descriptor
        else:
            seeded.setdefault(staged.field_name, []).append(descriptor)
    if seeded:
        steps = dict(steps)
        steps[step_number] = seeded
    return steps


@submissions.command_handler(part_of=FormSession)
class SubmitStepHandler:
    @handle(SubmitStep)
    def submit_step(self, command):
        now = command.as_of or utc_now()
        session_id = str(command.session_id)
        step_number = command.step_number
        repo = current_domain.repository_for(FormSession)
        registry = get_registry()

        session = load_session(session_id)
        if session is None:
            if not command.form_type or step_number != 1:
                return StepOutcome.failed(session_id, SessionNotFound(session_id))
            if command.form_type not in registry:
                return StepOutcome.failed(session_id, UnknownFormType(command.form_type))
            session = open_session(registry.get(command.form_type), session_id, command.owner_ref, now)
            logger.info("Form session started implicitly", session_id=session_id, form_type=command.form_type)

        if not session.is_owned_by(command.owner_ref):
            return StepOutcome.failed(session_id, SessionOwnershipError(session_id), session)
        if session.is_closed:
            return StepOutcome.failed(session_id, closed_error(session), session)
        if not get_settings().bypass_expiration and session.is_expired(now):
            released = session.expire(now)
            repo.add(session)
            logger.info("Form session expired on access", session_id=session_id, step=step_number)
            return StepOutcome.failed(session_id, SessionExpired(session_id), session, released)

        definition = registry.get(session.form_type)
        payload = json.loads(command.step_payload) if command.step_payload else {}
        uploads = [StagedUpload.from_dict(u) for u in json.loads(command.uploads or "[]")]
        retained = session.files_for_step(step_number) if definition.has_step(step_number) else []

        try:
            result = validate_step(
                definition,
                session.current_step,
                step_number,
                payload,
                uploads=uploads,
                existing_files=retained,
                reference_data=get_reference_data(),
            )
        except (UnknownStep, OutOfOrderStep) as exc:
            return StepOutcome.failed(session_id, exc, session)

        if not result.is_valid:
            session.record_validation_failure(step_number, errors_by_field(result.errors), payload, "step", now)
            repo.add(session)
            logger.info(
                "Step validation failed",
                session_id=session_id,
                step=step_number,
                error_count=len(result.errors),
            )
            return StepOutcome.failed(session_id, ValidationFailure(result.errors, step_number), session)

        base = _seed_retained_files(session.steps(), step_number, definition, retained, result.replaced)
        merged = merge(base, step_number, result.data, policies_for(definition), replace=result.replaced)

        if step_number < session.total_steps:
            discarded = session.accept_step(step_number, merged, result.uploads, result.replaced, now)
            repo.add(session)
            logger.info("Step accepted", session_id=session_id, step=step_number, total_steps=session.total_steps)
            return StepOutcome.of(session, ACCEPTED, discarded)

        return self._finalize(session, definition, merged, result, payload, now)

    def _finalize(self, session, definition, merged, result, payload, now):
        repo = current_domain.repository_for(FormSession)
        step_number = session.total_steps

        kept = [
            f.to_dict()
            for f in session.staged_files
            if not (f.step_number == step_number and f.field_name in result.replaced)
        ]
        incoming = [{**u.to_dict(), "step_number": step_number} for u in result.uploads]

        finalization = Finalizer().finalize(session, definition, merged, kept + incoming)

        if not finalization.ok:
            discarded = session.retain_uploads(step_number, result.uploads, result.replaced, now)
            error = finalization.error
            if isinstance(error, FinalizationError):
                session.record_validation_failure(
                    step_number,
                    errors_by_field(error.errors) or {"__all__": [error.message]},
                    payload,
                    "finalization",
                    now,
                )
            repo.add(session)
            return StepOutcome.failed(str(session.id), error, session, discarded)

        discarded = session.accept_step(
            step_number, merged, result.uploads, result.replaced, now, attach_uploads=False
        )
        released = session.complete(
            definition.entity_kind,
            finalization.entity_ref,
            finalization.fields,
            attributes=finalization.attributes,
            images=finalization.images,
            now=now,
        )
        repo.add(session)
        return StepOutcome.of(session, COMPLETED, discarded + released)
