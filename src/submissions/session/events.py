"""Domain events for the FormSession aggregate."""

from protean.fields import DateTime, Identifier, Integer, String, Text

from submissions.domain import submissions


@submissions.event(part_of="FormSession")
class FormSessionStarted:
    """A new staged submission session was opened."""

    __version__ = 1

    session_id = Identifier(required=True)
    form_type = String(required=True)
    owner_ref = String()
    total_steps = Integer(required=True)
    expires_at = DateTime()
    started_at = DateTime(required=True)


@submissions.event(part_of="FormSession")
class FormStepAccepted:
    """A step passed validation and was merged into the session data."""

    __version__ = 1

    session_id = Identifier(required=True)
    form_type = String(required=True)
    step_number = Integer(required=True)
    current_step = Integer(required=True)
    total_steps = Integer(required=True)
    field_names = Text()  # JSON: list of accepted field paths
    file_count = Integer(default=0)
    accepted_at = DateTime(required=True)


@submissions.event(part_of="FormSession")
class StepValidationFailed:
    """A step (or the finalization of the last step) was rejected."""

    __version__ = 1

    session_id = Identifier(required=True)
    form_type = String(required=True)
    owner_ref = String()
    step_number = Integer(required=True)
    failure_context = String(required=True, max_length=20)  # "step" or "finalization"
    field_errors = Text(required=True)  # JSON: {field: [messages]}
    raw_payload = Text()  # JSON: payload as submitted
    failed_at = DateTime(required=True)


@submissions.event(part_of="FormSession")
class ResourceCreated:
    """The last step finalized the session into a persisted domain entity."""

    __version__ = 1

    session_id = Identifier(required=True)
    form_type = String(required=True)
    entity_kind = String(required=True)
    entity_ref = String(required=True)
    owner_ref = String()
    step_data = Text(required=True)  # JSON: flattened field mapping
    attributes = Text()  # JSON: list of {attribute_id, attribute_name, value_id, value_name}
    images = Text()  # JSON: list of permanent file descriptors
    created_at = DateTime(required=True)


@submissions.event(part_of="FormSession")
class FormSessionAbandoned:
    """The client gave up on the session."""

    __version__ = 1

    session_id = Identifier(required=True)
    form_type = String(required=True)
    current_step = Integer(required=True)
    abandoned_at = DateTime(required=True)


@submissions.event(part_of="FormSession")
class FormSessionExpired:
    """The session outlived its time-to-live before completion."""

    __version__ = 1

    session_id = Identifier(required=True)
    form_type = String(required=True)
    current_step = Integer(required=True)
    expires_at = DateTime()
    expired_at = DateTime(required=True)
