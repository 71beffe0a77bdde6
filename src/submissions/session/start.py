"""Session start: command and handler for opening a form session.

Clients either let the server allocate the session id or supply their own
UUID (so an upload-heavy client can name the session before its first
request). A supplied id that already belongs to a session is never reused.
"""

from uuid import UUID, uuid4

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from shared.lifecycle import utc_now
from submissions.definitions import get_registry
from submissions.domain import submissions
from submissions.session.errors import (
    InvalidSessionId,
    SessionClosed,
    SessionConflict,
    SessionExpired,
    UnknownFormType,
)
from submissions.session.outcome import STARTED, StepOutcome
from submissions.session.session import FormSession, SessionStatus
from submissions.settings import get_settings

logger = structlog.get_logger(__name__)


def normalize_session_id(session_id) -> str:
    """Return the canonical form of a client-supplied id, or raise InvalidSessionId."""
    try:
        return str(UUID(str(session_id)))
    except (TypeError, ValueError):
        raise InvalidSessionId(str(session_id)) from None


def load_session(session_id):
    """Fetch a session, or None if the store has no row for it."""
    try:
        return current_domain.repository_for(FormSession).get(session_id)
    except ObjectNotFoundError:
        return None


def closed_error(session):
    """Error for an operation on a closed session. Expired sessions stay expired."""
    session_id = str(session.id)
    if session.status == SessionStatus.EXPIRED.value:
        return SessionExpired(session_id)
    return SessionClosed(session_id, session.status, session.entity_ref)


def open_session(definition, session_id, owner_ref=None, now=None) -> FormSession:
    """Create a new in-progress session, honouring the expiration bypass."""
    ttl = None if get_settings().bypass_expiration else definition.ttl
    return FormSession.start(session_id, definition, owner_ref=owner_ref, now=now, ttl=ttl)


@submissions.command(part_of="FormSession")
class StartFormSession:
    """Open a staged submission session for a form type."""

    form_type = String(required=True, max_length=100)
    owner_ref = String(max_length=255)
    session_id = Identifier()  # Optional: client-supplied UUID
    as_of = DateTime()  # Optional: defaults to now


@submissions.command_handler(part_of=FormSession)
class StartFormSessionHandler:
    @handle(StartFormSession)
    def start_form_session(self, command):
        registry = get_registry()
        session_id = normalize_session_id(command.session_id) if command.session_id else str(uuid4())

        if command.form_type not in registry:
            return StepOutcome.failed(session_id, UnknownFormType(command.form_type))
        definition = registry.get(command.form_type)

        existing = load_session(session_id)
        if existing is not None:
            if existing.is_closed:
                return StepOutcome.failed(
                    session_id, SessionClosed(session_id, existing.status, existing.entity_ref), existing
                )
            return StepOutcome.failed(
                session_id, SessionConflict(session_id, "A session with this id is already in progress"), existing
            )

        session = open_session(definition, session_id, command.owner_ref, command.as_of or utc_now())
        current_domain.repository_for(FormSession).add(session)

        logger.info(
            "Form session started",
            session_id=session_id,
            form_type=definition.form_type,
            owner_ref=command.owner_ref,
            expires_at=str(session.expires_at) if session.expires_at else None,
        )
        return StepOutcome.of(session, STARTED)
