"""Session abandonment: the client explicitly gives up on a form session."""

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from shared.lifecycle import utc_now
from submissions.domain import submissions
from submissions.session.errors import SessionExpired, SessionNotFound, SessionOwnershipError
from submissions.session.outcome import ABANDONED, StepOutcome
from submissions.session.session import FormSession
from submissions.session.start import closed_error, load_session
from submissions.settings import get_settings

logger = structlog.get_logger(__name__)


@submissions.command(part_of="FormSession")
class AbandonFormSession:
    session_id = Identifier(required=True)
    owner_ref = String(max_length=255)
    as_of = DateTime()


@submissions.command_handler(part_of=FormSession)
class AbandonFormSessionHandler:
    @handle(AbandonFormSession)
    def abandon_form_session(self, command):
        now = command.as_of or utc_now()
        session_id = str(command.session_id)
        repo = current_domain.repository_for(FormSession)

        session = load_session(session_id)
        if session is None:
            return StepOutcome.failed(session_id, SessionNotFound(session_id))
        if not session.is_owned_by(command.owner_ref):
            return StepOutcome.failed(session_id, SessionOwnershipError(session_id), session)
        if session.is_closed:
            return StepOutcome.failed(session_id, closed_error(session), session)

        if not get_settings().bypass_expiration and session.is_expired(now):
            released = session.expire(now)
            repo.add(session)
            return StepOutcome.failed(session_id, SessionExpired(session_id), session, released)

        released = session.abandon(now)
        repo.add(session)
        logger.info(
            "Form session abandoned",
            session_id=session_id,
            current_step=session.current_step,
            released_files=len(released),
        )
        return StepOutcome.of(session, ABANDONED, released)
