"""Session expiry: lazy expiry on access and the periodic reaper.

A session past its ``expires_at`` is marked expired the first time anyone
touches it (``ExpireFormSession``). Independently, ``ReapExpiredSessions``
is triggered on a fixed interval by the maintenance runner or the
maintenance API endpoint and physically removes every session, open or
closed, whose ``expires_at`` has passed, together with its staged files.
Sessions opened while the expiration bypass was active carry no
``expires_at``; once the bypass is off the sweep measures them from their
last change plus their form type's time-to-live.
"""

import structlog
from protean import handle
from protean.fields import DateTime, Identifier
from protean.utils.globals import current_domain

from shared.lifecycle import RECOVERABLE_ERRORS, ExpirationReaper, has_expired, naive_utc, utc_now
from submissions.definitions import get_registry
from submissions.domain import submissions
from submissions.locking import get_session_locks
from submissions.session.errors import SessionConflict, SessionNotFound, SubmissionError
from submissions.session.outcome import EXPIRED, StepOutcome
from submissions.session.session import FormSession
from submissions.session.start import load_session
from submissions.settings import get_settings
from submissions.storage.stager import FileStager

logger = structlog.get_logger(__name__)

UNCHANGED = "unchanged"


@submissions.command(part_of="FormSession")
class ExpireFormSession:
    """Mark an in-progress session expired if its time-to-live has passed."""

    session_id = Identifier(required=True)
    as_of = DateTime()


@submissions.command(part_of="FormSession")
class PurgeFormSession:
    """Delete a session's staged file records and then the session itself."""

    session_id = Identifier(required=True)


@submissions.command(part_of="FormSession")
class ReapExpiredSessions:
    """Remove every session whose expiry timestamp lies before ``as_of``."""

    as_of = DateTime()  # Optional: defaults to now


def effective_expiry(session, registry):
    """When the sweep may remove ``session``, or None to keep it."""
    if session.expires_at is not None:
        return session.expires_at
    if session.form_type not in registry or session.updated_at is None:
        return None
    return naive_utc(session.updated_at) + registry.get(session.form_type).ttl


def find_expired_sessions(as_of, batch_size: int) -> list:
    """Page through the session store and collect sessions expired at ``as_of``."""
    dao = current_domain.repository_for(FormSession)._dao
    registry = get_registry()
    expired = []
    offset = 0
    while True:
        page = dao.query.offset(offset).limit(batch_size).all().items
        expired.extend(s for s in page if has_expired(effective_expiry(s, registry), as_of))
        if len(page) < batch_size:
            return expired
        offset += batch_size


@submissions.command_handler(part_of=FormSession)
class SessionExpiryHandler:
    @handle(ExpireFormSession)
    def expire_form_session(self, command):
        now = command.as_of or utc_now()
        session_id = str(command.session_id)

        session = load_session(session_id)
        if session is None:
            return StepOutcome.failed(session_id, SessionNotFound(session_id))
        if session.is_closed or get_settings().bypass_expiration or not session.is_expired(now):
            return StepOutcome.of(session, UNCHANGED)

        released = session.expire(now)
        current_domain.repository_for(FormSession).add(session)
        logger.info("Form session expired on access", session_id=session_id, current_step=session.current_step)
        return StepOutcome.of(session, EXPIRED, released)

    @handle(PurgeFormSession)
    def purge_form_session(self, command):
        repo = current_domain.repository_for(FormSession)
        session = load_session(str(command.session_id))
        if session is None:
            return False

        session.release_files()
        repo.add(session)
        repo._dao.delete(session)
        return True

    @handle(ReapExpiredSessions)
    def reap_expired_sessions(self, command):
        settings = get_settings()
        if settings.bypass_expiration:
            logger.info("Expiration bypass active, skipping session sweep")
            return 0

        locks = get_session_locks()
        stager = FileStager()

        def purge(candidate):
            session_id = str(candidate.id)
            try:
                with locks.hold(session_id):
                    session = load_session(session_id)
                    if session is None:
                        return False
                    # Blobs first: a failed delete leaves the row for the next sweep
                    stager.release([f.storage_ref for f in session.staged_files])
                    return current_domain.process(PurgeFormSession(session_id=session_id), asynchronous=False)
            except SessionConflict:
                return False

        reaper = ExpirationReaper(
            name="form_sessions",
            find_expired=lambda as_of: find_expired_sessions(as_of, settings.reap_batch_size),
            purge=purge,
            describe=lambda s: {
                "session_id": str(s.id),
                "form_type": s.form_type,
                "status": s.status,
                "expires_at": str(s.expires_at),
            },
            recoverable=RECOVERABLE_ERRORS + (SubmissionError,),
        )
        return reaper.sweep(command.as_of or utc_now()).removed
