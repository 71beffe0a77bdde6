"""Session orchestrator: application service in front of the session commands.

The orchestrator is what the API (and any other client) talks to. For every
mutating operation it:

1. takes the per-session lock (non-blocking; a busy session is a conflict),
2. stages uploads so the command only carries their descriptors,
3. processes the command inside Protean's unit of work,
4. deletes blobs the committed session no longer references (or, when
   processing raised, the copies a finalization promoted), and
5. turns the command outcome into a view or a ``SubmissionError``.

Infrastructure failures are translated here: an optimistic version clash
becomes ``SessionConflict``, an unreachable store ``SessionStoreUnavailable``.
"""

import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain

from submissions.definitions import get_registry
from submissions.locking import get_session_locks
from submissions.session.abandonment import AbandonFormSession
from submissions.session.errors import (
    SessionConflict,
    SessionExpired,
    SessionNotFound,
    SessionOwnershipError,
    SessionStoreUnavailable,
)
from submissions.session.expiry import ExpireFormSession, ReapExpiredSessions
from submissions.session.outcome import EXPIRED, StepOutcome
from submissions.session.session import SessionStatus
from submissions.session.start import StartFormSession, load_session, normalize_session_id
from submissions.session.submission import SubmitStep
from submissions.storage.stager import FileStager
from submissions.utils.logging import bind_session_context

logger = structlog.get_logger(__name__)


@dataclass
class SessionView:
    """What a client sees when it starts or resumes a session."""

    session_id: str
    form_type: str
    status: str
    current_step: int
    total_steps: int
    steps: list[dict]
    completed_steps: list[int] = field(default_factory=list)
    next_step: dict | None = None
    data: dict = field(default_factory=dict)
    files: list[dict] = field(default_factory=list)
    expires_at: datetime | None = None
    entity_ref: str | None = None


@dataclass
class StepResult:
    session_id: str
    step_number: int
    status: str
    current_step: int
    total_steps: int
    completed: bool = False
    entity_ref: str | None = None
    next_step: int | None = None


class SessionOrchestrator:
    def __init__(self, registry=None, locks=None, stager: FileStager | None = None) -> None:
        self._registry = registry
        self._locks = locks
        self.stager = stager or FileStager()

    @property
    def registry(self):
        return self._registry or get_registry()

    @property
    def locks(self):
        return self._locks or get_session_locks()

    # -------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------
    @contextmanager
    def _store_errors(self, session_id):
        try:
            yield
        except ExpectedVersionError as exc:
            raise SessionConflict(str(session_id), "The session was modified concurrently; retry") from exc
        except (ConnectionError, TimeoutError) as exc:
            logger.error("Session store unavailable", session_id=str(session_id), error=str(exc))
            raise SessionStoreUnavailable(
                "Session store is temporarily unavailable", session_id=str(session_id)
            ) from exc

    def _process(self, command, session_id) -> StepOutcome:
        with self.stager.track_promotions() as promoted:
            try:
                with self._store_errors(session_id):
                    outcome = current_domain.process(command, asynchronous=False)
            except Exception:
                # Nothing committed, so no completed session records these copies
                if promoted:
                    logger.warning("Releasing promoted files of a failed finalization", session_id=str(session_id))
                    self.stager.release_quietly(promoted)
                raise
        if outcome.release:
            self.stager.release_quietly(outcome.release)
        return outcome

    def _release_unattached(self, session_id, staged, outcome) -> None:
        """Delete uploads of this request that did not end up on the session."""
        session = load_session(session_id)
        kept = {f.storage_ref for f in session.staged_files} if session is not None else set()
        handled = set(outcome.release)
        orphans = [s.storage_ref for s in staged if s.storage_ref not in kept and s.storage_ref not in handled]
        if orphans:
            self.stager.release_quietly(orphans)

    def _view(self, session) -> SessionView:
        definition = self.registry.get(session.form_type)
        next_step = session.next_step
        return SessionView(
            session_id=str(session.id),
            form_type=session.form_type,
            status=session.status,
            current_step=session.current_step,
            total_steps=session.total_steps,
            steps=definition.describe(),
            completed_steps=session.completed_steps,
            next_step=definition.describe()[next_step - 1] if next_step else None,
            data={str(k): v for k, v in session.steps().items()},
            files=[f.to_dict() for f in session.staged_files],
            expires_at=session.expires_at,
            entity_ref=session.entity_ref,
        )

    def _load(self, session_id):
        with self._store_errors(session_id):
            session = load_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------
    def start(self, form_type: str, owner_ref=None, session_id=None) -> SessionView:
        self.registry.get(form_type)
        if session_id is not None:
            session_id = normalize_session_id(session_id)

        command = StartFormSession(form_type=form_type, owner_ref=owner_ref, session_id=session_id)
        if session_id is None:
            outcome = self._process(command, "new")
        else:
            with self.locks.hold(session_id):
                outcome = self._process(command, session_id)
        outcome.raise_for_error()

        bind_session_context(outcome.session_id, form_type)
        return self._view(self._load(outcome.session_id))

    def submit_step(
        self,
        session_id,
        step_number: int,
        payload: dict | None = None,
        owner_ref=None,
        uploads=(),
        form_type: str | None = None,
    ) -> StepResult:
        """Submit one step. ``uploads`` are ``Upload`` objects not yet staged."""
        session_id = normalize_session_id(session_id)
        bind_session_context(session_id, form_type)

        with self.locks.hold(session_id):
            staged = self.stager.stage(list(uploads), session_id=session_id)
            command = SubmitStep(
                session_id=session_id,
                step_number=step_number,
                form_type=form_type,
                owner_ref=owner_ref,
                step_payload=json.dumps(payload or {}, default=str),
                uploads=json.dumps([s.to_dict() for s in staged]),
            )
            try:
                outcome = self._process(command, session_id)
            except Exception:
                self.stager.release_quietly([s.storage_ref for s in staged])
                raise

            if staged:
                self._release_unattached(session_id, staged, outcome)

        outcome.raise_for_error()
        completed = outcome.status == SessionStatus.COMPLETED.value
        return StepResult(
            session_id=session_id,
            step_number=step_number,
            status=outcome.status,
            current_step=outcome.current_step,
            total_steps=outcome.total_steps,
            completed=completed,
            entity_ref=outcome.entity_ref,
            next_step=None if completed else outcome.current_step + 1,
        )

    def abandon(self, session_id, owner_ref=None) -> SessionView:
        session_id = normalize_session_id(session_id)
        with self.locks.hold(session_id):
            outcome = self._process(AbandonFormSession(session_id=session_id, owner_ref=owner_ref), session_id)
        outcome.raise_for_error()
        return self._view(self._load(session_id))

    def get_state(self, session_id, owner_ref=None) -> SessionView:
        """Resume view of a session. Expired sessions are closed on the spot."""
        session_id = normalize_session_id(session_id)
        session = self._load(session_id)
        if not session.is_owned_by(owner_ref):
            raise SessionOwnershipError(session_id)

        if not session.is_closed and session.is_expired():
            with self.locks.hold(session_id):
                outcome = self._process(ExpireFormSession(session_id=session_id), session_id)
            outcome.raise_for_error()
            if outcome.result == EXPIRED:
                raise SessionExpired(session_id)
            session = self._load(session_id)

        if session.status == SessionStatus.EXPIRED.value:
            raise SessionExpired(session_id)
        return self._view(session)

    def reap(self, as_of: datetime | None = None) -> int:
        with self._store_errors("*"):
            return current_domain.process(ReapExpiredSessions(as_of=as_of), asynchronous=False)
