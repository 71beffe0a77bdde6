"""Result of a session command.

Handlers report expected failures (validation errors, closed or expired
sessions) in the outcome instead of raising, so the unit of work still
commits the failure events and any lazy-expiry cleanup. Storage refs listed
in ``release`` are no longer referenced by the session; the orchestrator
deletes those blobs once the command has committed.
"""

from dataclasses import dataclass, field

from submissions.session.errors import SubmissionError

ACCEPTED = "accepted"
COMPLETED = "completed"
REJECTED = "rejected"
STARTED = "started"
ABANDONED = "abandoned"
EXPIRED = "expired"


@dataclass
class StepOutcome:
    session_id: str
    result: str
    current_step: int = 0
    total_steps: int = 0
    status: str | None = None
    entity_ref: str | None = None
    error: SubmissionError | None = None
    release: list[str] = field(default_factory=list)

    @classmethod
    def failed(cls, session_id, error: SubmissionError, session=None, release=None) -> "StepOutcome":
        return cls(
            session_id=str(session_id),
            result=REJECTED,
            current_step=session.current_step if session is not None else 0,
            total_steps=session.total_steps if session is not None else 0,
            status=session.status if session is not None else None,
            entity_ref=session.entity_ref if session is not None else None,
            error=error,
            release=list(release or []),
        )

    @classmethod
    def of(cls, session, result: str, release=None) -> "StepOutcome":
        return cls(
            session_id=str(session.id),
            result=result,
            current_step=session.current_step,
            total_steps=session.total_steps,
            status=session.status,
            entity_ref=session.entity_ref,
            release=list(release or []),
        )

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error
