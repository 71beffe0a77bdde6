"""Error taxonomy for staged submissions.

Every error carries a stable ``code`` (the value API clients switch on) and
a ``retryable`` flag. Field-level problems are recoverable by resubmitting
the same step; ``SessionClosed`` and ``SessionExpired`` require a new session.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    """A single violation of a step's field rules."""

    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


def errors_by_field(errors) -> dict[str, list[str]]:
    """Group field errors the way Protean's ValidationError reports messages."""
    grouped: dict[str, list[str]] = {}
    for error in errors:
        grouped.setdefault(error.field, []).append(error.message)
    return grouped


class SubmissionError(Exception):
    code = "SUBMISSION_ERROR"
    retryable = False

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.message, "error_code": self.code, **self.context}


class FormConfigurationError(SubmissionError):
    code = "FORM_CONFIGURATION_ERROR"


class UnknownFormType(SubmissionError):
    code = "UNKNOWN_FORM_TYPE"

    def __init__(self, form_type: str):
        super().__init__(f"Invalid form type: {form_type}", form_type=form_type)


class InvalidSessionId(SubmissionError):
    code = "INVALID_SESSION_ID"

    def __init__(self, session_id: str):
        super().__init__("Session ID must be a valid UUID", session_id=session_id)


class UnknownStep(SubmissionError):
    code = "UNKNOWN_STEP"

    def __init__(self, form_type: str, step_number: int):
        super().__init__("Invalid step number", form_type=form_type, step=step_number)


class OutOfOrderStep(SubmissionError):
    code = "OUT_OF_ORDER_STEP"

    def __init__(self, step_number: int, expected_step: int):
        super().__init__(
            f"Step {step_number} cannot be submitted now; step {expected_step} is next",
            step=step_number,
            expected_step=expected_step,
        )


class ValidationFailure(SubmissionError):
    code = "VALIDATION_ERROR"

    def __init__(self, errors, step_number: int | None = None):
        self.errors = list(errors)
        super().__init__(
            "Validation failed",
            step=step_number,
            errors=errors_by_field(self.errors),
        )


class SessionNotFound(SubmissionError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__("Form session not found", session_id=session_id)


class SessionExpired(SubmissionError):
    code = "SESSION_EXPIRED"

    def __init__(self, session_id: str):
        super().__init__("Form session has expired; please start again", session_id=session_id)


class SessionClosed(SubmissionError):
    code = "SESSION_CLOSED"

    def __init__(self, session_id: str, status: str, entity_ref: str | None = None):
        self.entity_ref = entity_ref
        super().__init__(
            "This session has already been used",
            session_id=session_id,
            status=status,
            entity_ref=entity_ref,
        )


class SessionOwnershipError(SubmissionError):
    code = "INVALID_SESSION_OWNERSHIP"

    def __init__(self, session_id: str):
        super().__init__("Invalid session ownership", session_id=session_id)


class SessionConflict(SubmissionError):
    code = "SESSION_CONFLICT"
    retryable = True

    def __init__(self, session_id: str, reason: str = "Another request is updating this session"):
        super().__init__(reason, session_id=session_id)


class FinalizationError(SubmissionError):
    code = "FINALIZATION_ERROR"

    def __init__(self, reason: str, errors=()):
        self.errors = list(errors)
        super().__init__(reason, errors=errors_by_field(self.errors))


class StorageError(SubmissionError):
    code = "STORAGE_ERROR"
    retryable = True


class SessionStoreUnavailable(SubmissionError):
    code = "STORE_UNAVAILABLE"
    retryable = True
