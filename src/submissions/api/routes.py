"""FastAPI routes for the Submissions domain: staged form sessions."""

import json
from dataclasses import asdict

from fastapi import APIRouter, Header, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import UploadFile

from submissions.api.schemas import (
    FormTypeResponse,
    ReapRequest,
    ReapResponse,
    SessionResponse,
    StartSessionRequest,
    StepResponse,
    SubmitStepRequest,
)
from submissions.definitions import get_registry
from submissions.session.errors import FieldError, SubmissionError, ValidationFailure
from submissions.session.orchestrator import SessionOrchestrator
from submissions.storage.stager import Upload
from submissions.utils.logging import clear_context, get_logger

logger = get_logger(__name__)

form_session_router = APIRouter(prefix="/form-sessions", tags=["form-sessions"])
form_type_router = APIRouter(prefix="/form-types", tags=["form-types"])

HTTP_STATUS = {
    "UNKNOWN_FORM_TYPE": 404,
    "SESSION_NOT_FOUND": 404,
    "INVALID_SESSION_ID": 422,
    "UNKNOWN_STEP": 422,
    "VALIDATION_ERROR": 422,
    "FINALIZATION_ERROR": 422,
    "OUT_OF_ORDER_STEP": 409,
    "SESSION_CONFLICT": 409,
    "SESSION_CLOSED": 410,
    "SESSION_EXPIRED": 410,
    "INVALID_SESSION_OWNERSHIP": 403,
    "STORAGE_ERROR": 502,
    "STORE_UNAVAILABLE": 503,
}


def _http_error(exc: SubmissionError) -> HTTPException:
    status_code = HTTP_STATUS.get(exc.code, 500)
    log = logger.warning if status_code >= 500 else logger.info
    log("Form session request failed", error_code=exc.code, status_code=status_code, error=exc.message)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return HTTPException(status_code=status_code, detail=exc.to_dict(), headers=headers)


def _field_name(key: str) -> str:
    # "images[]" and "images[0]" both upload into "images"
    return key.split("[", 1)[0]


async def _read_step_request(request: Request) -> tuple[dict, str | None, list[Upload]]:
    """Accept either a JSON body or multipart form data with a ``payload`` JSON field."""
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        try:
            raw = await request.json() if await request.body() else {}
            body = SubmitStepRequest.model_validate(raw)
        except (json.JSONDecodeError, PydanticValidationError):
            raise ValidationFailure([FieldError("payload", "The request body must be a JSON object.")]) from None
        return body.payload, body.form_type, []

    form = await request.form()
    try:
        payload = json.loads(form.get("payload") or "{}")
    except json.JSONDecodeError:
        raise ValidationFailure([FieldError("payload", "The payload field must be valid JSON.")]) from None

    uploads = []
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            uploads.append(
                Upload(
                    field=_field_name(key),
                    filename=value.filename or "upload",
                    content=await value.read(),
                    content_type=value.content_type or "application/octet-stream",
                )
            )
    return payload, form.get("form_type") or None, uploads


# --- Form session endpoints ---


@form_session_router.post("", status_code=201, response_model=SessionResponse)
async def start_form_session(
    body: StartSessionRequest, owner_ref: str | None = Header(default=None, alias="X-Owner-Ref")
) -> SessionResponse:
    try:
        view = SessionOrchestrator().start(body.form_type, owner_ref=owner_ref, session_id=body.session_id)
    except SubmissionError as exc:
        raise _http_error(exc) from exc
    finally:
        clear_context()
    return SessionResponse(**asdict(view))


@form_session_router.get("/{session_id}", response_model=SessionResponse)
async def get_form_session(
    session_id: str, owner_ref: str | None = Header(default=None, alias="X-Owner-Ref")
) -> SessionResponse:
    try:
        view = SessionOrchestrator().get_state(session_id, owner_ref=owner_ref)
    except SubmissionError as exc:
        raise _http_error(exc) from exc
    return SessionResponse(**asdict(view))


@form_session_router.post("/{session_id}/steps/{step_number}", response_model=StepResponse)
async def submit_form_step(
    session_id: str,
    step_number: int,
    request: Request,
    owner_ref: str | None = Header(default=None, alias="X-Owner-Ref"),
) -> StepResponse:
    try:
        payload, form_type, uploads = await _read_step_request(request)
        result = SessionOrchestrator().submit_step(
            session_id,
            step_number,
            payload,
            owner_ref=owner_ref,
            uploads=uploads,
            form_type=form_type,
        )
    except SubmissionError as exc:
        raise _http_error(exc) from exc
    finally:
        clear_context()
    return StepResponse(**asdict(result))


@form_session_router.put("/{session_id}/abandon", response_model=SessionResponse)
async def abandon_form_session(
    session_id: str, owner_ref: str | None = Header(default=None, alias="X-Owner-Ref")
) -> SessionResponse:
    try:
        view = SessionOrchestrator().abandon(session_id, owner_ref=owner_ref)
    except SubmissionError as exc:
        raise _http_error(exc) from exc
    return SessionResponse(**asdict(view))


@form_session_router.post("/maintenance/reap", response_model=ReapResponse)
async def reap_expired_sessions(body: ReapRequest | None = None) -> ReapResponse:
    """Trigger an expiration sweep (also run periodically by the maintenance runner)."""
    try:
        removed = SessionOrchestrator().reap(as_of=body.as_of if body else None)
    except SubmissionError as exc:
        raise _http_error(exc) from exc
    return ReapResponse(removed=removed)


# --- Form type endpoints ---


@form_type_router.get("/{form_type}", response_model=FormTypeResponse)
async def get_form_type(form_type: str) -> FormTypeResponse:
    try:
        definition = get_registry().get(form_type)
    except SubmissionError as exc:
        raise _http_error(exc) from exc
    return FormTypeResponse(
        form_type=definition.form_type,
        total_steps=definition.total_steps,
        expiration_hours=definition.ttl.total_seconds() / 3600,
        entity_kind=definition.entity_kind,
        steps=definition.describe(),
    )
