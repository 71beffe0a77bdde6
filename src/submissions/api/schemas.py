"""Pydantic request/response schemas for the Submissions API.

These are external contracts (anti-corruption layer), separate from
internal Protean commands and the orchestrator's views.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
class StartSessionRequest(BaseModel):
    form_type: str
    session_id: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "form_type": "product_form",
                    "session_id": None,
                }
            ]
        }
    }


class SubmitStepRequest(BaseModel):
    """JSON body for a step without file uploads."""

    form_type: str | None = None  # Starts the session implicitly on step 1
    payload: dict = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "payload": {
                        "attributes": [
                            {"attribute_id": 5, "value_id": 1},
                            {"attribute_id": 7, "value_id": 3},
                        ]
                    }
                }
            ]
        }
    }


class ReapRequest(BaseModel):
    as_of: datetime | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class StepDescription(BaseModel):
    number: int
    label: str
    description: str = ""


class SessionResponse(BaseModel):
    session_id: str
    form_type: str
    status: str
    current_step: int
    total_steps: int
    steps: list[StepDescription]
    completed_steps: list[int] = []
    next_step: StepDescription | None = None
    data: dict = {}
    files: list[dict] = []
    expires_at: datetime | None = None
    entity_ref: str | None = None


class StepResponse(BaseModel):
    session_id: str
    step_number: int
    status: str
    current_step: int
    total_steps: int
    completed: bool
    entity_ref: str | None = None
    next_step: int | None = None


class FormTypeResponse(BaseModel):
    form_type: str
    total_steps: int
    expiration_hours: float
    entity_kind: str
    steps: list[StepDescription]


class ReapResponse(BaseModel):
    removed: int
