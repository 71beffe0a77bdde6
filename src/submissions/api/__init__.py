"""Submissions domain API package."""

from submissions.api.routes import form_session_router, form_type_router

__all__ = ["form_session_router", "form_type_router"]
