from datetime import timedelta

import pytest
from protean import current_domain
from shared.lifecycle import utc_now


@pytest.fixture()
def timeline():
    """Event types recorded for a session, oldest first."""
    from submissions.projections.submission_timeline import SubmissionTimeline

    def _events(session_id, event_type=None):
        filters = {"session_id": str(session_id)}
        if event_type:
            filters["event_type"] = event_type
        entries = current_domain.repository_for(SubmissionTimeline)._dao.query.filter(**filters).all().items
        return [entry.event_type for entry in sorted(entries, key=lambda e: e.occurred_at)]

    return _events


@pytest.fixture()
def stale_session():
    """Start a session whose time-to-live already ran out."""
    from submissions.session.start import StartFormSession

    def _start(form_type="product_form", owner_ref=None, hours_ago=25):
        outcome = current_domain.process(
            StartFormSession(form_type=form_type, owner_ref=owner_ref, as_of=utc_now() - timedelta(hours=hours_ago)),
            asynchronous=False,
        )
        return outcome.session_id

    return _start


@pytest.fixture()
def completed_session(orchestrator, basic_info, attribute_rows, make_image):
    view = orchestrator.start("product_form", owner_ref="user-1")
    orchestrator.submit_step(view.session_id, 1, basic_info, owner_ref="user-1")
    orchestrator.submit_step(view.session_id, 2, attribute_rows, owner_ref="user-1")
    result = orchestrator.submit_step(view.session_id, 3, {}, owner_ref="user-1", uploads=[make_image()])
    assert result.completed
    return result
