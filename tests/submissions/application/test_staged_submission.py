"""Tests for starting sessions and submitting steps in order."""

import threading
from uuid import uuid4

import pytest
from submissions.session.errors import (
    InvalidSessionId,
    OutOfOrderStep,
    SessionClosed,
    SessionConflict,
    SessionNotFound,
    SessionOwnershipError,
    UnknownFormType,
    UnknownStep,
    ValidationFailure,
)
from submissions.session.session import SessionStatus
from submissions.session.start import load_session


class TestStart:
    def test_returns_step_descriptions(self, orchestrator):
        view = orchestrator.start("product_form")

        assert view.current_step == 0
        assert view.total_steps == 3
        assert view.next_step["label"] == "Basic Information"
        assert [s["number"] for s in view.steps] == [1, 2, 3]
        assert view.expires_at is not None

    def test_unknown_form_type(self, orchestrator):
        with pytest.raises(UnknownFormType):
            orchestrator.start("spaceship_form")

    def test_client_supplied_id(self, orchestrator):
        session_id = str(uuid4())
        view = orchestrator.start("seller_form", session_id=session_id)
        assert view.session_id == session_id

    def test_supplied_id_cannot_be_reused_while_open(self, orchestrator):
        session_id = str(uuid4())
        orchestrator.start("product_form", session_id=session_id)
        with pytest.raises(SessionConflict):
            orchestrator.start("product_form", session_id=session_id)

    def test_supplied_id_must_be_a_uuid(self, orchestrator):
        with pytest.raises(InvalidSessionId):
            orchestrator.start("product_form", session_id="my-session")


class TestStepSubmission:
    def test_steps_in_order_create_exactly_one_entity(
        self, orchestrator, entity_writer, timeline, basic_info, attribute_rows, make_image, blob_store
    ):
        view = orchestrator.start("product_form")

        first = orchestrator.submit_step(view.session_id, 1, basic_info)
        assert first.current_step == 1
        assert first.next_step == 2
        assert not first.completed

        orchestrator.submit_step(view.session_id, 2, attribute_rows)
        final = orchestrator.submit_step(view.session_id, 3, {}, uploads=[make_image(), make_image("side.png", content_type="image/png")])

        assert final.completed
        assert final.entity_ref.startswith("product:")
        assert final.next_step is None
        assert len(entity_writer.calls) == 1
        assert timeline(view.session_id, "ResourceCreated") == ["ResourceCreated"]
        assert timeline(view.session_id).count("FormStepAccepted") == 3

        stored = load_session(view.session_id)
        assert stored.status == SessionStatus.COMPLETED.value
        assert list(stored.staged_files) == []
        assert blob_store.staged == {}
        assert len(blob_store.permanent) == 2

    def test_entity_request_carries_labels_and_promoted_files(
        self, completed_session, entity_writer, blob_store
    ):
        request = entity_writer.calls[-1]

        assert request.fields["name"] == "Trail Runner 2"
        assert request.fields["price"] == 89.9
        assert request.fields["subcategory_id"] == 12
        assert request.fields["subcategory_name"] == "Running Shoes"
        assert request.rows["attributes"][0] == {
            "attribute_id": 5,
            "value_id": 1,
            "attribute_name": "Color",
            "value_name": "Red",
        }
        [image] = request.files["images"]
        assert image["storage_ref"] in blob_store.permanent
        assert blob_store.staged == {}

    def test_resubmitting_a_step_before_moving_on_is_out_of_order(self, orchestrator, basic_info):
        view = orchestrator.start("product_form")
        orchestrator.submit_step(view.session_id, 1, basic_info)

        with pytest.raises(OutOfOrderStep):
            orchestrator.submit_step(view.session_id, 1, basic_info)

    def test_skipping_a_step_leaves_state_untouched(self, orchestrator, attribute_rows):
        view = orchestrator.start("product_form")

        with pytest.raises(OutOfOrderStep) as exc:
            orchestrator.submit_step(view.session_id, 2, attribute_rows)

        assert exc.value.context["expected_step"] == 1
        assert load_session(view.session_id).current_step == 0

    def test_step_outside_the_form(self, orchestrator):
        view = orchestrator.start("seller_form")
        with pytest.raises(UnknownStep):
            orchestrator.submit_step(view.session_id, 5, {})

    def test_validation_failure_is_recorded(self, orchestrator, timeline):
        from protean import current_domain
        from submissions.projections.failed_submissions import FailedSubmission

        view = orchestrator.start("product_form")
        with pytest.raises(ValidationFailure) as exc:
            orchestrator.submit_step(view.session_id, 1, {"name": "Shoe", "price": "free"})

        assert set(exc.value.context["errors"]) == {"description", "price", "subcategory_id"}
        assert load_session(view.session_id).current_step == 0
        assert timeline(view.session_id, "StepValidationFailed") == ["StepValidationFailed"]

        [failure] = current_domain.repository_for(FailedSubmission)._dao.query.all().items
        assert failure.failure_context == "step"
        assert failure.step_number == 1
        assert '"free"' in failure.raw_payload

    def test_rows_with_the_same_key_keep_the_last_value(self, orchestrator, basic_info):
        view = orchestrator.start("product_form")
        orchestrator.submit_step(view.session_id, 1, basic_info)
        orchestrator.submit_step(
            view.session_id,
            2,
            {"attributes": [{"attribute_id": 5, "value_id": 1}, {"attribute_id": 5, "value_id": 2}]},
        )

        state = orchestrator.get_state(view.session_id)
        assert state.data["2"]["attributes"] == [{"attribute_id": 5, "value_id": 2}]
        assert state.completed_steps == [1, 2]
        assert state.next_step["number"] == 3

    def test_completed_session_rejects_the_final_step_again(self, orchestrator, completed_session, make_image):
        with pytest.raises(SessionClosed) as exc:
            orchestrator.submit_step(completed_session.session_id, 3, {}, owner_ref="user-1", uploads=[make_image()])
        assert exc.value.entity_ref == completed_session.entity_ref

    def test_completed_session_id_cannot_start_again(self, orchestrator, completed_session):
        with pytest.raises(SessionClosed):
            orchestrator.start("product_form", session_id=completed_session.session_id)
        assert load_session(completed_session.session_id).status == SessionStatus.COMPLETED.value


class TestImplicitStart:
    def test_first_step_with_form_type_opens_the_session(self, orchestrator, basic_info):
        session_id = str(uuid4())
        result = orchestrator.submit_step(session_id, 1, basic_info, form_type="product_form")

        assert result.current_step == 1
        assert load_session(session_id).form_type == "product_form"

    def test_without_form_type_the_session_is_unknown(self, orchestrator, basic_info):
        with pytest.raises(SessionNotFound):
            orchestrator.submit_step(str(uuid4()), 1, basic_info)

    def test_only_step_one_can_start_a_session(self, orchestrator, attribute_rows):
        session_id = str(uuid4())
        with pytest.raises(SessionNotFound):
            orchestrator.submit_step(session_id, 2, attribute_rows, form_type="product_form")
        assert load_session(session_id) is None


class TestOwnership:
    def test_other_owner_is_rejected(self, orchestrator, basic_info):
        view = orchestrator.start("product_form", owner_ref="user-1")

        with pytest.raises(SessionOwnershipError):
            orchestrator.submit_step(view.session_id, 1, basic_info, owner_ref="user-2")
        with pytest.raises(SessionOwnershipError):
            orchestrator.get_state(view.session_id, owner_ref="user-2")

    def test_guest_session_is_open_to_any_caller(self, orchestrator, basic_info):
        view = orchestrator.start("product_form")
        result = orchestrator.submit_step(view.session_id, 1, basic_info, owner_ref="user-9")
        assert result.current_step == 1


class TestConcurrency:
    def test_busy_session_is_a_conflict(self, orchestrator, session_locks, basic_info, blob_store, make_image):
        view = orchestrator.start("product_form")

        with session_locks.hold(view.session_id):
            with pytest.raises(SessionConflict) as exc:
                orchestrator.submit_step(view.session_id, 1, basic_info)

        assert exc.value.retryable
        assert blob_store.staged == {}
        assert orchestrator.submit_step(view.session_id, 1, basic_info).current_step == 1

    def test_rejected_uploads_are_not_left_behind(self, orchestrator, basic_info, attribute_rows, blob_store, make_image):
        view = orchestrator.start("product_form")
        orchestrator.submit_step(view.session_id, 1, basic_info)
        orchestrator.submit_step(view.session_id, 2, attribute_rows)

        with pytest.raises(ValidationFailure):
            orchestrator.submit_step(view.session_id, 3, {}, uploads=[make_image("huge.jpg", size=3 * 1024 * 1024)])

        assert blob_store.staged == {}

    def test_simultaneous_submissions_accept_the_step_once(
        self, orchestrator, reference_data, basic_info, timeline, monkeypatch, _submissions_domain
    ):
        view = orchestrator.start("product_form")
        inside, second_done = threading.Event(), threading.Event()
        lookup = reference_data.exists

        def slow_exists(entity_kind, entity_id):
            inside.set()
            second_done.wait(timeout=5)
            return lookup(entity_kind, entity_id)

        monkeypatch.setattr(reference_data, "exists", slow_exists)
        results = []

        def submit():
            with _submissions_domain.domain_context():
                try:
                    results.append(orchestrator.submit_step(view.session_id, 1, basic_info).current_step)
                except SessionConflict as exc:
                    results.append(type(exc).__name__)

        first = threading.Thread(target=submit)
        first.start()
        assert inside.wait(timeout=5)

        second = threading.Thread(target=submit)
        second.start()
        second.join(timeout=5)
        second_done.set()
        first.join(timeout=5)

        assert results == ["SessionConflict", 1]
        assert load_session(view.session_id).current_step == 1
        assert timeline(view.session_id, "FormStepAccepted") == ["FormStepAccepted"]
