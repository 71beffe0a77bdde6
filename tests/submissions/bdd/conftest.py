"""Shared BDD fixtures and step definitions for staged submissions."""

import pytest
from pytest_bdd import given, parsers, then, when
from submissions.session.errors import SubmissionError
from submissions.session.start import load_session

_ATTRIBUTES = {"Color": 5, "Size": 7}
_VALUES = {"Red": 1, "Blue": 2, "42": 3, "43": 4}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def error():
    """Container for the error of the last request."""
    return {"exc": None}


@pytest.fixture()
def results():
    return []


def _attempt(error, results, call):
    try:
        results.append(call())
        error["exc"] = None
    except SubmissionError as exc:
        error["exc"] = exc


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a product form session", target_fixture="session_id")
def product_form_session(orchestrator):
    return orchestrator.start("product_form").session_id


@given("the catalogue rejects new products")
def catalogue_rejects(entity_writer):
    entity_writer.configure(should_succeed=False, failure_reason="Catalogue unavailable")


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when("the seller submits basic information")
def submit_basic_information(orchestrator, session_id, basic_info, error, results):
    _attempt(error, results, lambda: orchestrator.submit_step(session_id, 1, basic_info))


@when(parsers.cfparse("the seller submits attributes {first}={first_value} and {second}={second_value}"))
def submit_attributes(orchestrator, session_id, first, first_value, second, second_value, error, results):
    rows = [
        {"attribute_id": _ATTRIBUTES[first], "value_id": _VALUES[first_value]},
        {"attribute_id": _ATTRIBUTES[second], "value_id": _VALUES[second_value]},
    ]
    _attempt(error, results, lambda: orchestrator.submit_step(session_id, 2, {"attributes": rows}))


@when(parsers.cfparse("the seller uploads {count:d} images"))
def upload_images(orchestrator, session_id, count, make_image, error, results):
    uploads = [make_image(f"image-{i}.jpg") for i in range(count)]
    _attempt(error, results, lambda: orchestrator.submit_step(session_id, 3, {}, uploads=uploads))


@when("the catalogue accepts new products again")
def catalogue_accepts(entity_writer):
    entity_writer.configure(should_succeed=True)


@when("the seller resubmits the final step without files")
def resubmit_final_step(orchestrator, session_id, error, results):
    _attempt(error, results, lambda: orchestrator.submit_step(session_id, 3, {}))


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the request fails with "{code}"'))
def request_fails(error, code):
    assert error["exc"] is not None
    assert error["exc"].code == code


@then(parsers.cfparse("the session is still at step {step:d}"))
def session_at_step(session_id, step):
    assert load_session(session_id).current_step == step


@then("the session is completed")
def session_completed(error, results):
    assert error["exc"] is None
    assert results[-1].completed


@then(parsers.cfparse("the product has {count:d} images in permanent storage"))
def images_in_permanent_storage(entity_writer, blob_store, count):
    images = entity_writer.calls[-1].files["images"]
    assert len(images) == count
    assert all(image["storage_ref"] in blob_store.permanent for image in images)
