"""BDD tests for submitting a product listing step by step."""

from datetime import timedelta

from pytest_bdd import parsers, scenarios, then, when
from shared.lifecycle import utc_now
from submissions.session.start import load_session

scenarios("features/staged_product_submission.feature")


@when(parsers.cfparse("the expiration sweep runs {days:d} days later"), target_fixture="removed")
def sweep_later(orchestrator, days):
    return orchestrator.reap(as_of=utc_now() + timedelta(days=days))


@then(parsers.cfparse("exactly {count:d} product is created"))
def products_created(entity_writer, count):
    assert len(entity_writer.entities) == count


@then(parsers.cfparse("step {step:d} holds {count:d} attribute row"))
def attribute_row_count(session_id, step, count):
    assert len(load_session(session_id).steps()[step]["attributes"]) == count


@then(parsers.cfparse("attribute {attribute_id:d} has value {value_id:d}"))
def attribute_value(session_id, attribute_id, value_id):
    [row] = [r for r in load_session(session_id).steps()[2]["attributes"] if r["attribute_id"] == attribute_id]
    assert row["value_id"] == value_id


@then(parsers.cfparse("{count:d} session is removed"))
def sessions_removed(removed, count):
    assert removed == count


@then("no staged files remain")
def no_staged_files(blob_store):
    assert blob_store.staged == {}
