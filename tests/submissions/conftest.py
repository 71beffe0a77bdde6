import os

import pytest


@pytest.fixture(scope="session")
def _submissions_domain(request):
    """Initialize the submissions domain once per session."""
    os.environ["PROTEAN_ENV"] = request.config.option.env

    from submissions.domain import submissions

    submissions.init()
    return submissions


@pytest.fixture(autouse=True)
def run_around_tests(_submissions_domain):
    """Push domain context before each test, cleanup after."""
    ctx = _submissions_domain.domain_context()
    ctx.push()

    yield

    from protean import current_domain

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    current_domain.event_store.store._data_reset()
    ctx.pop()


# ---------------------------------------------------------------------------
# Ports: every test gets fresh fakes
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def settings():
    from submissions.settings import Settings, reset_settings, set_settings

    current = Settings()
    set_settings(current)
    yield current
    reset_settings()


@pytest.fixture(autouse=True)
def registry():
    from submissions.definitions import get_registry, reset_registry

    reset_registry()
    yield get_registry()
    reset_registry()


@pytest.fixture(autouse=True)
def reference_data():
    from submissions.reference import reset_reference_data, set_reference_data
    from submissions.reference.fake_adapter import InMemoryReferenceData

    data = InMemoryReferenceData(
        {
            "subcategories": {12: "Running Shoes", 13: "Trail Shoes"},
            "attributes": {5: "Color", 7: "Size"},
            "attribute_values": {1: "Red", 2: "Blue", 3: "42", 4: "43"},
        }
    )
    set_reference_data(data)
    yield data
    reset_reference_data()


@pytest.fixture(autouse=True)
def entity_writer():
    from submissions.persistence import reset_entity_writer, set_entity_writer
    from submissions.persistence.fake_adapter import FakeEntityWriter

    writer = FakeEntityWriter()
    set_entity_writer(writer)
    yield writer
    reset_entity_writer()


@pytest.fixture(autouse=True)
def blob_store():
    from submissions.storage import reset_blob_store, set_blob_store
    from submissions.storage.fake_adapter import InMemoryBlobStore

    store = InMemoryBlobStore()
    set_blob_store(store)
    yield store
    reset_blob_store()


@pytest.fixture(autouse=True)
def session_locks():
    from submissions.locking import reset_session_locks, set_session_locks
    from submissions.locking.local_adapter import InProcessSessionLocks

    locks = InProcessSessionLocks()
    set_session_locks(locks)
    yield locks
    reset_session_locks()


@pytest.fixture()
def orchestrator():
    from submissions.session.orchestrator import SessionOrchestrator

    return SessionOrchestrator()


# ---------------------------------------------------------------------------
# Payload fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def basic_info():
    return {
        "name": "Trail Runner 2",
        "description": "Lightweight trail running shoe",
        "price": "89.90",
        "subcategory_id": "12",
    }


@pytest.fixture()
def attribute_rows():
    return {
        "attributes": [
            {"attribute_id": 5, "value_id": 1},
            {"attribute_id": 7, "value_id": 3},
        ]
    }


@pytest.fixture()
def make_image():
    from submissions.storage.stager import Upload

    def _make(name="front.jpg", size=1024, content_type="image/jpeg", field="images"):
        return Upload(field=field, filename=name, content=b"\xff" * size, content_type=content_type)

    return _make
