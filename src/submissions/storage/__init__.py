"""Blob store factory.

Provides get_blob_store() / set_blob_store() to swap implementations:
- InMemoryBlobStore for development and testing
- LocalBlobStore when SUBMISSIONS_BLOB_DIR points at a (shared) directory
"""

from submissions.settings import get_settings
from submissions.storage.fake_adapter import InMemoryBlobStore
from submissions.storage.local_adapter import LocalBlobStore
from submissions.storage.port import BlobStore

_current_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """Return the current blob store. Defaults to InMemoryBlobStore."""
    global _current_store
    if _current_store is None:
        blob_dir = get_settings().blob_dir
        _current_store = LocalBlobStore(blob_dir) if blob_dir else InMemoryBlobStore()
    return _current_store


def set_blob_store(store: BlobStore) -> None:
    """Override the active blob store (useful for tests)."""
    global _current_store
    _current_store = store


def reset_blob_store() -> None:
    """Reset to default blob store."""
    global _current_store
    _current_store = None
