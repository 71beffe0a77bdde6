"""In-memory blob store for development and testing.

Keeps staged and permanent blobs in dictionaries. Promotion and deletion can
be configured to fail, which lets tests exercise the rollback paths.
"""

from uuid import uuid4

from submissions.session.errors import StorageError
from submissions.storage.port import BlobStore


class InMemoryBlobStore(BlobStore):
    """Configurable in-memory blob store."""

    def __init__(self) -> None:
        self.staged: dict[str, bytes] = {}
        self.permanent: dict[str, bytes] = {}
        self.metadata: dict[str, dict] = {}
        self.fail_promotion_after: int | None = None
        self.fail_deletes: bool = False
        self.calls: list[dict] = []
        self._promotions = 0

    def configure(self, fail_promotion_after: int | None = None, fail_deletes: bool = False) -> None:
        """Fail every promotion after the given number of successful ones, or every delete."""
        self.fail_promotion_after = fail_promotion_after
        self.fail_deletes = fail_deletes
        self._promotions = 0

    def stage(self, content: bytes, metadata: dict) -> str:
        ref = f"staging/{uuid4().hex}"
        self.staged[ref] = content
        self.metadata[ref] = dict(metadata)
        self.calls.append({"method": "stage", "ref": ref})
        return ref

    def promote(self, storage_ref: str) -> str:
        self.calls.append({"method": "promote", "ref": storage_ref})
        if self.fail_promotion_after is not None and self._promotions >= self.fail_promotion_after:
            raise StorageError(f"Promotion of {storage_ref} failed", ref=storage_ref)
        if storage_ref not in self.staged:
            raise StorageError(f"Staged blob {storage_ref} not found", ref=storage_ref)

        permanent_ref = f"permanent/{uuid4().hex}"
        self.permanent[permanent_ref] = self.staged[storage_ref]
        self.metadata[permanent_ref] = dict(self.metadata.get(storage_ref, {}))
        self._promotions += 1
        return permanent_ref

    def delete(self, ref: str) -> None:
        self.calls.append({"method": "delete", "ref": ref})
        if self.fail_deletes:
            raise StorageError(f"Deletion of {ref} failed", ref=ref)
        self.staged.pop(ref, None)
        self.permanent.pop(ref, None)
        self.metadata.pop(ref, None)

    def exists(self, ref: str) -> bool:
        return ref in self.staged or ref in self.permanent
