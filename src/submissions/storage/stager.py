"""Staging of uploaded files for a form session.

Uploads are hashed and written to the blob store's staging area as soon as a
step request arrives. The resulting descriptors travel inside the
``SubmitStep`` command; only descriptors that belong to an accepted step
become ``StagedFile`` records on the session.
"""

import hashlib
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass

import structlog

from submissions.session.errors import StorageError
from submissions.storage import get_blob_store
from submissions.storage.port import BlobStore

logger = structlog.get_logger(__name__)

# Permanent refs promoted under the innermost active track_promotions()
_promotions: ContextVar[list[str] | None] = ContextVar("promotions", default=None)


@dataclass(frozen=True)
class Upload:
    """A file received with a step request, before staging."""

    field: str
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class StagedUpload:
    """Descriptor of an upload written to the staging area."""

    field: str
    original_name: str
    content_type: str
    size_bytes: int
    content_hash: str
    storage_ref: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "StagedUpload":
        return cls(
            field=data["field"],
            original_name=data["original_name"],
            content_type=data["content_type"],
            size_bytes=int(data["size_bytes"]),
            content_hash=data["content_hash"],
            storage_ref=data["storage_ref"],
        )


class FileStager:
    """Stages, promotes and releases blobs through the blob store port."""

    def __init__(self, store: BlobStore | None = None) -> None:
        self._store = store

    @property
    def store(self) -> BlobStore:
        return self._store or get_blob_store()

    def stage(self, uploads, session_id: str | None = None) -> list[StagedUpload]:
        """Stage every upload. If one fails, the ones already staged are removed."""
        staged: list[StagedUpload] = []
        for upload in uploads:
            try:
                ref = self.store.stage(
                    upload.content,
                    {
                        "session_id": session_id,
                        "field": upload.field,
                        "original_name": upload.filename,
                        "content_type": upload.content_type,
                    },
                )
            except StorageError:
                self.release_quietly([s.storage_ref for s in staged])
                raise
            staged.append(
                StagedUpload(
                    field=upload.field,
                    original_name=upload.filename,
                    content_type=upload.content_type,
                    size_bytes=len(upload.content),
                    content_hash=hashlib.sha256(upload.content).hexdigest(),
                    storage_ref=ref,
                )
            )

        if staged:
            logger.debug("Uploads staged", session_id=session_id, count=len(staged))
        return staged

    def promote_all(self, refs) -> dict[str, str]:
        """Promote every staged ref. All or nothing: on failure the promoted copies are deleted."""
        promoted: dict[str, str] = {}
        for ref in refs:
            try:
                promoted[ref] = self.store.promote(ref)
            except StorageError:
                logger.warning("Promotion failed, rolling back", ref=ref, promoted=len(promoted))
                self.release_quietly(promoted.values())
                raise

        tracked = _promotions.get()
        if tracked is not None:
            tracked.extend(promoted.values())
        return promoted

    @contextmanager
    def track_promotions(self):
        """Collect the permanent refs promoted inside the block, across stager instances."""
        tracked: list[str] = []
        token = _promotions.set(tracked)
        try:
            yield tracked
        finally:
            _promotions.reset(token)

    def release(self, refs) -> None:
        """Delete blobs, raising StorageError on the first failure."""
        for ref in refs:
            self.store.delete(ref)

    def release_quietly(self, refs) -> int:
        """Delete blobs, logging failures instead of raising. Returns the number deleted."""
        deleted = 0
        for ref in refs:
            try:
                self.store.delete(ref)
                deleted += 1
            except StorageError as exc:
                logger.warning("Failed to release blob", ref=ref, error=str(exc))
        return deleted
