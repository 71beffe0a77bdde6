"""Filesystem blob store.

Lays blobs out under a root directory::

    <root>/staging/<uuid>-<original name>
    <root>/permanent/<uuid>-<original name>

References are paths relative to the root, so a shared volume mounted at
different locations on different nodes still resolves them.
"""

import re
import shutil
from pathlib import Path
from uuid import uuid4

import structlog

from submissions.session.errors import StorageError
from submissions.storage.port import BlobStore

logger = structlog.get_logger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_name(name: str) -> str:
    return _UNSAFE.sub("_", Path(name or "upload").name)[:120] or "upload"


class LocalBlobStore(BlobStore):
    """Blob store backed by a local (or network-mounted) directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.staging_path = self.root / "staging"
        self.permanent_path = self.root / "permanent"
        self.staging_path.mkdir(parents=True, exist_ok=True)
        self.permanent_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, ref: str) -> Path:
        path = (self.root / ref).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Reference {ref} escapes the blob root", ref=ref)
        return path

    def stage(self, content: bytes, metadata: dict) -> str:
        ref = f"staging/{uuid4().hex}-{_safe_name(metadata.get('original_name', ''))}"
        try:
            self._resolve(ref).write_bytes(content)
        except OSError as exc:
            raise StorageError(f"Could not stage upload: {exc}", ref=ref) from exc
        logger.debug("Staged blob", ref=ref, size_bytes=len(content))
        return ref

    def promote(self, storage_ref: str) -> str:
        source = self._resolve(storage_ref)
        permanent_ref = f"permanent/{source.name}"
        try:
            shutil.copy2(source, self._resolve(permanent_ref))
        except OSError as exc:
            raise StorageError(f"Could not promote {storage_ref}: {exc}", ref=storage_ref) from exc
        logger.debug("Promoted blob", ref=storage_ref, permanent_ref=permanent_ref)
        return permanent_ref

    def delete(self, ref: str) -> None:
        try:
            self._resolve(ref).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not delete {ref}: {exc}", ref=ref) from exc

    def exists(self, ref: str) -> bool:
        return self._resolve(ref).exists()
