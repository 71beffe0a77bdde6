"""Blob storage port (abstract interface).

Uploaded files are first written to a staging area and only promoted to
permanent storage when their session is finalized. Adapters raise
``StorageError`` for any backend failure.
"""

from abc import ABC, abstractmethod


class BlobStore(ABC):
    """Abstract blob store."""

    @abstractmethod
    def stage(self, content: bytes, metadata: dict) -> str:
        """Store content in the staging area and return its storage reference."""
        ...

    @abstractmethod
    def promote(self, storage_ref: str) -> str:
        """Copy a staged blob to permanent storage and return the permanent reference."""
        ...

    @abstractmethod
    def delete(self, ref: str) -> None:
        """Delete a staged or permanent blob. Deleting a missing blob is not an error."""
        ...

    @abstractmethod
    def exists(self, ref: str) -> bool:
        """Return True if the blob is present."""
        ...
