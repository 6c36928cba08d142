"""BlobStore abstract base class: key/value object storage interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..types import BlobInfo


class BlobStore(ABC):
    """Pluggable object store holding per-event logs and compacted days.

    Keys are ``/``-separated paths such as ``logs/2025-01-31/10-00-00-000.json``.
    Writes never add a random suffix, so a key is fully determined by the
    caller.
    """

    @abstractmethod
    def list(self, prefix: str = "") -> list[BlobInfo]:
        """List objects whose key starts with *prefix*, sorted by key."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return object content. Raises BlobNotFoundError if missing."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "application/json") -> BlobInfo:
        """Create or overwrite an object."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete an object. Returns False if it did not exist."""

    @abstractmethod
    def url(self, key: str) -> str:
        """Public read URL for *key*."""

    def exists(self, key: str) -> bool:
        """Return True if an object with exactly this key exists."""
        return any(info.key == key for info in self.list(key))

    def get_text(self, key: str) -> str:
        return self.get(key).decode("utf-8", errors="replace")
