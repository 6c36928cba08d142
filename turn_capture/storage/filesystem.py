"""FilesystemBlobStore: one file per object under a root directory."""

from __future__ import annotations

import mimetypes
import os
import tempfile
from pathlib import Path, PurePosixPath

from ..core.store import BlobStore
from ..types import BlobInfo, BlobNotFoundError

_CONTENT_TYPES = {
    ".json": "application/json",
    ".ndjson": "application/x-ndjson",
}


def _guess_content_type(key: str) -> str:
    suffix = PurePosixPath(key).suffix
    if suffix in _CONTENT_TYPES:
        return _CONTENT_TYPES[suffix]
    return mimetypes.guess_type(key)[0] or "application/octet-stream"


def _check_key(key: str) -> str:
    if not key or key.startswith("/") or "\\" in key:
        raise ValueError(f"Invalid blob key: {key!r}")
    parts = PurePosixPath(key).parts
    if any(p in ("..", ".") for p in parts):
        raise ValueError(f"Invalid blob key: {key!r}")
    return key


class FilesystemBlobStore(BlobStore):
    """Store objects as plain files; the key is the relative path."""

    def __init__(self, root: str | Path, public_base_url: str = "") -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self._ensure_root()

    def _ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root.joinpath(*PurePosixPath(_check_key(key)).parts)

    def _info(self, key: str, path: Path) -> BlobInfo:
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            size = 0
        return BlobInfo(
            key=key,
            url=self.url(key),
            size=size,
            content_type=_guess_content_type(key),
        )

    def list(self, prefix: str = "") -> list[BlobInfo]:
        results: list[BlobInfo] = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.startswith(".tmp-"):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                results.append(self._info(key, path))
        results.sort(key=lambda info: info.key)
        return results

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            raise BlobNotFoundError(key) from None

    def put(self, key: str, data: bytes, content_type: str = "application/json") -> BlobInfo:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a temp file in the same directory, then atomically replace
        fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        info = self._info(key, path)
        info.content_type = content_type
        return info

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self._path(key).resolve().as_uri()
