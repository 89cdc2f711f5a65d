"""Filesystem-like view of the object store, addressed by ``s3://`` paths."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable


@runtime_checkable
class RemoteFilesystem(Protocol):
    """Primitives the media pipeline needs from the object store.

    Writes are atomic: a failed write leaves the destination untouched.
    """

    async def exists(self, path: str) -> bool:
        """Check whether an object exists at ``path``."""
        ...

    async def size(self, path: str) -> int:
        """Size of the object in bytes."""
        ...

    async def read_bytes(self, path: str) -> bytes:
        """Retrieve the raw bytes stored at ``path``."""
        ...

    async def write_bytes(self, path: str, data: bytes, content_type: str | None = None) -> None:
        """Store ``data`` at ``path``."""
        ...

    async def upload_file(self, local_path: str, path: str, content_type: str | None = None) -> None:
        """Copy a local file to ``path``."""
        ...

    async def download_file(self, path: str, local_path: str) -> None:
        """Copy the object at ``path`` into a local file."""
        ...

    async def copy(self, source: str, destination: str) -> None:
        """Server-side copy between two remote paths."""
        ...

    async def delete(self, path: str) -> None:
        """Remove ``path``; missing objects are ignored."""
        ...

    def list(self, prefix: str) -> AsyncIterator[str]:
        """Yield every path starting with ``prefix``."""
        ...
