"""Object store emulated on the local filesystem.

``s3://bucket/key`` maps to ``<base_path>/bucket/key``. Used for development
(``use_local``) and in tests.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from collections.abc import AsyncIterator
from pathlib import Path

from offload.lib.paths import SCHEME, parse_remote_path


class LocalFilesystem:
    def __init__(self, base_path: Path) -> None:
        self._base_path = Path(base_path)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._to_local(path).is_file)

    async def size(self, path: str) -> int:
        stat = await asyncio.to_thread(self._to_local(path).stat)
        return stat.st_size

    async def read_bytes(self, path: str) -> bytes:
        return await asyncio.to_thread(self._to_local(path).read_bytes)

    async def write_bytes(self, path: str, data: bytes, content_type: str | None = None) -> None:
        await asyncio.to_thread(self._atomic_write, self._to_local(path), data)

    async def upload_file(self, local_path: str, path: str, content_type: str | None = None) -> None:
        data = await asyncio.to_thread(Path(local_path).read_bytes)
        await self.write_bytes(path, data, content_type)

    async def download_file(self, path: str, local_path: str) -> None:
        await asyncio.to_thread(shutil.copyfile, self._to_local(path), local_path)

    async def copy(self, source: str, destination: str) -> None:
        data = await self.read_bytes(source)
        await self.write_bytes(destination, data)

    async def delete(self, path: str) -> None:
        await asyncio.to_thread(self._to_local(path).unlink, missing_ok=True)

    async def list(self, prefix: str) -> AsyncIterator[str]:
        for path in await asyncio.to_thread(self._walk):
            remote = f"{SCHEME}://{path.relative_to(self._base_path).as_posix()}"
            if remote.startswith(prefix):
                yield remote

    # -- internal helpers --

    def _to_local(self, path: str) -> Path:
        locator = parse_remote_path(path)
        if locator is None:
            raise ValueError(f"Not an {SCHEME}:// path: {path!r}")
        parts = [locator.bucket, *locator.key.split("/")]
        # Security: reject traversal and null bytes
        if ".." in parts or any("\x00" in part for part in parts):
            raise ValueError(f"Invalid object path: {path!r}")
        return self._base_path.joinpath(*parts)

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _walk(self) -> list[Path]:
        if not self._base_path.exists():
            return []
        return sorted(p for p in self._base_path.rglob("*") if p.is_file())
