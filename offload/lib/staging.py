"""Scoped ownership of local temporary files.

Codecs need random-access local files; remote objects are mirrored into
temporaries for the length of one editing session. Every temporary a session
allocates is removed when the session ends, on success and on error alike.

Usage:
    async with StagingSession() as session:
        local = session.allocate("s3://bucket/uploads/photo.png")
        await filesystem.download_file("s3://bucket/uploads/photo.png", local)
        ...
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

TEMP_PREFIX = "offload-"


class StagingSession:
    def __init__(self, temp_dir: str | None = None) -> None:
        self._temp_dir = temp_dir
        self._files: list[str] = []
        self._by_logical: dict[str, str] = {}
        self._closed = False

    @property
    def files(self) -> list[str]:
        """Temporaries currently owned by the session."""
        return list(self._files)

    def allocate(self, logical_path: str | None = None, suffix: str = "", directory: str | None = None) -> str:
        """Create a fresh temporary file and take ownership of it.

        A session holds at most one temporary per logical file; allocating
        again for the same ``logical_path`` releases the previous one.
        ``directory`` overrides the session's temporary directory, e.g. to
        place the file next to the destination it will replace.
        """
        if self._closed:
            raise RuntimeError("Staging session already closed")
        if logical_path is not None and logical_path in self._by_logical:
            self.release(self._by_logical[logical_path])

        fd, path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=suffix, dir=directory or self._temp_dir)
        os.close(fd)
        self._files.append(path)
        if logical_path is not None:
            self._by_logical[logical_path] = path
        logger.debug("Allocated staging file %s for %s", path, logical_path or "<output>")
        return path

    def release(self, path: str | None) -> None:
        """Remove one temporary now. Failures are logged, not raised."""
        if path is None:
            return
        if path in self._files:
            self._files.remove(path)
        for logical, temp in list(self._by_logical.items()):
            if temp == path:
                del self._by_logical[logical]
        try:
            Path(path).unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to remove staging file %s", path, exc_info=True)

    def close(self) -> None:
        """Release every temporary the session still owns."""
        for path in list(self._files):
            self.release(path)
        self._closed = True

    def __enter__(self) -> StagingSession:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    async def __aenter__(self) -> StagingSession:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()
