"""Image editing against remote objects.

``RemoteImageEditor`` wraps an ``ImageCodec`` and makes ``s3://`` objects look
like random-access local files: sources are copied into staging files before
decoding, and output is encoded into a staging file and then uploaded.
Output-format resolution runs through ``before_format`` and ``after_format``
callbacks; the conversion policy is the default ``after_format`` step.
"""

from __future__ import annotations

import asyncio
import logging
import os
import posixpath
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from offload.lib.codec import ImageCodec, PillowCodec
from offload.lib.exceptions import ConversionFailedError, NotFoundError, SaveFailedError
from offload.lib.imaging import (
    CONTENT_TYPE_TO_EXTENSION,
    TARGET_EXTENSION,
    TARGET_MIME_TYPE,
    ConversionPolicy,
    SizeSpec,
    converted_filename,
    original_filename,
)
from offload.lib.observability import span
from offload.lib.paths import PathResolver
from offload.lib.staging import StagingSession
from offload.lib.storage.base import RemoteFilesystem
from offload.media import DerivativeDescriptor

logger = logging.getLogger(__name__)

FormatHook = Callable[[str, str], tuple[str, str]]


@dataclass
class SavedImage:
    """Where an image was written and what it looks like."""

    path: str
    file: str
    width: int
    height: int
    mime_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "file": self.file,
            "width": self.width,
            "height": self.height,
            "mime-type": self.mime_type,
        }


def _is_url(path: str) -> bool:
    return path.startswith(("http://", "https://"))


class RemoteImageEditor:
    def __init__(
        self,
        path: str,
        codec: ImageCodec,
        filesystem: RemoteFilesystem,
        resolver: PathResolver,
        policy: ConversionPolicy,
        session: StagingSession,
    ) -> None:
        self.path = path
        self.staged_path: str | None = None
        self._codec = codec
        self._fs = filesystem
        self._resolver = resolver
        self._policy = policy
        self._session = session
        self._loaded = False
        self.before_format: list[FormatHook] = []
        self.after_format: list[FormatHook] = [policy.apply]

    @property
    def mime_type(self) -> str | None:
        return self._codec.mime_type

    @property
    def size(self) -> tuple[int, int]:
        return self._codec.size

    async def load(self) -> None:
        """Decode ``path``, staging it locally first when it is remote."""
        if self._loaded:
            return

        if not self._resolver.is_managed(self.path):
            if not _is_url(self.path) and not os.path.isfile(self.path):
                raise NotFoundError(self.path)
            await asyncio.to_thread(self._codec.load, self.path)
            self._loaded = True
            return

        if not await self._fs.exists(self.path):
            raise NotFoundError(self.path)

        staged = self._session.allocate(self.path)
        with span("offload.stage_in", path=self.path):
            await self._fs.download_file(self.path, staged)
        await asyncio.to_thread(self._codec.load, staged)
        self.staged_path = staged
        self._loaded = True
        logger.debug("Loaded %s via staging file %s", self.path, staged)

    async def resize(self, max_width: int, max_height: int | None, crop: bool = False) -> bool:
        return await asyncio.to_thread(self._codec.resize, max_width, max_height, crop)

    def generate_filename(
        self,
        suffix: str | None = None,
        dest_dir: str | None = None,
        extension: str | None = None,
    ) -> str:
        """``<dir>/<name>-<suffix>.<ext>``; suffix defaults to ``<w>x<h>``.

        A transcoded source (``photo.png.webp``) is named from its original
        name and converted again, giving ``photo-<suffix>.png.webp``.
        """
        directory = dest_dir or posixpath.dirname(self.path)
        basename = posixpath.basename(self.path)
        if suffix is None:
            width, height = self.size
            suffix = f"{width}x{height}"

        original = original_filename(basename)
        if original is not None and extension in (None, TARGET_EXTENSION):
            name, ext = posixpath.splitext(original)
            return posixpath.join(directory, converted_filename(f"{name}-{suffix}{ext}"))

        name, ext = posixpath.splitext(basename)
        ext = extension or ext.lstrip(".")
        return posixpath.join(directory, f"{name}-{suffix}.{ext}")

    def _source_extension(self, mime_type: str | None) -> str | None:
        return CONTENT_TYPE_TO_EXTENSION.get(mime_type or "")

    def resolve_output_format(self, filename: str | None, mime_type: str | None) -> tuple[str, str]:
        """Decide the destination filename and MIME type for a save."""
        mime_type = mime_type or self.mime_type or "image/png"
        if filename is None:
            filename = self.generate_filename(extension=self._source_extension(mime_type))

        for hook in self.before_format:
            filename, mime_type = hook(filename, mime_type)
        for hook in self.after_format:
            filename, mime_type = hook(filename, mime_type)

        return filename, mime_type

    async def save(self, filename: str | None = None, mime_type: str | None = None) -> SavedImage:
        """Encode the current image to ``filename`` (derived if omitted).

        Raises:
            SaveFailedError: if conversion, encoding or the final copy fails.
                The destination is left as it was.
        """
        source_mime = mime_type or self.mime_type
        filename, out_mime = self.resolve_output_format(filename, source_mime)
        return await self._write(self._codec, filename, out_mime)

    async def multi_resize(self, sizes: dict[str, SizeSpec]) -> dict[str, DerivativeDescriptor]:
        """Generate every derivative size from the loaded image.

        Every derivative is encoded in one pass format: WebP when the source
        is convertible or already transcoded, the source format otherwise.
        Derivatives are named by the same rule as the primary save. Sizes the
        image already fits inside are skipped.
        """
        source_mime = self.mime_type
        convert = self._policy.should_convert(source_mime)
        pass_mime = TARGET_MIME_TYPE if convert else source_mime
        logger.debug(
            "Starting multi_resize for %d sizes in %s (source %s)",
            len(sizes),
            pass_mime,
            source_mime,
        )

        results: dict[str, DerivativeDescriptor] = {}
        for size_name, spec in sizes.items():
            derivative = self._codec.copy()
            resized = await asyncio.to_thread(derivative.resize, spec.width, spec.height, spec.crop)
            if not resized:
                continue

            width, height = derivative.size
            filename = self.generate_filename(
                suffix=f"{width}x{height}",
                extension=self._source_extension(source_mime),
            )
            filename, _mime = self.resolve_output_format(filename, source_mime)
            saved = await self._write(derivative, filename, pass_mime)
            results[size_name] = DerivativeDescriptor(
                size=size_name,
                file=saved.file,
                width=saved.width,
                height=saved.height,
                mime_type=saved.mime_type,
            )
            logger.debug("Generated size %r: %s", size_name, saved.file)

        return results

    async def _write(self, codec: ImageCodec, filename: str, mime_type: str) -> SavedImage:
        if mime_type == TARGET_MIME_TYPE and codec.mime_type != TARGET_MIME_TYPE:
            try:
                self._policy.convert(codec)
            except ConversionFailedError as exc:
                logger.debug("WebP conversion failed for %s: %s", filename, exc)
                raise SaveFailedError(filename, str(exc)) from exc

        remote = self._resolver.is_managed(filename)
        temp = None

        try:
            # Local destinations are replaced atomically from a sibling temporary
            temp = self._session.allocate(directory=None if remote else os.path.dirname(filename) or ".")
            width, height = await asyncio.to_thread(codec.encode, temp, mime_type)
            if remote:
                with span("offload.stage_out", path=filename):
                    await self._fs.upload_file(temp, filename, mime_type)
            else:
                await asyncio.to_thread(os.replace, temp, filename)
        except Exception as exc:
            logger.debug("Failed to save %s: %s", filename, exc)
            raise SaveFailedError(filename, str(exc)) from exc
        finally:
            self._session.release(temp)

        logger.debug("Saved image to %s (%s)", filename, mime_type)
        return SavedImage(
            path=filename,
            file=posixpath.basename(filename),
            width=width,
            height=height,
            mime_type=mime_type,
        )


@asynccontextmanager
async def edit_image(
    path: str,
    filesystem: RemoteFilesystem,
    resolver: PathResolver,
    policy: ConversionPolicy,
    codec_factory: Callable[[], ImageCodec] | None = None,
) -> AsyncIterator[RemoteImageEditor]:
    """Open a loaded editor for ``path`` inside its own staging session."""
    async with StagingSession() as session:
        codec = codec_factory() if codec_factory else PillowCodec(quality=policy.quality)
        editor = RemoteImageEditor(path, codec, filesystem, resolver, policy, session)
        await editor.load()
        yield editor


async def copy_to_local(path: str, filesystem: RemoteFilesystem, session: StagingSession) -> str:
    """Stage one remote file so a reader that needs a real file can open it."""
    staged = session.allocate(path)
    await filesystem.download_file(path, staged)
    return staged
