"""Upload prefilters: run on an inbound file before storage sees it."""

from __future__ import annotations

import asyncio
import logging
import os
import posixpath
import tempfile
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

from offload.lib.codec import ImageCodec, PillowCodec
from offload.lib.imaging import TARGET_MIME_TYPE, ConversionPolicy, converted_filename
from offload.lib.storage.base import RemoteFilesystem
from offload.media import UploadedFile

logger = logging.getLogger(__name__)

UPLOAD_ERR_OK = 0


def _transcode(source: str, codec: ImageCodec, policy: ConversionPolicy) -> None:
    """Replace ``source`` with its WebP encoding."""
    codec.load(source)
    policy.convert(codec)

    fd, webp_tmp = tempfile.mkstemp(prefix="offload-webp-", dir=os.path.dirname(source) or None)
    os.close(fd)
    try:
        codec.encode(webp_tmp, TARGET_MIME_TYPE)
        os.replace(webp_tmp, source)
    except BaseException:
        Path(webp_tmp).unlink(missing_ok=True)
        raise


async def convert_original_prefilter(
    file: UploadedFile,
    policy: ConversionPolicy,
    codec_factory: Callable[[], ImageCodec] | None = None,
) -> UploadedFile:
    """Transcode a PNG/JPEG upload to WebP in place.

    A failed conversion never blocks the upload: the untouched original is
    returned instead.
    """
    if file.error != UPLOAD_ERR_OK or not file.tmp_name or not file.type:
        return file

    if not policy.should_convert(file.type):
        return file

    logger.info("Converting original image to WebP: %s (type: %s)", file.name, file.type)
    codec = codec_factory() if codec_factory else PillowCodec(quality=policy.quality)

    try:
        await asyncio.to_thread(_transcode, file.tmp_name, codec, policy)
    except Exception:
        logger.warning(
            "WebP conversion failed for %s, uploading original file", file.name, exc_info=True
        )
        return file

    converted = replace(
        file,
        type=TARGET_MIME_TYPE,
        name=converted_filename(file.name),
        size=os.path.getsize(file.tmp_name),
    )
    logger.info("Successfully converted to WebP: %s", converted.name)
    return converted


async def move_sideload_to_remote(file: UploadedFile, filesystem: RemoteFilesystem, basedir: str) -> UploadedFile:
    """Move a sideloaded temp file under ``<basedir>/tmp/`` on the remote store.

    The host later renames the temp file into place; doing that across the
    local disk and the object store would fail.
    """
    new_path = posixpath.join(basedir.rstrip("/"), "tmp", os.path.basename(file.tmp_name))
    await filesystem.upload_file(file.tmp_name, new_path, file.type or None)
    await asyncio.to_thread(Path(file.tmp_name).unlink, missing_ok=True)
    return replace(file, tmp_name=new_path)
