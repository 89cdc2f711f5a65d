"""WebP conversion policy and image format helpers.

PNG and JPEG uploads are transcoded to WebP. The policy decides which MIME
types qualify and owns the one naming rule every derived filename goes
through: the ``.webp`` extension is appended to the existing name, so
``photo.png`` becomes ``photo.png.webp`` and its ``150x150`` derivative
becomes ``photo-150x150.png.webp``.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from typing import TYPE_CHECKING

from offload.lib.exceptions import ConversionFailedError

if TYPE_CHECKING:
    from offload.lib.codec import ImageCodec

logger = logging.getLogger(__name__)

TARGET_MIME_TYPE = "image/webp"
TARGET_EXTENSION = "webp"
DEFAULT_QUALITY = 85

# "image/jpg" is not a registered type but some servers report it
CONVERTIBLE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/jpg"})
CONVERTIBLE_EXTENSIONS = frozenset({"png", "jpg", "jpeg"})

FORMAT_TO_CONTENT_TYPE = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}

CONTENT_TYPE_TO_FORMAT = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
    "image/gif": "GIF",
}

CONTENT_TYPE_TO_EXTENSION = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


@dataclass(frozen=True)
class SizeSpec:
    """A derivative size: bounding box and whether to crop to it exactly.

    A ``height`` of ``None`` constrains the width only.
    """

    width: int
    height: int | None = None
    crop: bool = False


IMAGE_SIZES: dict[str, SizeSpec] = {
    "thumbnail": SizeSpec(150, 150, crop=True),
    "medium": SizeSpec(300, 300),
    "medium_large": SizeSpec(768),
    "large": SizeSpec(1024, 1024),
}


def detect_image_content_type(data: bytes) -> str | None:
    """Detect image content type from magic bytes.

    Returns ``None`` if the data does not match a known image signature.
    """
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return None


def should_convert(mime_type: str | None) -> bool:
    """True exactly for the PNG/JPEG allow-list; never for WebP itself."""
    convertible = mime_type in CONVERTIBLE_MIME_TYPES
    logger.debug(
        "WebP conversion check for %r: %s",
        mime_type,
        "convertible" if convertible else "not convertible",
    )
    return convertible


def converted_filename(filename: str) -> str:
    """Append the WebP extension: ``photo.png`` -> ``photo.png.webp``."""
    return f"{filename}.{TARGET_EXTENSION}"


def original_filename(filename: str) -> str | None:
    """Inverse of ``converted_filename``.

    Returns ``None`` when ``filename`` is not a converted PNG/JPEG name.
    """
    suffix = f".{TARGET_EXTENSION}"
    if not filename.endswith(suffix):
        return None
    original = filename[: -len(suffix)]
    extension = posixpath.splitext(original)[1].lstrip(".").lower()
    return original if extension in CONVERTIBLE_EXTENSIONS else None


def apply(filename: str, mime_type: str) -> tuple[str, str]:
    """Return the ``(filename, mime_type)`` an asset is stored under."""
    if not should_convert(mime_type):
        return filename, mime_type
    return converted_filename(filename), TARGET_MIME_TYPE


def convert_image(codec: ImageCodec, quality: int = DEFAULT_QUALITY) -> None:
    """Switch an in-memory image to WebP output at ``quality``.

    Raises:
        ConversionFailedError: if the codec cannot produce WebP.
    """
    logger.debug("Applying WebP format conversion with quality: %d", quality)
    try:
        codec.set_format(TARGET_MIME_TYPE, quality)
    except Exception as exc:
        raise ConversionFailedError(f"Failed to convert image to WebP: {exc}") from exc


@dataclass
class ConversionPolicy:
    """Conversion settings for one pipeline.

    ``enabled=False`` turns every image into a pass-through.
    """

    quality: int = DEFAULT_QUALITY
    enabled: bool = True

    def should_convert(self, mime_type: str | None) -> bool:
        return self.enabled and should_convert(mime_type)

    def apply(self, filename: str, mime_type: str) -> tuple[str, str]:
        if not self.enabled:
            return filename, mime_type
        return apply(filename, mime_type)

    def convert(self, codec: ImageCodec, quality: int | None = None) -> None:
        convert_image(codec, self.quality if quality is None else quality)


def enable_webp_support(data: dict, filename: str) -> dict:
    """Filetype check filter: recognise ``.webp`` uploads as ``image/webp``."""
    if filename.lower().endswith(f".{TARGET_EXTENSION}"):
        data = {**data, "ext": TARGET_EXTENSION, "type": TARGET_MIME_TYPE}
    return data


def add_webp_mime_type(mimes: dict[str, str]) -> dict[str, str]:
    """Allowed-MIME filter: permit WebP uploads."""
    return {**mimes, TARGET_EXTENSION: TARGET_MIME_TYPE}
