"""Image codec interface and its Pillow implementation."""

from __future__ import annotations

import io
from typing import Protocol

import httpx
from PIL import Image, ImageOps

from offload.lib.imaging import (
    CONTENT_TYPE_TO_FORMAT,
    DEFAULT_QUALITY,
    FORMAT_TO_CONTENT_TYPE,
)

_MODES_WITHOUT_ALPHA = {"JPEG": "RGB"}
_WEBP_MODES = {"RGB", "RGBA"}


class ImageCodec(Protocol):
    """Load, transform and encode one in-memory image."""

    mime_type: str | None

    @property
    def size(self) -> tuple[int, int]:
        ...

    def load(self, source: str) -> None:
        ...

    def copy(self) -> ImageCodec:
        ...

    def resize(self, max_width: int, max_height: int | None, crop: bool = False) -> bool:
        ...

    def set_format(self, mime_type: str, quality: int) -> None:
        ...

    def encode(self, target: str, mime_type: str | None = None) -> tuple[int, int]:
        ...


class PillowCodec:
    """``ImageCodec`` backed by Pillow.

    ``load`` accepts a local path or an ``http(s)`` URL.
    """

    def __init__(self, quality: int = DEFAULT_QUALITY) -> None:
        self.image: Image.Image | None = None
        self.mime_type: str | None = None
        self.quality = quality

    @property
    def size(self) -> tuple[int, int]:
        return self._require().size

    def _require(self) -> Image.Image:
        if self.image is None:
            raise RuntimeError("No image loaded")
        return self.image

    def load(self, source: str) -> None:
        if source.startswith(("http://", "https://")):
            response = httpx.get(source, follow_redirects=True, timeout=30.0)
            response.raise_for_status()
            image = Image.open(io.BytesIO(response.content))
        else:
            image = Image.open(source)
        # Read pixel data now so the source file can be removed afterwards
        image.load()
        self.mime_type = FORMAT_TO_CONTENT_TYPE.get(image.format or "", "image/png")
        self.image = ImageOps.exif_transpose(image)

    def copy(self) -> PillowCodec:
        clone = type(self)(quality=self.quality)
        clone.image = self._require().copy()
        clone.mime_type = self.mime_type
        return clone

    def resize(self, max_width: int, max_height: int | None, crop: bool = False) -> bool:
        """Resize in place, preserving aspect ratio. Never upscales.

        Returns ``False`` when the image already fits and nothing changed.
        """
        img = self._require()
        orig_w, orig_h = img.size

        if crop and max_height:
            if orig_w <= max_width and orig_h <= max_height:
                return False
            box = (min(max_width, orig_w), min(max_height, orig_h))
            self.image = ImageOps.fit(img, box, Image.LANCZOS)
            return True

        if max_height:
            # Fit within box
            if orig_w <= max_width and orig_h <= max_height:
                return False
            img = img.copy()
            img.thumbnail((max_width, max_height), Image.LANCZOS)
            self.image = img
            return True

        # Width-constrained only
        if orig_w <= max_width:
            return False
        ratio = max_width / orig_w
        self.image = img.resize((max_width, max(1, int(orig_h * ratio))), Image.LANCZOS)
        return True

    def set_format(self, mime_type: str, quality: int) -> None:
        fmt = CONTENT_TYPE_TO_FORMAT.get(mime_type)
        if fmt is None:
            raise ValueError(f"Unsupported output type: {mime_type}")
        Image.init()
        if fmt not in Image.SAVE:
            raise OSError(f"Pillow has no {fmt} encoder")
        self._require()
        self.mime_type = mime_type
        self.quality = quality

    def encode(self, target: str, mime_type: str | None = None) -> tuple[int, int]:
        """Write the image to ``target`` and return its dimensions."""
        img = self._require()
        fmt = CONTENT_TYPE_TO_FORMAT.get(mime_type or self.mime_type or "", "PNG")

        if fmt == "WEBP" and img.mode not in _WEBP_MODES:
            img = img.convert("RGBA" if "A" in img.getbands() or img.mode == "P" else "RGB")
        elif fmt in _MODES_WITHOUT_ALPHA and img.mode != _MODES_WITHOUT_ALPHA[fmt]:
            img = img.convert(_MODES_WITHOUT_ALPHA[fmt])

        save_kwargs: dict = {}
        if fmt == "JPEG":
            save_kwargs["quality"] = self.quality
            save_kwargs["optimize"] = True
        elif fmt == "PNG":
            save_kwargs["optimize"] = True
        elif fmt == "WEBP":
            save_kwargs["quality"] = self.quality

        img.save(target, format=fmt, **save_kwargs)
        return img.size


_EXIF_FIELDS = {
    0x010F: "make",
    0x0110: "camera",
    0x0112: "orientation",
    0x0132: "created_timestamp",
    0x010E: "caption",
    0x8298: "copyright",
    0x013B: "credit",
}


def read_exif(path: str) -> dict:
    """Pull the handful of EXIF fields a media library shows."""
    with Image.open(path) as image:
        exif = image.getexif()
        meta = {"width": image.width, "height": image.height}
    for tag, name in _EXIF_FIELDS.items():
        value = exif.get(tag)
        if value not in (None, ""):
            meta[name] = value.strip() if isinstance(value, str) else value
    return meta
