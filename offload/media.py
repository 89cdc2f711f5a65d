"""Media library records: logical assets, their derivatives and locators."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from offload.lib.imaging import TARGET_EXTENSION, TARGET_MIME_TYPE


@dataclass(frozen=True)
class RemoteLocator:
    """Bucket + key address of one physical file in the object store."""

    bucket: str
    key: str
    query: str | None = None

    @property
    def path(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass
class DerivativeDescriptor:
    """One generated size of a media object.

    ``file`` is relative to the directory of the primary file.
    """

    size: str
    file: str
    width: int
    height: int
    mime_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "width": self.width,
            "height": self.height,
            "mime-type": self.mime_type,
        }

    @classmethod
    def from_dict(cls, size: str, data: dict[str, Any]) -> DerivativeDescriptor:
        return cls(
            size=size,
            file=data["file"],
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            mime_type=data.get("mime-type", ""),
        )


@dataclass
class MediaObject:
    """A logical uploaded asset and the record the host keeps for it."""

    id: int
    path: str
    mime_type: str
    sizes: dict[str, DerivativeDescriptor] = field(default_factory=dict)
    private: bool = False
    transcoded: bool = False
    original_image: str | None = None
    backup_sizes: dict[str, DerivativeDescriptor] = field(default_factory=dict)
    filesize: int | None = None
    width: int = 0
    height: int = 0

    @property
    def directory(self) -> str:
        return posixpath.dirname(self.path)

    @property
    def filename(self) -> str:
        return posixpath.basename(self.path)

    def sibling(self, name: str) -> str:
        """Full path of a file stored next to the primary file."""
        return posixpath.join(self.directory, name)

    def assert_single_format(self) -> None:
        """Raise ``ValueError`` if a transcoded object mixes formats."""
        if not self.transcoded:
            return
        files = [(self.filename, self.mime_type)]
        files.extend((d.file, d.mime_type) for d in self.sizes.values())
        for name, mime_type in files:
            if mime_type != TARGET_MIME_TYPE or not name.endswith(f".{TARGET_EXTENSION}"):
                raise ValueError(
                    f"Media {self.id} mixes formats: {name} ({mime_type})"
                )


@dataclass
class UploadedFile:
    """An inbound upload before it is handed to storage."""

    name: str
    type: str
    tmp_name: str
    size: int = 0
    error: int = 0


@runtime_checkable
class MetadataStore(Protocol):
    """Key-value document store for media records, owned by the host."""

    async def get(self, media_id: int) -> MediaObject | None:
        ...

    async def save(self, media: MediaObject) -> None:
        ...

    async def delete(self, media_id: int) -> None:
        ...


class InMemoryMetadataStore:
    """Dict-backed ``MetadataStore``."""

    def __init__(self, records: dict[int, MediaObject] | None = None) -> None:
        self._records: dict[int, MediaObject] = dict(records or {})

    async def get(self, media_id: int) -> MediaObject | None:
        return self._records.get(media_id)

    async def save(self, media: MediaObject) -> None:
        self._records[media.id] = media

    async def delete(self, media_id: int) -> None:
        self._records.pop(media_id, None)
