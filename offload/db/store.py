"""SQLAlchemy-backed ``MetadataStore``."""

from __future__ import annotations

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from offload.config import DatabaseConfig
from offload.db.models import Attachment, Base
from offload.lib import observability
from offload.media import DerivativeDescriptor, MediaObject


def _sizes_to_json(sizes: dict[str, DerivativeDescriptor]) -> dict:
    return {name: info.to_dict() for name, info in sizes.items()}


def _sizes_from_json(data: dict | None) -> dict[str, DerivativeDescriptor]:
    return {name: DerivativeDescriptor.from_dict(name, info) for name, info in (data or {}).items()}


def to_media(row: Attachment) -> MediaObject:
    return MediaObject(
        id=row.id,
        path=row.path,
        mime_type=row.mime_type,
        sizes=_sizes_from_json(row.sizes),
        private=row.private,
        transcoded=row.transcoded,
        original_image=row.original_image,
        backup_sizes=_sizes_from_json(row.backup_sizes),
        filesize=row.filesize,
        width=row.width,
        height=row.height,
    )


def _apply(row: Attachment, media: MediaObject) -> None:
    row.path = media.path
    row.mime_type = media.mime_type
    row.sizes = _sizes_to_json(media.sizes)
    row.backup_sizes = _sizes_to_json(media.backup_sizes)
    row.original_image = media.original_image
    row.private = media.private
    row.transcoded = media.transcoded
    row.filesize = media.filesize
    row.width = media.width
    row.height = media.height


class SqlMetadataStore:
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def get(self, media_id: int) -> MediaObject | None:
        async with self._session_factory() as session:
            row = await session.get(Attachment, media_id)
            return to_media(row) if row else None

    async def save(self, media: MediaObject) -> None:
        async with self._session_factory() as session:
            row = await session.get(Attachment, media.id)
            if row is None:
                row = Attachment(id=media.id)
                session.add(row)
            _apply(row, media)
            await session.commit()

    async def delete(self, media_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(Attachment).where(Attachment.id == media_id))
            await session.commit()


async def create_metadata_store(config: DatabaseConfig) -> tuple[SqlMetadataStore, AsyncEngine]:
    """Connect, create the ``attachments`` table if needed and return the store."""
    engine = create_async_engine(config.url, echo=config.echo)
    observability.instrument_sqlalchemy(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return SqlMetadataStore(async_sessionmaker(engine, expire_on_commit=False)), engine
