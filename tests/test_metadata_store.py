"""Tests for the SQLAlchemy metadata store."""

import pytest
import pytest_asyncio

from offload.config import DatabaseConfig
from offload.db.store import create_metadata_store
from offload.media import DerivativeDescriptor, MediaObject, MetadataStore


@pytest_asyncio.fixture
async def store(tmp_path):
    store, engine = await create_metadata_store(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path}/media.db"))
    yield store
    await engine.dispose()


def _media(**overrides):
    fields = {
        "id": 1,
        "path": "s3://media-bucket/uploads/photo.png.webp",
        "mime_type": "image/webp",
        "sizes": {
            "thumbnail": DerivativeDescriptor("thumbnail", "photo.png-150x150.webp", 150, 150, "image/webp"),
        },
        "transcoded": True,
        "filesize": 1234,
        "width": 400,
        "height": 300,
    }
    fields.update(overrides)
    return MediaObject(**fields)


class TestSqlMetadataStore:
    @pytest.mark.asyncio
    async def test_satisfies_protocol(self, store):
        assert isinstance(store, MetadataStore)

    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        media = _media(original_image="photo-original.png")
        await store.save(media)
        assert await store.get(1) == media

    @pytest.mark.asyncio
    async def test_save_updates_existing_row(self, store):
        await store.save(_media())
        await store.save(_media(private=True, sizes={}))

        loaded = await store.get(1)
        assert loaded.private
        assert loaded.sizes == {}

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.save(_media())
        await store.delete(1)
        assert await store.get(1) is None
        await store.delete(1)

    @pytest.mark.asyncio
    async def test_unknown_id(self, store):
        assert await store.get(42) is None
