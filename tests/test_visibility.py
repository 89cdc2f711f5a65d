"""Tests for public/private visibility and presigned URLs."""

import pytest
import pytest_asyncio

from offload.lib.exceptions import AclUpdateFailedError
from offload.lib.hooks import (
    ATTACHMENT_FILES,
    ATTACHMENT_FILES_ACL_SET,
    IS_ATTACHMENT_PRIVATE,
    PRESIGNED_URL,
    PRIVATE_URL_EXPIRY,
)
from offload.media import DerivativeDescriptor, MediaObject
from offload.visibility import PRIVATE, PUBLIC_READ, VisibilityManager

from conftest import FakeClientProvider, FakeS3

BUCKET = "media-bucket"
PRIMARY = f"s3://{BUCKET}/uploads/2024/05/photo.png.webp"
URL = f"https://{BUCKET}.s3.amazonaws.com/uploads/2024/05/photo.png.webp"


def _sizes(*names):
    return {
        name: DerivativeDescriptor(name, f"photo.png-{name}.webp", 10, 10, "image/webp")
        for name in names
    }


@pytest_asyncio.fixture
async def media(metadata):
    obj = MediaObject(
        id=7,
        path=PRIMARY,
        mime_type="image/webp",
        sizes=_sizes("thumbnail", "medium"),
        original_image="photo-original.png",
        backup_sizes=_sizes("full-orig"),
        transcoded=True,
    )
    await metadata.save(obj)
    return obj


@pytest.fixture
def visibility(client, resolver, metadata, hooks):
    return VisibilityManager(client, resolver, metadata, hooks)


def make_private(hooks, *ids):
    hooks.add_filter(IS_ATTACHMENT_PRIVATE, lambda private, media_id: private or media_id in ids)


class TestPhysicalFiles:
    @pytest.mark.asyncio
    async def test_full_fan_out(self, visibility, media):
        files = await visibility.list_physical_files(7)
        assert files == [
            PRIMARY,
            f"s3://{BUCKET}/uploads/2024/05/photo.png-thumbnail.webp",
            f"s3://{BUCKET}/uploads/2024/05/photo.png-medium.webp",
            f"s3://{BUCKET}/uploads/2024/05/photo-original.png",
            f"s3://{BUCKET}/uploads/2024/05/photo.png-full-orig.webp",
        ]

    @pytest.mark.asyncio
    async def test_unknown_media(self, visibility):
        assert await visibility.list_physical_files(99) == []

    @pytest.mark.asyncio
    async def test_host_can_extend_list(self, visibility, media, hooks):
        hooks.add_filter(ATTACHMENT_FILES, lambda files, media_id: [*files, f"s3://{BUCKET}/extra.pdf"])
        files = await visibility.list_physical_files(7)
        assert files[-1] == f"s3://{BUCKET}/extra.pdf"


class TestSetFilesAcl:
    @pytest.mark.asyncio
    async def test_one_batch_for_every_file(self, visibility, media, client, fake_s3):
        await visibility.set_files_acl(7, PRIVATE)

        assert client.get_calls == 1
        assert sorted(key for _bucket, key, _acl in fake_s3.acl_calls) == sorted(
            [
                "uploads/2024/05/photo.png.webp",
                "uploads/2024/05/photo.png-thumbnail.webp",
                "uploads/2024/05/photo.png-medium.webp",
                "uploads/2024/05/photo-original.png",
                "uploads/2024/05/photo.png-full-orig.webp",
            ]
        )
        assert {acl for _bucket, _key, acl in fake_s3.acl_calls} == {PRIVATE}

    @pytest.mark.asyncio
    async def test_success_emits_action(self, visibility, media, hooks):
        seen = []
        hooks.add_action(ATTACHMENT_FILES_ACL_SET, lambda media_id, acl: seen.append((media_id, acl)))

        await visibility.set_files_acl(7, PUBLIC_READ)

        assert seen == [(7, PUBLIC_READ)]

    @pytest.mark.asyncio
    async def test_partial_failure(self, resolver, metadata, hooks, media):
        s3 = FakeS3(fail_keys={"uploads/2024/05/photo.png-medium.webp"})
        visibility = VisibilityManager(FakeClientProvider(s3), resolver, metadata, hooks)
        seen = []
        hooks.add_action(ATTACHMENT_FILES_ACL_SET, lambda media_id, acl: seen.append(media_id))

        with pytest.raises(AclUpdateFailedError) as exc_info:
            await visibility.set_files_acl(7, PRIVATE)

        assert exc_info.value.code == "AccessDenied"
        assert "photo.png-medium.webp" in exc_info.value.message
        assert len(exc_info.value.errors) == 1
        # Every file was attempted even though one failed
        assert len(s3.acl_calls) == 5
        assert seen == []

    @pytest.mark.asyncio
    async def test_files_outside_bucket_are_skipped(self, visibility, media, hooks, fake_s3):
        hooks.add_filter(ATTACHMENT_FILES, lambda files, media_id: [*files, "/var/www/legacy.png"])
        await visibility.set_files_acl(7, PRIVATE)
        assert len(fake_s3.acl_calls) == 5

    @pytest.mark.asyncio
    async def test_rejects_unknown_acl(self, visibility, media):
        with pytest.raises(ValueError):
            await visibility.set_files_acl(7, "authenticated-read")

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, client, resolver, metadata, hooks, media, fake_s3):
        visibility = VisibilityManager(client, resolver, metadata, hooks, batch_concurrency=1)
        await visibility.set_files_acl(7, PRIVATE)
        assert len(fake_s3.acl_calls) == 5


class TestSignUrl:
    @pytest.mark.asyncio
    async def test_stored_private_flag(self, visibility, metadata, media, fake_s3):
        media.private = True
        await metadata.save(media)

        assert await visibility.is_private(7)
        assert "X-Amz-Signature=fresh" in await visibility.sign_url(URL, 7)

    @pytest.mark.asyncio
    async def test_filter_overrides_stored_flag(self, visibility, metadata, media, hooks):
        media.private = True
        await metadata.save(media)
        hooks.add_filter(IS_ATTACHMENT_PRIVATE, lambda private, media_id: False)

        assert await visibility.sign_url(URL, 7) == URL

    @pytest.mark.asyncio
    async def test_public_url_unchanged(self, visibility, fake_s3):
        assert await visibility.sign_url(URL, 7) == URL
        assert fake_s3.presign_calls == []

    @pytest.mark.asyncio
    async def test_private_url_is_presigned(self, visibility, hooks, fake_s3):
        make_private(hooks, 7)

        signed = await visibility.sign_url(URL, 7)

        assert signed == f"{URL}?X-Amz-Expires=21600&X-Amz-Signature=fresh"
        assert fake_s3.presign_calls == [
            ("get_object", {"Bucket": BUCKET, "Key": "uploads/2024/05/photo.png.webp"}, 21600)
        ]

    @pytest.mark.asyncio
    async def test_existing_query_is_replaced(self, visibility, hooks):
        make_private(hooks, 7)
        signed = await visibility.sign_url(f"{URL}?X-Amz-Signature=stale&v=2", 7)
        assert signed == f"{URL}?X-Amz-Expires=21600&X-Amz-Signature=fresh"

    @pytest.mark.asyncio
    async def test_foreign_url_unchanged(self, visibility, hooks, fake_s3):
        make_private(hooks, 7)
        url = "https://cdn.example.org/other.png"
        assert await visibility.sign_url(url, 7) == url
        assert fake_s3.presign_calls == []

    @pytest.mark.asyncio
    async def test_expiry_and_result_filters(self, visibility, hooks, fake_s3):
        make_private(hooks, 7)
        hooks.add_filter(PRIVATE_URL_EXPIRY, lambda expires, media_id: 60)
        hooks.add_filter(PRESIGNED_URL, lambda url, media_id: url + "&tag=1")

        signed = await visibility.sign_url(URL, 7)

        assert fake_s3.presign_calls[0][2] == 60
        assert signed.endswith("X-Amz-Expires=60&X-Amz-Signature=fresh&tag=1")

    @pytest.mark.asyncio
    async def test_configured_expiry(self, client, resolver, metadata, hooks, fake_s3):
        visibility = VisibilityManager(client, resolver, metadata, hooks, presign_expiry=900)
        make_private(hooks, 7)
        await visibility.sign_url(URL, 7)
        assert fake_s3.presign_calls[0][2] == 900


class TestRenderingFilters:
    @pytest.mark.asyncio
    async def test_image_src(self, visibility, hooks):
        make_private(hooks, 7)
        url, width, height = await visibility.sign_image_src((URL, 150, 150), 7)
        assert "X-Amz-Signature=fresh" in url
        assert (width, height) == (150, 150)

    @pytest.mark.asyncio
    async def test_image_src_passthrough(self, visibility):
        assert await visibility.sign_image_src(None, 7) is None
        assert await visibility.sign_image_src((URL, 1, 1), None) == (URL, 1, 1)

    @pytest.mark.asyncio
    async def test_srcset(self, visibility, hooks):
        make_private(hooks, 7)
        sources = [{"url": URL, "descriptor": "w", "value": 300}]
        signed = await visibility.sign_srcset(sources, 7)
        assert signed[0]["url"].startswith(URL + "?")
        assert signed[0]["value"] == 300
        assert sources[0]["url"] == URL

    @pytest.mark.asyncio
    async def test_generate_metadata_applies_private_acl(self, visibility, hooks, media, fake_s3):
        make_private(hooks, 7)
        meta = {"width": 400}
        assert await visibility.set_private_on_generate_metadata(meta, 7) == meta
        assert {acl for _b, _k, acl in fake_s3.acl_calls} == {PRIVATE}

    @pytest.mark.asyncio
    async def test_generate_metadata_public_untouched(self, visibility, media, fake_s3):
        await visibility.set_private_on_generate_metadata({}, 7)
        assert fake_s3.acl_calls == []
