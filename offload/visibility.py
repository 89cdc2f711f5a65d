"""Public/private access control for media objects.

A media object is a fan-out of physical files (primary, derivatives, the
pre-edit original and legacy backup sizes) that must always share one ACL.
Private objects are served through presigned URLs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import urlsplit

from botocore.exceptions import ClientError

from offload.lib.exceptions import AclUpdateFailedError
from offload.lib.hooks import (
    ATTACHMENT_FILES,
    ATTACHMENT_FILES_ACL_SET,
    IS_ATTACHMENT_PRIVATE,
    PRESIGNED_URL,
    PRIVATE_URL_EXPIRY,
    HookRegistry,
)
from offload.lib.observability import span
from offload.lib.paths import PathResolver
from offload.lib.storage.client import S3ClientProvider
from offload.media import MetadataStore, RemoteLocator

logger = logging.getLogger(__name__)

PUBLIC_READ = "public-read"
PRIVATE = "private"
ACLS = (PUBLIC_READ, PRIVATE)

DEFAULT_PRESIGN_EXPIRY = 6 * 60 * 60
DEFAULT_BATCH_CONCURRENCY = 25


def _error_code(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Code", "ClientError"))
    return type(exc).__name__


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Message", exc))
    return str(exc)


class VisibilityManager:
    def __init__(
        self,
        client: S3ClientProvider,
        resolver: PathResolver,
        metadata: MetadataStore,
        hooks: HookRegistry,
        presign_expiry: int = DEFAULT_PRESIGN_EXPIRY,
        batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._metadata = metadata
        self._hooks = hooks
        self._presign_expiry = presign_expiry
        self._batch_concurrency = batch_concurrency

    async def is_private(self, media_id: int) -> bool:
        """Whether the media object is private.

        Starts from the stored ``private`` flag (False for unknown objects);
        the ``is_attachment_private`` filter has the final say.
        """
        media = await self._metadata.get(media_id)
        stored = media.private if media is not None else False
        return bool(await self._hooks.apply_filters(IS_ATTACHMENT_PRIVATE, stored, media_id))

    async def list_physical_files(self, media_id: int) -> list[str]:
        """Every stored file of a media object, primary first."""
        media = await self._metadata.get(media_id)
        if media is None:
            return []

        files = [media.path]
        files.extend(media.sibling(info.file) for info in media.sizes.values())
        if media.original_image:
            files.append(media.sibling(media.original_image))
        # Backup sizes only store a filename relative to the primary file
        files.extend(media.sibling(info.file) for info in media.backup_sizes.values())

        return list(await self._hooks.apply_filters(ATTACHMENT_FILES, files, media_id))

    async def set_files_acl(self, media_id: int, acl: str) -> None:
        """Apply ``acl`` to every physical file in one pooled batch.

        Files that do not resolve to an ``s3://`` location are skipped.
        Already-applied updates are not rolled back when others fail.

        Raises:
            AclUpdateFailedError: if any update in the batch failed.
        """
        if acl not in ACLS:
            raise ValueError(f"Unsupported ACL {acl!r}; expected one of {ACLS}")

        files = await self.list_physical_files(media_id)
        locations = [
            location
            for location in map(self._resolver.reverse_local_path_to_locator, files)
            if location is not None
        ]

        s3 = await self._client.get()
        pool = asyncio.Semaphore(self._batch_concurrency)

        async def put_acl(location: RemoteLocator) -> Any:
            async with pool:
                return await s3.put_object_acl(Bucket=location.bucket, Key=location.key, ACL=acl)

        with span("offload.set_files_acl", media_id=media_id, acl=acl, count=len(locations)):
            results = await asyncio.gather(
                *(put_acl(location) for location in locations),
                return_exceptions=True,
            )

        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            first = errors[0]
            logger.warning(
                "ACL update to %s failed for %d of %d files of media %s",
                acl,
                len(errors),
                len(locations),
                media_id,
            )
            raise AclUpdateFailedError(_error_code(first), _error_message(first), errors)

        await self._hooks.do_action(ATTACHMENT_FILES_ACL_SET, media_id, acl)

    async def sign_url(self, url: str, media_id: int) -> str:
        """Return ``url`` with a fresh presigned query if the object is private.

        Public objects and URLs outside the bucket are returned unchanged.
        """
        if not await self.is_private(media_id):
            return url

        location = self._resolver.reverse_url_to_locator(url)
        if location is None:
            return url

        expires = await self._hooks.apply_filters(PRIVATE_URL_EXPIRY, self._presign_expiry, media_id)
        s3 = await self._client.get()
        with span("offload.presign", bucket=location.bucket, key=location.key):
            presigned = await s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": location.bucket, "Key": location.key},
                ExpiresIn=int(expires),
            )

        # An existing query (e.g. an earlier signature) would corrupt the new one
        signed = f"{url.split('?', 1)[0]}?{urlsplit(presigned).query}"
        return await self._hooks.apply_filters(PRESIGNED_URL, signed, media_id)

    async def sign_image_src(self, image: tuple | None, media_id: int | None) -> tuple | None:
        """Sign the URL of an ``(url, width, height)`` image source."""
        if not image or not media_id:
            return image
        url, *rest = image
        return (await self.sign_url(url, media_id), *rest)

    async def sign_srcset(self, sources: list[dict], media_id: int) -> list[dict]:
        """Sign every ``url`` in a responsive source set."""
        return [
            {**source, "url": await self.sign_url(source["url"], media_id)}
            for source in sources
        ]

    async def set_private_on_generate_metadata(self, metadata: dict, media_id: int) -> dict:
        """Make a freshly generated object private when policy says so."""
        if await self.is_private(media_id):
            await self.set_files_acl(media_id, PRIVATE)
        return metadata
