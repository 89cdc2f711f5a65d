"""S3-backed ``RemoteFilesystem``."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from collections.abc import AsyncIterator
from pathlib import Path
from typing import TYPE_CHECKING

from botocore.exceptions import ClientError

from offload.lib.hooks import S3_OBJECT_ACL, HookRegistry
from offload.lib.observability import span
from offload.lib.paths import SCHEME, parse_remote_path
from offload.media import RemoteLocator

if TYPE_CHECKING:
    from offload.config import S3Config
    from offload.lib.storage.client import S3ClientProvider

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _locate(path: str) -> RemoteLocator:
    locator = parse_remote_path(path)
    if locator is None:
        raise ValueError(f"Not an {SCHEME}:// path: {path!r}")
    return locator


def _is_not_found(exc: ClientError) -> bool:
    return str(exc.response.get("Error", {}).get("Code")) in _NOT_FOUND_CODES


class S3Filesystem:
    """Store objects in S3.

    New objects get the configured default ACL, which the ``s3_object_acl``
    filter may change per path. ``put_object`` is atomic, so a failed write
    never leaves a partial object behind.
    """

    def __init__(self, config: S3Config, client: S3ClientProvider, hooks: HookRegistry | None = None) -> None:
        self._config = config
        self._client = client
        self._hooks = hooks or HookRegistry()

    async def exists(self, path: str) -> bool:
        locator = _locate(path)
        s3 = await self._client.get()
        try:
            await s3.head_object(Bucket=locator.bucket, Key=locator.key)
        except ClientError as exc:
            if _is_not_found(exc):
                return False
            raise
        return True

    async def size(self, path: str) -> int:
        locator = _locate(path)
        s3 = await self._client.get()
        response = await s3.head_object(Bucket=locator.bucket, Key=locator.key)
        return int(response["ContentLength"])

    async def read_bytes(self, path: str) -> bytes:
        locator = _locate(path)
        s3 = await self._client.get()
        with span("s3.get_object", bucket=locator.bucket, key=locator.key):
            response = await s3.get_object(Bucket=locator.bucket, Key=locator.key)
            return await response["Body"].read()

    async def write_bytes(self, path: str, data: bytes, content_type: str | None = None) -> None:
        locator = _locate(path)
        put_kwargs: dict = {
            "Bucket": locator.bucket,
            "Key": locator.key,
            "Body": data,
            "ContentType": content_type or mimetypes.guess_type(locator.key)[0] or "application/octet-stream",
        }
        acl = await self._hooks.apply_filters(S3_OBJECT_ACL, self._config.object_acl, path)
        if acl:
            put_kwargs["ACL"] = acl

        s3 = await self._client.get()
        with span("s3.put_object", bucket=locator.bucket, key=locator.key, size=len(data)):
            await s3.put_object(**put_kwargs)
        logger.debug("Wrote %d bytes to %s", len(data), path)

    async def upload_file(self, local_path: str, path: str, content_type: str | None = None) -> None:
        data = await asyncio.to_thread(Path(local_path).read_bytes)
        await self.write_bytes(path, data, content_type)

    async def download_file(self, path: str, local_path: str) -> None:
        data = await self.read_bytes(path)
        await asyncio.to_thread(Path(local_path).write_bytes, data)

    async def copy(self, source: str, destination: str) -> None:
        src = _locate(source)
        dst = _locate(destination)
        copy_kwargs: dict = {
            "Bucket": dst.bucket,
            "Key": dst.key,
            "CopySource": {"Bucket": src.bucket, "Key": src.key},
        }
        acl = await self._hooks.apply_filters(S3_OBJECT_ACL, self._config.object_acl, destination)
        if acl:
            copy_kwargs["ACL"] = acl

        s3 = await self._client.get()
        with span("s3.copy_object", source=source, destination=destination):
            await s3.copy_object(**copy_kwargs)

    async def delete(self, path: str) -> None:
        locator = _locate(path)
        s3 = await self._client.get()
        with span("s3.delete_object", bucket=locator.bucket, key=locator.key):
            await s3.delete_object(Bucket=locator.bucket, Key=locator.key)

    async def list(self, prefix: str) -> AsyncIterator[str]:
        parsed = parse_remote_path(prefix)
        if parsed is None:
            return
        s3 = await self._client.get()
        paginator = s3.get_paginator("list_objects_v2")
        async for page in paginator.paginate(Bucket=parsed.bucket, Prefix=parsed.key):
            for obj in page.get("Contents", []):
                yield f"{SCHEME}://{parsed.bucket}/{obj['Key']}"
