"""Wiring between the host CMS and the media pipeline.

``MediaOffload`` is created once by the host with an injected configuration,
hook registry and metadata store. ``setup()`` attaches it to the host hooks
and ``tear_down()`` detaches it and releases the shared S3 client.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from offload.config import S3Config
from offload.editor import RemoteImageEditor, copy_to_local, edit_image
from offload.intake import convert_original_prefilter, move_sideload_to_remote
from offload.lib import hooks as hook_names
from offload.lib.codec import ImageCodec, read_exif
from offload.lib.hooks import HookRegistry
from offload.lib.imaging import (
    CONTENT_TYPE_TO_FORMAT,
    IMAGE_SIZES,
    TARGET_MIME_TYPE,
    ConversionPolicy,
    SizeSpec,
    add_webp_mime_type,
    converted_filename,
    enable_webp_support,
    original_filename,
)
from offload.lib.paths import PathResolver
from offload.lib.staging import StagingSession
from offload.lib.storage import RemoteFilesystem, create_filesystem
from offload.lib.storage.client import S3ClientProvider
from offload.media import MediaObject, MetadataStore, UploadedFile
from offload.visibility import PRIVATE, VisibilityManager

logger = logging.getLogger(__name__)


class MediaOffload:
    def __init__(
        self,
        config: S3Config,
        hooks: HookRegistry,
        metadata: MetadataStore,
        filesystem: RemoteFilesystem | None = None,
        client: S3ClientProvider | None = None,
        codec_factory: Callable[[], ImageCodec] | None = None,
    ) -> None:
        self.config = config
        self.hooks = hooks
        self.metadata = metadata
        self.client = client or S3ClientProvider(config, hooks)
        self.filesystem = filesystem or create_filesystem(config, self.client, hooks)
        self.resolver = PathResolver.from_config(config)
        self.visibility = VisibilityManager(
            self.client,
            self.resolver,
            metadata,
            hooks,
            presign_expiry=config.presign_expiry,
            batch_concurrency=config.acl_batch_concurrency,
        )
        self.original_upload_dir: dict | None = None
        self._codec_factory = codec_factory
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def upload_basedir(self) -> str:
        """Remote directory uploads are stored under."""
        local = posixpath.join(self.config.content_dir, self.config.uploads_subdir)
        return self.resolver.resolve_upload_root(local)

    # -- lifecycle --

    def _host_filters(self) -> list[tuple[str, Callable[..., Any], int]]:
        return [
            (hook_names.UPLOAD_DIR, self.filter_upload_dir, 10),
            (hook_names.GENERATE_ATTACHMENT_METADATA, self.set_filesize_in_metadata, 10),
            (hook_names.GENERATE_ATTACHMENT_METADATA, self.visibility.set_private_on_generate_metadata, 10),
            (hook_names.ATTACHMENT_URL, self.visibility.sign_url, 10),
            (hook_names.ATTACHMENT_IMAGE_SRC, self.visibility.sign_image_src, 10),
            (hook_names.IMAGE_SRCSET, self.visibility.sign_srcset, 10),
            (hook_names.HANDLE_UPLOAD_PREFILTER, self.convert_original_prefilter, 10),
            (hook_names.HANDLE_SIDELOAD_PREFILTER, self.move_sideload_to_remote, 10),
            (hook_names.READ_IMAGE_METADATA, self.read_image_metadata, 10),
            (hook_names.UNIQUE_FILENAME_FILE_LIST, self.unique_filename_file_list, 10),
            (hook_names.UPLOAD_MIMES, add_webp_mime_type, 10),
            (hook_names.CHECK_FILETYPE_AND_EXT, enable_webp_support, 10),
        ]

    def _host_actions(self) -> list[tuple[str, Callable[..., Any], int]]:
        return [
            (hook_names.DELETE_ATTACHMENT, self.delete_attachment_files, 10),
        ]

    async def setup(self) -> None:
        """Attach to the host hooks. Calling it twice is a no-op."""
        if self._active:
            return
        for name, callback, priority in self._host_filters():
            self.hooks.add_filter(name, callback, priority)
        for name, callback, priority in self._host_actions():
            self.hooks.add_action(name, callback, priority)
        self._active = True
        logger.info("Media offload active for %s", self.resolver.remote_root)

    async def tear_down(self) -> None:
        """Detach from the host hooks and close the S3 client."""
        for name, callback, _priority in self._host_filters():
            self.hooks.remove_filter(name, callback)
        for name, callback, _priority in self._host_actions():
            self.hooks.remove_action(name, callback)
        self._active = False
        await self.client.close()

    # -- conversion --

    async def conversion_policy(self) -> ConversionPolicy:
        quality = await self.hooks.apply_filters(hook_names.WEBP_QUALITY, self.config.webp_quality)
        return ConversionPolicy(quality=int(quality), enabled=self.config.webp_enabled)

    @asynccontextmanager
    async def open_editor(
        self, path: str, policy: ConversionPolicy | None = None
    ) -> AsyncIterator[RemoteImageEditor]:
        """Loaded editor for ``path``; its staging files go away on exit."""
        policy = policy or await self.conversion_policy()
        async with edit_image(path, self.filesystem, self.resolver, policy, self._codec_factory) as editor:
            yield editor

    async def convert_original_prefilter(self, file: UploadedFile) -> UploadedFile:
        policy = await self.conversion_policy()
        return await convert_original_prefilter(file, policy, self._codec_factory)

    async def move_sideload_to_remote(self, file: UploadedFile) -> UploadedFile:
        return await move_sideload_to_remote(file, self.filesystem, self.upload_basedir)

    # -- host filters --

    def filter_upload_dir(self, dirs: dict) -> dict:
        self.original_upload_dir = dirs
        return self.resolver.filter_upload_dir(dirs, self.config.disable_replace_upload_url)

    async def set_filesize_in_metadata(self, metadata: dict, media_id: int) -> dict:
        """Record the primary file's size so the host never has to stat S3."""
        if "filesize" in metadata:
            return metadata
        media = await self.metadata.get(media_id)
        if media is None or not await self.filesystem.exists(media.path):
            return metadata
        return {**metadata, "filesize": await self.filesystem.size(media.path)}

    async def read_image_metadata(self, meta: dict, path: str) -> dict:
        """EXIF readers need a real file, so remote images are staged first."""
        if not self.resolver.is_managed(path):
            return {**meta, **await asyncio.to_thread(read_exif, path)}
        async with StagingSession() as session:
            local = await copy_to_local(path, self.filesystem, session)
            return {**meta, **await asyncio.to_thread(read_exif, local)}

    async def unique_filename_file_list(self, files: list[str] | None, directory: str, filename: str) -> list[str]:
        """Names in ``directory`` sharing ``filename``'s stem, found with one prefix listing."""
        stem = posixpath.splitext(original_filename(filename) or filename)[0]
        prefix = posixpath.join(directory.rstrip("/"), stem)
        return [posixpath.basename(path) async for path in self.filesystem.list(prefix)]

    # -- media lifecycle --

    async def unique_filename(self, directory: str, filename: str) -> str:
        """``filename``, or the first free ``<stem>-N<ext>`` in ``directory``.

        Converted names keep the append rule: ``photo.png.webp`` becomes
        ``photo-1.png.webp``.
        """
        existing = set(await self.unique_filename_file_list(None, directory, filename))
        original = original_filename(filename)
        stem, ext = posixpath.splitext(original or filename)
        candidate = filename
        number = 0
        while candidate in existing:
            number += 1
            candidate = f"{stem}-{number}{ext}"
            if original is not None:
                candidate = converted_filename(candidate)
        return candidate

    async def ingest(
        self,
        file: UploadedFile,
        media_id: int,
        subdir: str = "",
        sizes: dict[str, SizeSpec] | None = None,
    ) -> MediaObject:
        """Store an upload, generate its derivatives and record it.

        PNG/JPEG uploads are transcoded to WebP first; a failed transcode
        stores the original instead.
        """
        original_type = file.type
        file = await self.convert_original_prefilter(file)

        directory = self.upload_basedir
        if subdir.strip("/"):
            directory = posixpath.join(directory, subdir.strip("/"))
        filename = await self.unique_filename(directory, file.name)
        path = posixpath.join(directory, filename)

        await self.filesystem.upload_file(file.tmp_name, path, file.type)

        media = MediaObject(
            id=media_id,
            path=path,
            mime_type=file.type,
            transcoded=file.type == TARGET_MIME_TYPE and original_type != TARGET_MIME_TYPE,
            filesize=file.size or await self.filesystem.size(path),
        )
        await self.metadata.save(media)

        if file.type in CONTENT_TYPE_TO_FORMAT:
            media = await self.generate_derivatives(media_id, sizes)

        if await self.visibility.is_private(media_id):
            await self.visibility.set_files_acl(media_id, PRIVATE)
            media.private = True
            await self.metadata.save(media)

        return media

    async def generate_derivatives(self, media_id: int, sizes: dict[str, SizeSpec] | None = None) -> MediaObject:
        """Regenerate every derivative size of an image and update its record."""
        media = await self.metadata.get(media_id)
        if media is None:
            raise KeyError(f"Unknown media object: {media_id}")

        policy = await self.conversion_policy()
        if policy.should_convert(media.mime_type):
            # The primary kept its original format, so its derivatives do too
            policy = ConversionPolicy(quality=policy.quality, enabled=False)

        async with self.open_editor(media.path, policy) as editor:
            media.width, media.height = editor.size
            media.sizes = await editor.multi_resize(sizes if sizes is not None else IMAGE_SIZES)

        media.assert_single_format()
        await self.metadata.save(media)
        return media

    async def delete_attachment_files(self, media_id: int) -> None:
        """Remove every stored file of a media object, then its record."""
        files = await self.visibility.list_physical_files(media_id)
        for path in files:
            if self.resolver.is_managed(path):
                await self.filesystem.delete(path)
        await self.metadata.delete(media_id)

    async def render_url(self, media_id: int) -> str | None:
        """Public URL of a media object, signed when it is private."""
        media = await self.metadata.get(media_id)
        if media is None:
            return None
        return await self.visibility.sign_url(self.resolver.resolve_url(media.path), media_id)
