"""Action/filter hooks used as the seams between the host CMS and Offload.

Actions: Execute callbacks without modifying a value (side effects)
Filters: Execute callbacks that can modify a value (transformations)

The host owns a ``HookRegistry`` and hands it to ``MediaOffload``. There is no
module-level registry; every pipeline object receives the registry it should
consult.

Usage:
    from offload.lib.hooks import HookRegistry, IS_ATTACHMENT_PRIVATE

    hooks = HookRegistry()
    hooks.add_filter(IS_ATTACHMENT_PRIVATE, lambda private, media_id: media_id in secret_ids)

    private = await hooks.apply_filters(IS_ATTACHMENT_PRIVATE, False, media_id)
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

T = TypeVar("T")


@dataclass(order=True)
class HookHandler:
    """A registered hook handler with priority."""

    priority: int
    callback: Callable = field(compare=False)

    async def call(self, *args: Any, **kwargs: Any) -> Any:
        """Call the handler, handling both sync and async callbacks."""
        result = self.callback(*args, **kwargs)
        if asyncio.iscoroutine(result):
            return await result
        return result


class HookRegistry:
    """Registry of actions and filters for one host application."""

    def __init__(self) -> None:
        self._actions: dict[str, list[HookHandler]] = defaultdict(list)
        self._filters: dict[str, list[HookHandler]] = defaultdict(list)

    @staticmethod
    def _register(table: dict[str, list[HookHandler]], hook_name: str, callback: Callable, priority: int) -> None:
        table[hook_name].append(HookHandler(priority=priority, callback=callback))
        table[hook_name].sort()

    @staticmethod
    def _unregister(table: dict[str, list[HookHandler]], hook_name: str, callback: Callable) -> bool:
        handlers = table.get(hook_name, [])
        for i, handler in enumerate(handlers):
            if handler.callback == callback:
                handlers.pop(i)
                return True
        return False

    def add_action(self, hook_name: str, callback: Callable[..., Any], priority: int = 10) -> None:
        """Run ``callback`` whenever ``hook_name`` fires. Lower priorities run first."""
        self._register(self._actions, hook_name, callback, priority)

    def add_filter(self, hook_name: str, callback: Callable[..., T], priority: int = 10) -> None:
        """Pass ``hook_name`` values through ``callback``. Lower priorities run first.

        The callback receives the current value followed by the hook arguments
        and returns the replacement value.
        """
        self._register(self._filters, hook_name, callback, priority)

    def remove_action(self, hook_name: str, callback: Callable[..., Any]) -> bool:
        """Remove an action callback. Returns True if it was registered."""
        return self._unregister(self._actions, hook_name, callback)

    def remove_filter(self, hook_name: str, callback: Callable[..., Any]) -> bool:
        """Remove a filter callback. Returns True if it was registered."""
        return self._unregister(self._filters, hook_name, callback)

    def has_action(self, hook_name: str) -> bool:
        return bool(self._actions.get(hook_name))

    def has_filter(self, hook_name: str) -> bool:
        return bool(self._filters.get(hook_name))

    async def do_action(self, hook_name: str, *args: Any, **kwargs: Any) -> None:
        """Execute all registered action callbacks in priority order."""
        from offload.lib.observability import span

        with span(f"hook.action:{hook_name}", hook_name=hook_name):
            for handler in list(self._actions.get(hook_name, [])):
                await handler.call(*args, **kwargs)

    async def apply_filters(self, hook_name: str, value: T, *args: Any, **kwargs: Any) -> T:
        """Pass ``value`` through every registered filter and return the result.

        Additional positional and keyword arguments are forwarded to each
        callback after the value being filtered.
        """
        from offload.lib.observability import span

        with span(f"hook.filter:{hook_name}", hook_name=hook_name):
            for handler in list(self._filters.get(hook_name, [])):
                value = await handler.call(value, *args, **kwargs)
            return value

    def clear(self) -> None:
        """Clear all registered hooks. Useful for testing."""
        self._actions.clear()
        self._filters.clear()


# Filters consulted by the pipeline
IS_ATTACHMENT_PRIVATE = "is_attachment_private"
ATTACHMENT_FILES = "attachment_files"
WEBP_QUALITY = "webp_quality"
PRIVATE_URL_EXPIRY = "private_url_expiry"
PRESIGNED_URL = "presigned_url"
S3_CLIENT_PARAMS = "s3_client_params"
S3_SESSION = "s3_session"
S3_OBJECT_ACL = "s3_object_acl"

# Actions emitted by the pipeline
ATTACHMENT_FILES_ACL_SET = "attachment_files_acl_set"

# Host hooks the plugin attaches to on setup()
UPLOAD_DIR = "upload_dir"
DELETE_ATTACHMENT = "delete_attachment"
GENERATE_ATTACHMENT_METADATA = "generate_attachment_metadata"
ATTACHMENT_URL = "attachment_url"
ATTACHMENT_IMAGE_SRC = "attachment_image_src"
IMAGE_SRCSET = "image_srcset"
HANDLE_UPLOAD_PREFILTER = "handle_upload_prefilter"
HANDLE_SIDELOAD_PREFILTER = "handle_sideload_prefilter"
READ_IMAGE_METADATA = "read_image_metadata"
UNIQUE_FILENAME_FILE_LIST = "unique_filename_file_list"
UPLOAD_MIMES = "upload_mimes"
CHECK_FILETYPE_AND_EXT = "check_filetype_and_ext"
