"""The process-wide S3 client.

One aioboto3 client is opened on first use and shared by every operation
until ``close()``. The ``s3_session`` filter may supply the aioboto3 session
and ``s3_client_params`` may rewrite the keyword arguments the client is
built with.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any

import aioboto3
from botocore.config import Config

from offload.lib.hooks import S3_CLIENT_PARAMS, S3_SESSION, HookRegistry

if TYPE_CHECKING:
    from offload.config import S3Config


class S3ClientProvider:
    def __init__(self, config: S3Config, hooks: HookRegistry | None = None) -> None:
        self._config = config
        self._hooks = hooks or HookRegistry()
        self._client: Any = None
        self._stack: AsyncExitStack | None = None
        self._lock = asyncio.Lock()

    async def client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        config_kwargs: dict[str, Any] = {}

        if self._config.region:
            kwargs["region_name"] = self._config.region
            config_kwargs["signature_version"] = "s3v4"
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        if self._config.access_key_id and self._config.secret_access_key:
            kwargs["aws_access_key_id"] = self._config.access_key_id
            kwargs["aws_secret_access_key"] = self._config.secret_access_key
        if self._config.proxy:
            address = self._config.proxy.address
            config_kwargs["proxies"] = {"http": address, "https": address}
        if config_kwargs:
            kwargs["config"] = Config(**config_kwargs)

        return await self._hooks.apply_filters(S3_CLIENT_PARAMS, kwargs, self._config)

    async def session(self) -> Any:
        session = await self._hooks.apply_filters(S3_SESSION, None, self._config)
        return session or aioboto3.Session()

    async def get(self) -> Any:
        """Return the shared client, opening it on first use."""
        async with self._lock:
            if self._client is None:
                stack = AsyncExitStack()
                session = await self.session()
                kwargs = await self.client_kwargs()
                self._client = await stack.enter_async_context(session.client("s3", **kwargs))
                self._stack = stack
        return self._client

    async def close(self) -> None:
        """Release the shared client."""
        async with self._lock:
            if self._stack is not None:
                await self._stack.aclose()
            self._stack = None
            self._client = None
