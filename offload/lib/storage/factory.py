"""Pick the ``RemoteFilesystem`` implementation from configuration."""

from __future__ import annotations

import importlib
from pathlib import Path
from typing import TYPE_CHECKING

from offload.lib.storage.local import LocalFilesystem

if TYPE_CHECKING:
    from offload.config import S3Config
    from offload.lib.hooks import HookRegistry
    from offload.lib.storage.base import RemoteFilesystem
    from offload.lib.storage.client import S3ClientProvider


def _load_backend_class(spec: str) -> type:
    """Import ``module:ClassName``."""
    module_path, sep, class_name = spec.partition(":")
    if not sep or not module_path or not class_name or ":" in class_name:
        raise ValueError(f"Invalid backend spec {spec!r}: expected 'module:ClassName'")
    return getattr(importlib.import_module(module_path), class_name)


def create_filesystem(
    config: S3Config,
    client: S3ClientProvider | None = None,
    hooks: HookRegistry | None = None,
) -> RemoteFilesystem:
    """Build the filesystem ``config.backend_type`` names.

    ``local`` mirrors the bucket under ``local_path``, ``s3`` talks to the
    object store through ``client`` (one is created if omitted), and a
    ``module:ClassName`` spec is instantiated with the config.
    """
    backend_type = config.backend_type

    if backend_type == "local":
        return LocalFilesystem(base_path=Path(config.local_path))

    if backend_type == "s3":
        from offload.lib.storage.client import S3ClientProvider
        from offload.lib.storage.s3 import S3Filesystem

        return S3Filesystem(config, client or S3ClientProvider(config, hooks), hooks)

    if ":" in backend_type:
        return _load_backend_class(backend_type)(config)

    raise ValueError(f"Unknown storage backend {backend_type!r}; use 'local', 's3' or 'module:ClassName'")
