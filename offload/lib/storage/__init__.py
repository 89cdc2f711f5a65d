"""Object-store access for the media pipeline."""

from offload.lib.storage.base import RemoteFilesystem
from offload.lib.storage.factory import create_filesystem
from offload.lib.storage.local import LocalFilesystem

__all__ = ["LocalFilesystem", "RemoteFilesystem", "create_filesystem"]
