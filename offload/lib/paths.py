"""Translation between local upload paths, ``s3://`` paths and public URLs.

Three address spaces are involved:

* the local upload path the host believes it writes to
  (``/srv/site/content/uploads/2024/05/photo.png``),
* the remote path, which is the local path with the content root replaced by
  the bucket root (``s3://my-bucket/uploads/2024/05/photo.png``),
* the public URL (``https://my-bucket.s3.amazonaws.com/uploads/2024/05/photo.png``).

Everything here is pure string manipulation.
"""

from __future__ import annotations

from urllib.parse import urlsplit

from offload.media import RemoteLocator

SCHEME = "s3"


def _strip(value: str) -> str:
    return value.rstrip("/")


def _split_query(url: str) -> tuple[str, str | None]:
    base, sep, query = url.partition("?")
    return base, (query if sep else None)


def _replace_root(value: str, old_root: str, new_root: str) -> str | None:
    """Swap a leading ``old_root`` for ``new_root``; ``None`` if not under it."""
    if _strip(value) == old_root or value.startswith(old_root + "/"):
        return new_root + value[len(old_root):]
    return None


class PathResolver:
    def __init__(
        self,
        bucket: str,
        content_dir: str,
        bucket_url: str | None = None,
        endpoint_url: str | None = None,
        local_base_url: str | None = None,
    ) -> None:
        self.bucket = _strip(bucket)
        self.content_dir = _strip(content_dir)
        self._bucket_url = _strip(bucket_url) if bucket_url else None
        self._endpoint_url = _strip(endpoint_url) if endpoint_url else None
        self._local_base_url = _strip(local_base_url) if local_base_url is not None else None

    @classmethod
    def from_config(cls, config, bucket_url: str | None = None) -> PathResolver:
        """Build from an ``S3Config``; ``bucket_url`` overrides the configured one."""
        return cls(
            bucket=config.bucket,
            content_dir=config.content_dir,
            bucket_url=bucket_url or config.bucket_url,
            endpoint_url=config.endpoint_url,
            local_base_url=config.local_base_url if config.use_local else None,
        )

    @property
    def bucket_name(self) -> str:
        return self.bucket.split("/", 1)[0]

    @property
    def bucket_prefix(self) -> str:
        """Path embedded in the bucket setting, with a leading ``/`` (or empty)."""
        return self.bucket[len(self.bucket_name):]

    @property
    def remote_root(self) -> str:
        return f"{SCHEME}://{self.bucket}"

    @property
    def default_bucket_url(self) -> str:
        if self._endpoint_url:
            return f"{self._endpoint_url}/{self.bucket_name}{self.bucket_prefix}"
        return f"https://{self.bucket_name}.s3.amazonaws.com{self.bucket_prefix}"

    @property
    def bucket_url(self) -> str:
        """Base URL that ``remote_root`` maps onto."""
        if self._bucket_url:
            return self._bucket_url
        if self._local_base_url is not None:
            return f"{self._local_base_url}/s3/{self.bucket}"
        return self.default_bucket_url

    def is_managed(self, path: str | None) -> bool:
        """True when ``path`` lives under the remote root."""
        if not path:
            return False
        return _replace_root(path, self.remote_root, "") is not None

    def resolve_upload_root(self, local_root: str) -> str:
        """Replace the local content root with the remote root.

        Paths outside the content root, including ones already resolved,
        are returned unchanged.
        """
        resolved = _replace_root(local_root, self.content_dir, self.remote_root)
        return local_root if resolved is None else resolved

    def unresolve_upload_root(self, remote_path: str) -> str:
        """Inverse of ``resolve_upload_root``."""
        local = _replace_root(remote_path, self.remote_root, self.content_dir)
        return remote_path if local is None else local

    def resolve_url(self, remote_path: str) -> str:
        """Replace the remote root with the public bucket URL."""
        url = _replace_root(remote_path, self.remote_root, self.bucket_url)
        return remote_path if url is None else url

    def url_to_remote_path(self, url: str) -> str | None:
        """Inverse of ``resolve_url``; the query string is dropped."""
        base, _query = _split_query(url)
        return _replace_root(base, self.bucket_url, self.remote_root)

    def reverse_url_to_locator(self, url: str) -> RemoteLocator | None:
        """Recover bucket and key from a public URL.

        Returns ``None`` if the URL belongs neither to the default bucket URL
        nor to the configured base URL. Any query string is reported in
        ``RemoteLocator.query``.
        """
        base, query = _split_query(url)

        host_url = f"https://{self.bucket_name}.s3.amazonaws.com"
        if base.startswith(host_url + "/"):
            key = urlsplit(base).path.lstrip("/")
            if not key:
                return None
            return RemoteLocator(bucket=self.bucket_name, key=key, query=query)

        remote_path = _replace_root(base, self.bucket_url, self.remote_root)
        if remote_path is None:
            return None
        locator = self.reverse_local_path_to_locator(remote_path)
        if locator is None:
            return None
        return RemoteLocator(bucket=locator.bucket, key=locator.key, query=query)

    def reverse_local_path_to_locator(self, path: str) -> RemoteLocator | None:
        """Recover bucket and key from an ``s3://`` path; ``None`` for other schemes."""
        return parse_remote_path(path)

    def filter_upload_dir(self, dirs: dict, disable_url_replace: bool = False) -> dict:
        """Point a host upload-directory record at the bucket.

        ``dirs`` carries ``path``, ``basedir``, ``url`` and ``baseurl``.
        """
        dirs = dict(dirs)
        dirs["path"] = self.resolve_upload_root(dirs["path"])
        dirs["basedir"] = self.resolve_upload_root(dirs["basedir"])

        if not disable_url_replace:
            dirs["url"] = self.resolve_url(dirs["path"])
            dirs["baseurl"] = self.resolve_url(dirs["basedir"])

        return dirs


def parse_remote_path(path: str) -> RemoteLocator | None:
    """Split an ``s3://bucket/key`` path; ``None`` for other schemes or empty keys."""
    parsed = urlsplit(path)
    if parsed.scheme != SCHEME or not parsed.netloc:
        return None
    key = parsed.path.lstrip("/")
    if not key:
        return None
    return RemoteLocator(bucket=parsed.netloc, key=key)
