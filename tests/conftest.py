"""Shared pytest fixtures."""

from pathlib import Path

import pytest
from botocore.exceptions import ClientError
from PIL import Image

from offload.config import S3Config, get_settings
from offload.lib.hooks import HookRegistry
from offload.lib.imaging import ConversionPolicy
from offload.lib.paths import PathResolver
from offload.lib.storage.local import LocalFilesystem
from offload.media import InMemoryMetadataStore

BUCKET = "media-bucket"
CONTENT_DIR = "/srv/site/content"


class FakeS3:
    """Records the S3 calls the pipeline makes."""

    def __init__(self, fail_keys=()):
        self.fail_keys = set(fail_keys)
        self.acl_calls = []
        self.presign_calls = []

    async def put_object_acl(self, Bucket, Key, ACL):
        self.acl_calls.append((Bucket, Key, ACL))
        if Key in self.fail_keys:
            raise ClientError(
                {"Error": {"Code": "AccessDenied", "Message": f"denied: {Key}"}},
                "PutObjectAcl",
            )
        return {}

    async def generate_presigned_url(self, operation, Params, ExpiresIn):
        self.presign_calls.append((operation, Params, ExpiresIn))
        return (
            f"https://{Params['Bucket']}.s3.amazonaws.com/{Params['Key']}"
            f"?X-Amz-Expires={ExpiresIn}&X-Amz-Signature=fresh"
        )


class FakeClientProvider:
    def __init__(self, s3=None):
        self.s3 = s3 or FakeS3()
        self.get_calls = 0
        self.closed = False

    async def get(self):
        self.get_calls += 1
        return self.s3

    async def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def hooks():
    return HookRegistry()


@pytest.fixture
def s3_config(tmp_path):
    return S3Config(
        bucket=BUCKET,
        content_dir=CONTENT_DIR,
        local_path=str(tmp_path / "bucket"),
    )


@pytest.fixture
def resolver(s3_config):
    return PathResolver.from_config(s3_config)


@pytest.fixture
def filesystem(s3_config):
    return LocalFilesystem(Path(s3_config.local_path))


@pytest.fixture
def policy():
    return ConversionPolicy()


@pytest.fixture
def metadata():
    return InMemoryMetadataStore()


@pytest.fixture
def fake_s3():
    return FakeS3()


@pytest.fixture
def client(fake_s3):
    return FakeClientProvider(fake_s3)


@pytest.fixture
def make_image(tmp_path):
    """Write a real image file and return its path."""

    def _make(name="photo.png", size=(400, 300), fmt="PNG", mode="RGB", directory=None):
        path = Path(directory or tmp_path) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new(mode, size, color=(200, 30, 30) if mode == "RGB" else None).save(path, format=fmt)
        return path

    return _make


@pytest.fixture
def remote_image(make_image, filesystem, tmp_path):
    """Upload an image into the local bucket and return its ``s3://`` path."""

    async def _upload(key="uploads/2024/05/photo.png", size=(400, 300), fmt="PNG"):
        local = make_image(name=f"src-{Path(key).name}", size=size, fmt=fmt, directory=tmp_path / "src")
        path = f"s3://{BUCKET}/{key}"
        await filesystem.upload_file(str(local), path)
        return path

    return _upload
