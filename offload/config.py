import os
import re
from functools import lru_cache
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file early so env vars are available for YAML interpolation
load_dotenv(Path.cwd() / ".env")

# Pattern to match $VAR_NAME environment variable references
ENV_VAR_PATTERN = re.compile(r"\$([A-Z_][A-Z0-9_]*)")

SIX_HOURS = 6 * 60 * 60


def interpolate_env_vars(value):
    """Recursively replace $VAR_NAME with os.environ values."""
    if isinstance(value, str):

        def replace(match):
            var = match.group(1)
            val = os.environ.get(var)
            if val is None:
                raise ValueError(f"Environment variable ${var} not set")
            return val

        return ENV_VAR_PATTERN.sub(replace, value)
    elif isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    return value


def get_config_path() -> Path:
    """Location of the YAML configuration file (``OFFLOAD_CONFIG`` overrides)."""
    return Path(os.environ.get("OFFLOAD_CONFIG", Path.cwd() / "app.yaml"))


def load_app_config() -> dict:
    """Load and parse app.yaml with environment variable interpolation."""
    config_path = get_config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"app.yaml not found at {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    return interpolate_env_vars(config)


class ProxyConfig(BaseModel):
    """Outbound HTTP proxy for object-store requests."""

    host: str
    port: int
    username: str | None = None
    password: str | None = None

    @property
    def address(self) -> str:
        auth = ""
        if self.username and self.password:
            auth = f"{self.username}:{self.password}@"
        return f"{auth}{self.host}:{self.port}"


class S3Config(BaseModel):
    """Object-store configuration.

    ``bucket`` may embed a key prefix (``my-bucket/site-a``); the bucket
    identifier is always the part before the first ``/``.
    """

    bucket: str = ""
    bucket_url: str | None = None
    region: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    endpoint_url: str | None = None
    object_acl: str = "public-read"
    use_local: bool = False
    local_path: str = "./s3-local"
    local_base_url: str = "/uploads"
    disable_replace_upload_url: bool = False
    content_dir: str = "./content"
    uploads_subdir: str = "uploads"
    webp_quality: int = 85
    webp_enabled: bool = True
    presign_expiry: int = SIX_HOURS
    acl_batch_concurrency: int = 25
    proxy: ProxyConfig | None = None
    backend: str | None = None

    @field_validator("bucket", "content_dir")
    @classmethod
    def _strip_trailing_separator(cls, value: str) -> str:
        return value.rstrip("/") if value != "/" else value

    @field_validator("webp_quality")
    @classmethod
    def _check_quality(cls, value: int) -> int:
        if not 0 <= value <= 100:
            raise ValueError("webp_quality must be between 0 and 100")
        return value

    @property
    def bucket_name(self) -> str:
        return self.bucket.split("/", 1)[0]

    @property
    def backend_type(self) -> str:
        """``local``, ``s3`` or a ``module:ClassName`` spec."""
        if self.backend:
            return self.backend
        return "local" if self.use_local else "s3"


class DatabaseConfig(BaseModel):
    """Metadata record store connection configuration."""

    url: str = "sqlite+aiosqlite:///./offload.db"
    echo: bool = False


class LogfireConfig(BaseModel):
    """Optional Pydantic Logfire tracing."""

    enabled: bool = False
    service_name: str = "offload"
    environment: str | None = None
    console: bool = False


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="OFFLOAD_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    debug: bool = False

    # Loaded from the ``s3`` section of app.yaml or OFFLOAD_S3__* variables
    s3: S3Config = S3Config()

    db: DatabaseConfig = DatabaseConfig()

    logfire: LogfireConfig = LogfireConfig()


@lru_cache
def get_settings() -> Settings:
    """Load settings from the environment and app.yaml."""
    base_settings = Settings()

    try:
        app_config = load_app_config()
    except FileNotFoundError:
        return base_settings

    updates = {}

    if "s3" in app_config:
        updates["s3"] = S3Config(**app_config["s3"])

    if "db" in app_config:
        updates["db"] = DatabaseConfig(**app_config["db"])

    if "logfire" in app_config:
        updates["logfire"] = LogfireConfig(**app_config["logfire"])

    if updates:
        return base_settings.model_copy(update=updates)

    return base_settings
