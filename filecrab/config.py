import os
import re
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so env vars are available for YAML interpolation
load_dotenv(Path.cwd() / ".env")

# Pattern to match $VAR_NAME environment variable references
ENV_VAR_PATTERN = re.compile(r"\$([A-Z_][A-Z0-9_]*)")

ENV_VAR = "FILECRAB_ENV"

_config_path_override: Path | None = None


def set_config_path(path: Path | None) -> None:
    """Use *path* instead of the environment-based app.yaml lookup."""
    global _config_path_override
    _config_path_override = path


def get_config_path() -> Path:
    """Return the YAML config path for the current environment.

    ``FILECRAB_ENV=staging`` resolves to ``app.staging.yaml``; without it the
    plain ``app.yaml`` in the working directory is used.
    """
    if _config_path_override is not None:
        return _config_path_override
    env = os.environ.get(ENV_VAR, "").strip()
    if env:
        return Path.cwd() / f"app.{env}.yaml"
    return Path.cwd() / "app.yaml"


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


def load_app_config() -> dict:
    """Load and parse the YAML config with environment variable interpolation."""
    config_path = get_config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"{config_path.name} not found at {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    return interpolate_env_vars(config)


class DatabaseConfig(BaseModel):
    """Database connection configuration for the SQL metadata index."""

    url: str = "sqlite+aiosqlite:///./filecrab.db"
    pool_size: int = 5
    pool_overflow: int = 10
    pool_timeout: int = 30
    pool_pre_ping: bool = False
    echo: bool = False
    create_all: bool = True


class IndexConfig(BaseModel):
    """Metadata index selection: ``sqlalchemy``, ``memory`` or ``module:ClassName``."""

    backend: str = "sqlalchemy"


class S3Config(BaseModel):
    bucket: str = "filecrab"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    prefix: str = ""


class StorageConfig(BaseModel):
    """Object store selection: ``local``, ``s3`` or ``module:ClassName``."""

    backend: str = "local"
    local_path: str = "./data/blobs"
    s3: S3Config = S3Config()


class CollectorConfig(BaseModel):
    enabled: bool = True


class RateLimitConfig(BaseModel):
    """Per-IP rate limits. Write endpoints (upload, paste) get the stricter limit."""

    enabled: bool = True
    requests_per_minute: int = 60
    write_requests_per_minute: int = 10
    paths: dict[str, int] = {}


class LogfireConfig(BaseModel):
    enabled: bool = False
    service_name: str = "filecrab"
    environment: str | None = None
    sample_rate: float = 1.0
    console: bool = False


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    # Application
    debug: bool = False
    api_key: str = ""

    # Transfer limits
    default_expire_time: int = 24  # hours
    maximum_file_size: int = 250  # MiB
    cleanup_interval: int = 60  # seconds

    # Nested config (loaded from app.yaml)
    db: DatabaseConfig = DatabaseConfig()
    index: IndexConfig = IndexConfig()
    storage: StorageConfig = StorageConfig()
    collector: CollectorConfig = CollectorConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    logfire: LogfireConfig = LogfireConfig()

    @property
    def default_ttl(self) -> timedelta:
        return timedelta(hours=self.default_expire_time)

    @property
    def max_body_bytes(self) -> int:
        return self.maximum_file_size * 1024 * 1024


# Flat S3_* variables understood for compatibility with container deployments
_S3_ENV_FIELDS = {
    "S3_BUCKET_NAME": "bucket",
    "S3_REGION": "region",
    "S3_ENDPOINT": "endpoint_url",
    "S3_ACCESS_KEY": "access_key_id",
    "S3_SECRET_KEY": "secret_access_key",
}


def _storage_from_env(storage: dict) -> dict:
    s3_values = {
        field: os.environ[var] for var, field in _S3_ENV_FIELDS.items() if os.environ.get(var)
    }
    if not s3_values:
        return storage
    storage = dict(storage)
    storage.setdefault("backend", "s3")
    storage["s3"] = {**s3_values, **storage.get("s3", {})}
    return storage


@lru_cache
def get_settings() -> Settings:
    """Load settings from .env, the environment and the YAML config."""
    try:
        app_config = load_app_config()
    except FileNotFoundError:
        app_config = {}

    # An "environment" key selects the environment for later lookups
    environment = app_config.pop("environment", None)
    if environment:
        os.environ[ENV_VAR] = str(environment)

    app_config["storage"] = _storage_from_env(app_config.get("storage", {}))

    values = {k: v for k, v in app_config.items() if k in Settings.model_fields}
    return Settings(**values)


def clear_settings_cache() -> None:
    get_settings.cache_clear()
