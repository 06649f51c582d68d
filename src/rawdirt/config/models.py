from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_RAW_EXTENSIONS = (
    ".rw2",
    ".cr2",
    ".cr3",
    ".nef",
    ".arw",
    ".dng",
    ".orf",
    ".raf",
    ".pef",
    ".srw",
    ".raw",
)


class AppSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    dry_run: bool = False


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int = 7


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = ""
    rotation: FileRotationSettings = FileRotationSettings()


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "INFO"
    file: FileLoggingSettings = FileLoggingSettings()


class StoreSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    backend: Literal["s3", "memory"] = "s3"
    bucket: str = ""
    region: str = ""
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    # S3 returns at most 1000 keys per list request
    list_page_size: int = Field(default=1000, ge=1, le=1000)


class ScanSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    raw_extensions: Sequence[str] = DEFAULT_RAW_EXTENSIONS
    max_objects_to_scan: int = Field(default=5000, ge=1)
    default_page_size: int = Field(default=50, ge=1)


class UrlSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    presign_expiry_seconds: int = Field(default=3600, ge=1)
    # Cached URLs are honored for this fraction of their validity window
    cache_expiry_ratio: float = Field(default=0.95, gt=0.0, lt=1.0)
    cleanup_interval_seconds: float = 600.0


class IndexSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str = "metadata/index.json"
    min_write_interval_seconds: float = Field(default=1.0, ge=0.0)


class ProcessingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    max_workers: int = Field(default=6, ge=1)
    thumbnail_size: int = Field(default=240, ge=1)
    thumbnail_quality: int = Field(default=60, ge=1, le=95)
    fetch_timeout_seconds: float = 120.0
    half_size: bool = False
    url_batch_size: int = Field(default=10, ge=1)

    # Unset keeps the baseline behavior: a hung job holds its slot indefinitely.
    job_timeout_seconds: Optional[float] = None


class SyncSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    debounce_seconds: float = 10.0
    retry_seconds: float = 30.0
    schedule_delay_seconds: float = 0.1
    local_cache_dir: str = "data/local-cache"


class ServerSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "127.0.0.1"
    port: int = 8080
    base_url: str = "http://127.0.0.1:8080"
    request_timeout_seconds: float = 300.0


class AppConfig(BaseModel):
    """
    Effective runtime configuration after applying all precedence rules.

    Precedence (highest first): environment overrides, .env values, YAML file, model defaults.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    app: AppSettings = AppSettings()
    logging: LoggingSettings = LoggingSettings()
    store: StoreSettings = StoreSettings()
    scan: ScanSettings = ScanSettings()
    urls: UrlSettings = UrlSettings()
    index: IndexSettings = IndexSettings()
    processing: ProcessingSettings = ProcessingSettings()
    sync: SyncSettings = SyncSettings()
    server: ServerSettings = ServerSettings()


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: str = "data/config/config.yaml"
    env_prefix: str = "RAWDIRT__"
    dotenv_path: Optional[str] = "data/.env"
