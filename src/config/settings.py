"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# pydantic-settings reads configuration from TWO sources (in priority order):
#
#   1. **Environment variables**: e.g., CATALOG_DB_PATH=/srv/catalog.db
#      (highest priority, always wins)
#   2. **.env file**: key=value lines in the project root .env file
#      (lower priority, used for local development)
#
# Field name `max_batch_size` maps to env var `MAX_BATCH_SIZE`.
# Defaults apply when neither source sets a value.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Catalog ingestion settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Storage ===
    # Downloaded dumps live at <data_dir>/<YYYY-MM>/<file_type>.xml.gz
    data_dir: str = "./data/discogs-data"
    # One SQLite file holds both the catalog tables and processing_periods.
    catalog_db_path: str = "data/catalog.db"

    # === Upstream ===
    dump_base_url: str = "https://discogs-data-dumps.s3-us-west-2.amazonaws.com/data"
    download_timeout_seconds: float = 300.0
    download_retries: int = Field(default=3, ge=1)
    download_chunk_size: int = Field(default=1024 * 1024, ge=1024)

    # === Ingestion limits ===
    max_batch_size: int = Field(default=1000, ge=1)
    # 0 = unlimited
    max_records: int = Field(default=0, ge=0)
    batch_timeout_seconds: float = Field(default=30.0, gt=0)
    max_error_messages: int = Field(default=100, ge=1)
    count_unprocessed: bool = True

    # === Scheduling ===
    scheduler_enabled: bool = False
    download_check_interval_seconds: float = 24 * 60 * 60
    processing_check_interval_seconds: float = 60 * 60
    job_workers: int = Field(default=2, ge=1)
    # Run processing right after a successful download.
    auto_process_after_download: bool = True

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"
