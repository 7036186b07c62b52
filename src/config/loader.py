"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ───────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml : Static defaults checked into the repo
#   2. .env file          : Local developer overrides (not committed)
#   3. Environment vars   : Set by the worker's deployment
#
# load_config() reads the YAML file first, then deep-merges the
# environment-based values on top.  build_settings() goes the other way
# round for code that wants a typed Settings object: YAML values become
# constructor defaults and real environment variables still win.
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path
from typing import Any

import yaml

from src.config.settings import Settings

# Maps config.yaml sections onto flat Settings field names.
_YAML_TO_SETTINGS: dict[tuple[str, str], str] = {
    ("storage", "data_dir"): "data_dir",
    ("storage", "catalog_db_path"): "catalog_db_path",
    ("download", "base_url"): "dump_base_url",
    ("download", "timeout_seconds"): "download_timeout_seconds",
    ("download", "retries"): "download_retries",
    ("download", "chunk_size"): "download_chunk_size",
    ("ingestion", "max_batch_size"): "max_batch_size",
    ("ingestion", "max_records"): "max_records",
    ("ingestion", "batch_timeout_seconds"): "batch_timeout_seconds",
    ("ingestion", "max_error_messages"): "max_error_messages",
    ("ingestion", "count_unprocessed"): "count_unprocessed",
    ("scheduler", "enabled"): "scheduler_enabled",
    ("scheduler", "download_check_interval_seconds"): "download_check_interval_seconds",
    ("scheduler", "processing_check_interval_seconds"): "processing_check_interval_seconds",
    ("scheduler", "workers"): "job_workers",
    ("scheduler", "auto_process_after_download"): "auto_process_after_download",
    ("logging", "level"): "log_level",
}


def _read_yaml(path: str | Path) -> dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        return {}
    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def load_config(path: str = "config/config.yaml") -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Fully resolved configuration dictionary.
    """
    yaml_config = _read_yaml(path)

    settings = Settings()
    env_overrides: dict[str, Any] = {}
    for (section, key), field_name in _YAML_TO_SETTINGS.items():
        # Only fields explicitly set through env/.env override the YAML.
        if field_name in settings.model_fields_set:
            env_overrides.setdefault(section, {})[key] = getattr(settings, field_name)
    env_overrides.setdefault("app", {})["env"] = settings.app_env

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def build_settings(path: str = "config/config.yaml", **overrides: Any) -> Settings:
    """Build a typed Settings object from config.yaml plus environment.

    Keyword ``overrides`` win over everything (used by the CLI flags).
    """
    yaml_config = _read_yaml(path)
    yaml_values: dict[str, Any] = {}
    for (section, key), field_name in _YAML_TO_SETTINGS.items():
        section_values = yaml_config.get(section) or {}
        if key in section_values:
            yaml_values[field_name] = section_values[key]

    env_settings = Settings()
    merged = {**yaml_values}
    for field_name in env_settings.model_fields_set:
        merged[field_name] = getattr(env_settings, field_name)
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**merged)


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
