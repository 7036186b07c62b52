"""Unit tests for settings and the YAML config loader."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from src.config.loader import build_settings, load_config
from src.config.settings import Settings

_YAML = """\
storage:
  data_dir: /srv/dumps
  catalog_db_path: /srv/catalog.db
ingestion:
  max_batch_size: 250
  max_records: 1000
scheduler:
  enabled: true
  workers: 4
logging:
  level: DEBUG
"""


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(_YAML)
    return path


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.max_batch_size == 1000
        assert settings.max_records == 0
        assert settings.scheduler_enabled is False
        assert settings.download_check_interval_seconds == 86400

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_BATCH_SIZE", "42")
        monkeypatch.setenv("SCHEDULER_ENABLED", "true")
        settings = Settings()
        assert settings.max_batch_size == 42
        assert settings.scheduler_enabled is True

    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(max_batch_size=0)


class TestBuildSettings:
    def test_yaml_values_become_settings(self, config_file: Path) -> None:
        settings = build_settings(str(config_file))
        assert settings.data_dir == "/srv/dumps"
        assert settings.catalog_db_path == "/srv/catalog.db"
        assert settings.max_batch_size == 250
        assert settings.max_records == 1000
        assert settings.scheduler_enabled is True
        assert settings.job_workers == 4
        assert settings.log_level == "DEBUG"

    def test_env_beats_yaml(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_BATCH_SIZE", "77")
        assert build_settings(str(config_file)).max_batch_size == 77

    def test_overrides_beat_everything_and_none_is_ignored(self, config_file: Path) -> None:
        settings = build_settings(str(config_file), max_batch_size=5, data_dir=None)
        assert settings.max_batch_size == 5
        assert settings.data_dir == "/srv/dumps"

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = build_settings(str(tmp_path / "absent.yaml"))
        assert settings.max_batch_size == 1000


class TestLoadConfig:
    def test_returns_yaml_sections(self, config_file: Path) -> None:
        config = load_config(str(config_file))
        assert config["ingestion"]["max_batch_size"] == 250
        assert config["app"]["env"] == "development"

    def test_env_merged_into_section(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("JOB_WORKERS", "8")
        config = load_config(str(config_file))
        assert config["scheduler"]["workers"] == 8
        assert config["scheduler"]["enabled"] is True

    def test_repo_config_parses(self) -> None:
        config = load_config(str(Path(__file__).parents[2] / "config" / "config.yaml"))
        assert set(config) >= {"storage", "download", "ingestion", "scheduler", "logging"}
