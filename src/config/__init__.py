"""Configuration module: exports Settings, load_config and build_settings."""

from src.config.loader import build_settings, load_config
from src.config.settings import Settings

__all__ = ["Settings", "build_settings", "load_config"]
