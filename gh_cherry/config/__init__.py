"""Configuration loading for gh-cherry."""

from gh_cherry.config.settings import CherrySettings, default_config_path

__all__ = ["CherrySettings", "default_config_path"]
