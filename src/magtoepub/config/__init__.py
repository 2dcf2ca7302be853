"""Configuration module for MagToEpub."""

from magtoepub.config.settings import MagtoepubSettings, get_settings, reload_settings

__all__ = ["MagtoepubSettings", "get_settings", "reload_settings"]
