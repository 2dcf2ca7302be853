"""Configuration settings using pydantic-settings."""

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict, YamlConfigSettingsSource

from magtoepub.config.constants import (
    API_KEY_ENV_VARS,
    CAPTION_BATCH_DELAY,
    CAPTION_BATCH_SIZE,
    CONTENT_IMAGE_JPEG_QUALITY,
    COVER_JPEG_QUALITY,
    COVER_RENDER_SCALE,
    DEFAULT_CAPTION_MODEL,
    DEFAULT_CONFIG_FILE,
    DEFAULT_LLM_TIMEOUT,
    DEFAULT_LOG_DIR,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_INITIAL_DELAY,
    DEFAULT_TEXT_MODEL,
    EXTRACTION_CONCURRENCY,
    FALLBACK_PAGE_WEIGHT,
    MAX_CHARS_PER_BATCH,
    MAX_IMAGE_WIDTH,
    MAX_PAGES_PER_BATCH,
    MIN_IMAGE_DIMENSION,
    PAGE_JPEG_QUALITY,
    PAGE_RENDER_SCALE,
    TEXT_BATCH_DELAY,
)
from magtoepub.exceptions import ConfigurationError


class LLMConfig(BaseModel):
    """Gemini configuration."""

    api_key: SecretStr | None = None
    caption_model: str = DEFAULT_CAPTION_MODEL
    text_model: str = DEFAULT_TEXT_MODEL
    timeout: int = Field(default=DEFAULT_LLM_TIMEOUT, ge=1)
    retry_attempts: int = Field(default=DEFAULT_RETRY_ATTEMPTS, ge=0)
    retry_initial_delay: float = Field(default=DEFAULT_RETRY_INITIAL_DELAY, ge=0)


class BatchingConfig(BaseModel):
    """Page batch planning configuration."""

    max_chars_per_batch: int = Field(default=MAX_CHARS_PER_BATCH, ge=1)
    max_pages_per_batch: int = Field(default=MAX_PAGES_PER_BATCH, ge=1)
    fallback_page_weight: int = Field(default=FALLBACK_PAGE_WEIGHT, ge=0)
    text_batch_delay: float = Field(default=TEXT_BATCH_DELAY, ge=0)


class ImageConfig(BaseModel):
    """Image extraction and captioning configuration."""

    min_dimension: int = Field(default=MIN_IMAGE_DIMENSION, ge=0)
    max_width: int = Field(default=MAX_IMAGE_WIDTH, ge=1)
    jpeg_quality: int = Field(default=CONTENT_IMAGE_JPEG_QUALITY, ge=0, le=100)
    cover_scale: float = Field(default=COVER_RENDER_SCALE, gt=0)
    cover_quality: int = Field(default=COVER_JPEG_QUALITY, ge=0, le=100)
    page_scale: float = Field(default=PAGE_RENDER_SCALE, gt=0)
    page_quality: int = Field(default=PAGE_JPEG_QUALITY, ge=0, le=100)
    extraction_concurrency: int = Field(default=EXTRACTION_CONCURRENCY, ge=1)
    caption_batch_size: int = Field(default=CAPTION_BATCH_SIZE, ge=1)
    caption_batch_delay: float = Field(default=CAPTION_BATCH_DELAY, ge=0)


class OutputConfig(BaseModel):
    """Output configuration."""

    default_dir: str = DEFAULT_OUTPUT_DIR
    save_markdown: bool = False


class MagtoepubSettings(BaseSettings):
    """Main configuration class for MagToEpub."""

    model_config = SettingsConfigDict(
        env_prefix="MAGTOEPUB_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings sources to include YAML file."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=DEFAULT_CONFIG_FILE),
            file_secret_settings,
        )

    # Sub-configurations
    llm: LLMConfig = Field(default_factory=LLMConfig)
    batching: BatchingConfig = Field(default_factory=BatchingConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    # Global settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_dir: str = DEFAULT_LOG_DIR

    def get_api_key(self) -> str | None:
        """Resolve the API key from config, then the well-known env vars."""
        if self.llm.api_key is not None and self.llm.api_key.get_secret_value():
            return self.llm.api_key.get_secret_value()
        for env_var in API_KEY_ENV_VARS:
            value = os.environ.get(env_var)
            if value:
                return value
        return None

    def require_api_key(self) -> str:
        """Return the API key or fail before any stage runs.

        Raises:
            ConfigurationError: If no credential is configured
        """
        api_key = self.get_api_key()
        if not api_key:
            raise ConfigurationError(
                "No API key found. Set GOOGLE_API_KEY (or API_KEY / MAGTOEPUB_LLM__API_KEY)."
            )
        return api_key


@lru_cache
def get_settings() -> MagtoepubSettings:
    """Get cached settings instance."""
    return MagtoepubSettings()


def reload_settings() -> MagtoepubSettings:
    """Force reload settings (clear cache)."""
    get_settings.cache_clear()
    return get_settings()
