"""Configuration settings for crossbuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_source_dir() -> Path:
    """Return the default source directory (downloaded and extracted sources)."""
    return Path.cwd() / "source"


def _default_cache_dir() -> Path:
    """Return the default cache directory (validation tokens)."""
    return Path.cwd() / "cache"


def _default_log_dir() -> Path:
    """Return the default directory for per-package build logs."""
    return Path.cwd() / "logs"


def _default_image_dir() -> Path:
    """Return the default image tree root."""
    return Path.cwd() / "image"


def _default_image_output() -> Path:
    """Return the default packaged image path."""
    return Path.cwd() / "rootfs.img"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the XBUILD_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="XBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    source_dir: Path = Field(
        default_factory=_default_source_dir,
        description="Root directory for downloaded archives and extracted sources",
    )
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Directory holding HTTP validation tokens",
    )
    log_dir: Path = Field(
        default_factory=_default_log_dir,
        description="Directory for per-package build logs",
    )
    image_dir: Path = Field(
        default_factory=_default_image_dir,
        description="Root of the assembled image tree",
    )
    image_output: Path = Field(
        default_factory=_default_image_output,
        description="Path of the packaged filesystem image",
    )

    # Remote sources
    github_token: str | None = Field(
        default=None,
        description="GitHub token for tag lookups (overrides the manifest oauth_token)",
    )
    github_api_url: str = Field(
        default="https://api.github.com/graphql",
        description="GraphQL endpoint used for latest-tag lookups",
    )
    github_archive_base: str = Field(
        default="https://github.com",
        description="Base URL for tagged source archives",
    )
    verify_cached_sources: bool = Field(
        default=False,
        description="Re-fetch indexed sources whose directory no longer exists",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_downloads: int | None = Field(
        default=None,
        ge=1,
        description="Cap on concurrent fetch/extract tasks (default: one per package)",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=3600,
        ge=1,
        description="Timeout for source archive downloads",
    )
    build_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout for a single build step (unset = no timeout)",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    The GitHub token is masked.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    if settings.github_token:
        settings = settings.model_copy(update={"github_token": "***"})
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
