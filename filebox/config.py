"""Configuration for FileBox.

Two layers are involved:

* :class:`Settings` — process-wide defaults driven by environment variables
  (prefix ``FILEBOX_``).  A ``.env`` file in the working directory is loaded
  automatically when present.
* :class:`IntakeConfig` / :class:`ScannerConfig` — the per-session
  configuration surface.  Callers supply a partial mapping which is merged over
  the defaults derived from :class:`Settings`.

Usage::

    from filebox.config import IntakeConfig

    config = IntakeConfig.from_settings().merged(
        {"max_file_size": 5 * 1024 * 1024, "scanner": {"enabled": False}}
    )

The ``get_settings`` function is cached with ``functools.lru_cache``. Clear
the cache with ``get_settings.cache_clear()`` between tests that modify the
environment.
"""
from __future__ import annotations

import functools
from typing import Any, Mapping

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from filebox.core.constants import (
    ALLOWED_FILE_TYPES,
    CONCURRENT_SCAN_LIMIT,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MAX_TOTAL_SIZE,
    DEFAULT_SCAN_TIMEOUT_MS,
    UNLIMITED_FILES,
)


class Settings(BaseSettings):
    """FileBox process settings.

    Environment variables are read case-insensitively with the ``FILEBOX_``
    prefix, e.g. ``FILEBOX_MAX_FILE_SIZE=5242880``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FILEBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Admission limits
    max_file_size: int = Field(
        default=DEFAULT_MAX_FILE_SIZE,
        ge=1,
        description="Per-file size ceiling in bytes",
    )
    max_total_size: int = Field(
        default=DEFAULT_MAX_TOTAL_SIZE,
        ge=1,
        description="Aggregate size ceiling for one intake session in bytes",
    )
    max_files: int = Field(
        default=UNLIMITED_FILES,
        description="Maximum number of files per session; <= 0 means unlimited",
    )

    # Screening
    scanner_enabled: bool = Field(
        default=True,
        description="Disable only in trusted environments; not a security control",
    )
    scanner_remote_endpoint: str | None = Field(
        default=None,
        description="Optional remote scanner, e.g. https://scan.example.com/v1/scan or clamd://clamav:3310",
    )
    scanner_timeout_ms: int = Field(
        default=DEFAULT_SCAN_TIMEOUT_MS,
        ge=1,
        description="Timeout for one remote scan round trip in milliseconds",
    )
    scan_concurrency: int = Field(
        default=CONCURRENT_SCAN_LIMIT,
        ge=1,
        description="Maximum number of simultaneously in-flight screenings",
    )

    # Runtime
    log_level: str = Field(default="INFO", description="Root log level")
    environment: str = Field(
        default="production",
        description="Deployment environment: development, staging, or production",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached settings singleton."""
    return Settings()


class ScannerConfig(BaseModel):
    """Screener configuration: ``{enabled, remote_endpoint, timeout_ms}``."""

    model_config = {"frozen": True}

    enabled: bool = True
    remote_endpoint: str | None = None
    timeout_ms: int = Field(default=DEFAULT_SCAN_TIMEOUT_MS, ge=1)


class IntakeConfig(BaseModel):
    """Per-session intake configuration.

    All fields are optional on input; :meth:`merged` overlays a partial
    mapping on top of an existing (default) configuration.
    """

    model_config = {"frozen": True}

    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, ge=1)
    max_total_size: int = Field(default=DEFAULT_MAX_TOTAL_SIZE, ge=1)
    max_files: int = UNLIMITED_FILES
    allowed_extensions: tuple[str, ...] = ALLOWED_FILE_TYPES.extensions
    allowed_mime_types: tuple[str, ...] = ALLOWED_FILE_TYPES.mime_types
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)

    @field_validator("allowed_extensions")
    @classmethod
    def normalise_extensions(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(ext if ext.startswith(".") else f".{ext}" for ext in v)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> IntakeConfig:
        """Build the default configuration from process settings."""
        settings = settings or get_settings()
        return cls(
            max_file_size=settings.max_file_size,
            max_total_size=settings.max_total_size,
            max_files=settings.max_files,
            scanner=ScannerConfig(
                enabled=settings.scanner_enabled,
                remote_endpoint=settings.scanner_remote_endpoint,
                timeout_ms=settings.scanner_timeout_ms,
            ),
        )

    def merged(self, overrides: Mapping[str, Any] | None) -> IntakeConfig:
        """Return a new config with *overrides* merged over this one.

        The nested ``scanner`` mapping is merged key by key, so passing
        ``{"scanner": {"enabled": False}}`` keeps the configured timeout.
        """
        if not overrides:
            return self
        data = self.model_dump()
        for key, value in overrides.items():
            if key == "scanner" and isinstance(value, Mapping):
                data["scanner"] = {**data["scanner"], **value}
            elif key == "scanner" and isinstance(value, ScannerConfig):
                data["scanner"] = value.model_dump()
            else:
                data[key] = value
        return IntakeConfig.model_validate(data)
