"""
Base configuration for attachment-purge.

Settings class and helper functions shared by every entry point (CLI, MCP).
"""

from __future__ import annotations

import os
import pathlib
from typing import Literal, TypeVar

import lazy_object_proxy
import pydantic
import pydantic_settings

T = TypeVar('T', bound='PurgeSettings')

BodyBackupScope = Literal['records_with_payloads', 'all_selected']


class PurgeSettings(pydantic_settings.BaseSettings):
    """Backup, verification and deletion tuning."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,  # Fail fast on misconfiguration
        extra='forbid',  # Reject unknown environment variables
    )

    # Application metadata
    APP_NAME: str = 'attachment-purge'
    VERSION: str = '0.1.0'

    # Sub-folder of the sink's base directory every backup lands in
    SAVE_ROOT: str = 'attachment-purge'

    # Backup writer
    MAX_DOWNLOAD_RETRIES: int = 3
    RETRY_BACKOFF_MS: int = 400  # Linear: base * attempt
    VERIFY_POLL_ATTEMPTS: int = 3
    VERIFY_POLL_DELAY_MS: int = 150
    WRITE_COMPLETION_TIMEOUT_S: float = 60.0

    # Deletion executor
    DELETE_BATCH_SIZE: int = 16

    # Dialogs
    PREFLIGHT_THRESHOLD: int = 100
    DIALOG_TIMEOUT_S: float = 600.0  # Expiry counts as cancel

    # Which records need a body snapshot; drives both backup and gate counts
    BODY_BACKUP_SCOPE: BodyBackupScope = 'records_with_payloads'
    REQUIRE_BODY_BACKUP: bool = True

    GATE_SAMPLE_SIZE: int = 5

    @pydantic.field_validator('SAVE_ROOT')
    @classmethod
    def validate_save_root(cls, v: str) -> str:
        """Keep backups inside the sink's base directory."""
        v = v.strip().strip('/')
        if not v or '..' in v.split('/'):
            raise ValueError('SAVE_ROOT must be a non-empty relative folder')
        return v

    @pydantic.field_validator('MAX_DOWNLOAD_RETRIES', 'VERIFY_POLL_ATTEMPTS')
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError('attempt counts must be at least 1')
        return v

    @pydantic.field_validator('RETRY_BACKOFF_MS', 'VERIFY_POLL_DELAY_MS', 'PREFLIGHT_THRESHOLD')
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError('must not be negative')
        return v

    @pydantic.field_validator('WRITE_COMPLETION_TIMEOUT_S', 'DIALOG_TIMEOUT_S')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError('timeouts must be positive')
        return v

    @pydantic.field_validator('DELETE_BATCH_SIZE')
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        """Host deletion calls are limited; keep batches small."""
        if not 1 <= v <= 64:
            raise ValueError('DELETE_BATCH_SIZE must be between 1-64')
        return v

    @pydantic.field_validator('GATE_SAMPLE_SIZE')
    @classmethod
    def validate_sample_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError('GATE_SAMPLE_SIZE must be at least 1')
        return v


def get_settings(settings_class: type[T], env_file: str | None = None) -> T:
    """
    Factory for creating settings with dynamic .env file loading.

    LOAD_ENV_FILE environment variable specifies custom .env file path.
    When unset (production), loads from environment variables only.

    Args:
        settings_class: Settings class to instantiate
        env_file: Optional path to .env file (overrides LOAD_ENV_FILE)

    Returns:
        Settings instance

    Raises:
        FileNotFoundError: If specified .env file doesn't exist
    """
    env_file_path = env_file or os.getenv('LOAD_ENV_FILE')

    if not env_file_path:
        return settings_class()  # No .env file, load from environment only

    resolved_path = pathlib.Path(env_file_path).resolve()
    if not resolved_path.exists():
        raise FileNotFoundError(f'Environment file not found: {resolved_path}')

    return settings_class(_env_file=resolved_path)


def lazy_settings(settings_class: type[T]) -> T:
    """
    Lazy settings - defers instantiation until first access.

    Args:
        settings_class: Settings class to instantiate

    Returns:
        Proxy that instantiates settings on first access
    """
    return lazy_object_proxy.Proxy(lambda: get_settings(settings_class))


# Module-level singleton (lazy-loaded)
settings = lazy_settings(PurgeSettings)
