"""
Configuration for vibelog.

Settings are read from VIBE_LOG_* environment variables (or a .env file named
by LOAD_ENV_FILE). Services and orchestrators accept an explicit settings
instance; the lazy module-level singleton is only the default.
"""

from __future__ import annotations

import os
import pathlib
from typing import TypeVar

import lazy_object_proxy
import pydantic
import pydantic_settings

from vibelog import __version__

T = TypeVar('T', bound='VibelogSettings')

# Process markers (not settings - they are set by a parent for one child only)
SPAWNED_LATEST_ENV = 'VIBE_LOG_SPAWNED_LATEST'
UPDATE_LOCK_HANDOFF_ENV = 'VIBE_LOG_UPDATE_LOCK_HANDOFF'
OUTPUT_ENV = 'VIBE_LOG_OUTPUT'


class VibelogSettings(pydantic_settings.BaseSettings):
    """Configuration shared by the CLI, orchestrators and services."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix='VIBE_LOG_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,  # Fail fast on misconfiguration
        extra='ignore',  # Process markers share the VIBE_LOG_ prefix
    )

    # Application metadata
    APP_NAME: str = 'vibelog'
    VERSION: str = __version__
    PACKAGE_NAME: str = 'vibelog'

    # Local state
    STATE_DIR: pathlib.Path = pathlib.Path.home() / '.vibe-log'
    CLAUDE_PROJECTS_DIR: pathlib.Path = pathlib.Path.home() / '.claude' / 'projects'

    # Remote endpoints
    API_URL: str = 'https://vibe-log.dev'
    API_TOKEN: str | None = None
    REGISTRY_URL: str = 'https://pypi.org'

    # Send behaviour
    MIN_SESSION_DURATION_SECONDS: int = 240  # Shorter sessions carry too little signal
    INITIAL_SYNC_DAYS: int = 30
    UPLOAD_CHUNK_SIZE: int = 100
    UPLOAD_TIMEOUT_SECONDS: float = 60.0

    # Concurrency and self-update
    LOCK_TIMEOUT_SECONDS: float = 300.0
    VERSION_CACHE_SECONDS: float = 300.0
    VERSION_CHECK_TIMEOUT_SECONDS: float = 5.0
    HOOK_TIMEOUT_SECONDS: float = 30.0
    SKIP_UPDATE: bool = False

    # Diagnostics
    DEBUG: bool = False
    OUTPUT: pathlib.Path | None = None  # Log file for detached children

    @pydantic.field_validator(
        'MIN_SESSION_DURATION_SECONDS',
        'INITIAL_SYNC_DAYS',
        'UPLOAD_CHUNK_SIZE',
        'UPLOAD_TIMEOUT_SECONDS',
        'LOCK_TIMEOUT_SECONDS',
        'VERSION_CACHE_SECONDS',
        'VERSION_CHECK_TIMEOUT_SECONDS',
        'HOOK_TIMEOUT_SECONDS',
    )
    @classmethod
    def validate_positive(cls, v: float, info: pydantic.ValidationInfo) -> float:
        """Durations, timeouts and sizes must be positive."""
        if v <= 0:
            raise ValueError(f'{info.field_name} must be positive')
        return v

    @property
    def update_lock_path(self) -> pathlib.Path:
        return self.STATE_DIR / 'update.lock'

    @property
    def upload_lock_path(self) -> pathlib.Path:
        return self.STATE_DIR / 'upload.lock'

    @property
    def version_cache_path(self) -> pathlib.Path:
        return self.STATE_DIR / 'version-cache.json'

    @property
    def sync_state_path(self) -> pathlib.Path:
        return self.STATE_DIR / 'sync-state.json'

    @property
    def upload_log_path(self) -> pathlib.Path:
        return self.STATE_DIR / 'upload.log'

    @property
    def update_log_path(self) -> pathlib.Path:
        return self.STATE_DIR / 'update.log'


def get_settings(settings_class: type[T] = VibelogSettings, env_file: str | None = None) -> T:  # type: ignore[assignment]
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
        return settings_class(_env_file=None)  # No .env file, load from environment only

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
settings: VibelogSettings = lazy_settings(VibelogSettings)
