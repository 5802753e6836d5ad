"""
Release version lookup for self-update decisions.

The latest published version is read from the package registry (PyPI JSON
API) and cached in version-cache.json for a few minutes, so rapid hook
firings do not hammer the registry. Every failure degrades to "no update
available"; nothing here raises into the caller.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import UTC, datetime

import httpx
import packaging.version
import pydantic

from vibelog.base_model import StrictModel
from vibelog.config.base import VibelogSettings
from vibelog.schemas.state import VersionCache

__all__ = [
    'VersionCheckResult',
    'VersionChecker',
    'is_newer_version',
    'log_update_event',
    'should_spawn_latest_for_hook',
]

logger = logging.getLogger(__name__)


class VersionCheckResult(StrictModel):
    current_version: str
    latest_version: str
    is_outdated: bool
    error: str | None = None  # Set when the lookup failed and latest_version is a fallback


def is_newer_version(latest: str, current: str) -> bool:
    """True if `latest` is a strictly newer release than `current`.

    Unparsable versions are never considered newer.
    """
    try:
        return packaging.version.Version(latest) > packaging.version.Version(current)
    except packaging.version.InvalidVersion:
        logger.debug('Cannot compare versions %r and %r', latest, current)
        return False


def should_spawn_latest_for_hook(result: VersionCheckResult, hook_trigger: str | None) -> bool:
    """Re-dispatch to the latest release only for hook runs with a successful, outdated check."""
    if not hook_trigger:
        return False
    if result.error is not None:
        return False
    return result.is_outdated


def log_update_event(settings: VibelogSettings, message: str) -> None:
    """Append one line to update.log. Never raises."""
    try:
        settings.STATE_DIR.mkdir(parents=True, exist_ok=True)
        with settings.update_log_path.open('a', encoding='utf-8') as f:
            f.write(f'[{datetime.now(UTC).isoformat()}] {message}\n')
    except OSError as e:
        logger.debug('Could not write update log: %s', e)


class VersionChecker:
    """Cached registry lookup of the latest released version."""

    def __init__(self, settings: VibelogSettings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """
        Initialize the checker.

        Args:
            settings: Settings providing registry URL, package name, cache path and timeouts
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.settings = settings
        self.transport = transport

    async def check(self) -> VersionCheckResult:
        """Compare the running version with the latest release."""
        current = self.settings.VERSION
        if self.settings.SKIP_UPDATE:
            return VersionCheckResult(current_version=current, latest_version=current, is_outdated=False)

        try:
            latest = self._read_cache()
            if latest is None:
                latest = await self.fetch_latest_version()
                self._write_cache(latest)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            # ValueError covers JSON decoding and pydantic validation failures
            logger.debug('Version check failed: %s', e)
            return VersionCheckResult(current_version=current, latest_version=current, is_outdated=False, error=str(e))

        return VersionCheckResult(
            current_version=current,
            latest_version=latest,
            is_outdated=is_newer_version(latest, current),
        )

    async def fetch_latest_version(self) -> str:
        """Ask the registry for the latest published version.

        Raises:
            httpx.HTTPError: On transport failures and non-2xx responses
            KeyError: If the response does not carry info.version
        """
        url = f'{self.settings.REGISTRY_URL.rstrip("/")}/pypi/{self.settings.PACKAGE_NAME}/json'
        async with httpx.AsyncClient(
            timeout=self.settings.VERSION_CHECK_TIMEOUT_SECONDS,
            transport=self.transport,
        ) as client:
            response = await client.get(url, headers={'Accept': 'application/json'})
            response.raise_for_status()
            version = response.json()['info']['version']

        if not isinstance(version, str):
            raise TypeError(f'Unexpected version value: {version!r}')
        return version

    def _read_cache(self) -> str | None:
        path = self.settings.version_cache_path
        try:
            cache = VersionCache.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, pydantic.ValidationError) as e:
            logger.debug('Ignoring unreadable version cache: %s', e)
            return None

        age_ms = time.time() * 1000 - cache.timestamp
        if 0 <= age_ms < self.settings.VERSION_CACHE_SECONDS * 1000:
            return cache.latest_version
        return None

    def _write_cache(self, latest_version: str) -> None:
        cache = VersionCache(latest_version=latest_version, timestamp=int(time.time() * 1000))
        try:
            self.settings.STATE_DIR.mkdir(parents=True, exist_ok=True)
            self.settings.version_cache_path.write_text(json.dumps(cache.model_dump(by_alias=True)))
        except OSError as e:
            logger.debug('Could not write version cache: %s', e)
