"""
Background send orchestrator - fire-and-forget dispatch for hook runs.

Used when a hook asks for --background. The hook process never uploads
itself: it decides which detached child to start and returns at once.

    1. Upload Guard held            -> return (an upload is already running)
    2. Not a re-dispatched child    -> cached check for a newer release
    3. Newer and Update Lock won    -> spawn the latest release, return
    4. Otherwise                    -> spawn the current version, return
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import Literal

from vibelog.config.base import SPAWNED_LATEST_ENV, VibelogSettings
from vibelog.schemas.sessions import SendOptions
from vibelog.services.locks import update_lock, upload_guard
from vibelog.services.spawn import spawn_current_version, spawn_latest_version
from vibelog.services.version import VersionChecker, VersionCheckResult, log_update_event, should_spawn_latest_for_hook

__all__ = ['BackgroundOutcome', 'BackgroundSendOrchestrator']

logger = logging.getLogger(__name__)

BackgroundOutcome = Literal['already_running', 'spawned_latest', 'spawned_current', 'failed']

Spawner = Callable[[SendOptions, VibelogSettings], int]


class BackgroundSendOrchestrator:
    """Chooses and starts the detached process that does the actual upload."""

    def __init__(
        self,
        settings: VibelogSettings,
        version_checker: VersionChecker | None = None,
        spawn_current: Spawner = spawn_current_version,
        spawn_latest: Spawner = spawn_latest_version,
    ) -> None:
        self.settings = settings
        self.version_checker = version_checker or VersionChecker(settings)
        self.spawn_current = spawn_current
        self.spawn_latest = spawn_latest

    async def execute(self, options: SendOptions) -> BackgroundOutcome:
        """Dispatch the upload to a detached child. Never waits for it and never raises."""
        if upload_guard(self.settings).is_held():
            logger.info('Background upload already running, skipping')
            return 'already_running'

        if os.environ.get(SPAWNED_LATEST_ENV) != '1':
            result = await self.version_checker.check()
            if should_spawn_latest_for_hook(result, options.hook_trigger) and self._dispatch_latest(options, result):
                return 'spawned_latest'

        try:
            pid = self.spawn_current(options, self.settings)
        except OSError as e:
            logger.error('Could not start background upload: %s', e)
            return 'failed'

        logger.debug('Background upload started (pid %d)', pid)
        return 'spawned_current'

    def _dispatch_latest(self, options: SendOptions, result: VersionCheckResult) -> bool:
        """Start the newest release under the Update Lock. False means use the current version."""
        handle = update_lock(self.settings).try_acquire()
        if handle is None:
            log_update_event(self.settings, 'Update already in progress, using current version')
            return False

        log_update_event(
            self.settings,
            f'Update available: {result.current_version} -> {result.latest_version}',
        )
        try:
            self.spawn_latest(options, self.settings)
        except OSError as e:
            # The child never started, so it cannot release the lock for us
            handle.release()
            log_update_event(self.settings, f'Failed to start latest version: {e}')
            return False
        return True
