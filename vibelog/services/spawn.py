"""Detached process spawning for background uploads and latest-version re-dispatch."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from vibelog.config.base import OUTPUT_ENV, SPAWNED_LATEST_ENV, UPDATE_LOCK_HANDOFF_ENV, VibelogSettings
from vibelog.schemas.sessions import SendOptions
from vibelog.services.version import log_update_event

__all__ = ['build_send_args', 'spawn_current_version', 'spawn_detached', 'spawn_latest_version']

logger = logging.getLogger(__name__)


def build_send_args(options: SendOptions, *, background: bool) -> list[str]:
    """Rebuild the `send` argv for a child process from the caller's options."""
    args = ['send', '--silent']
    if background:
        args.append('--background')
    if options.hook_trigger:
        args.append(f'--hook-trigger={options.hook_trigger}')
    if options.hook_version:
        args.append(f'--hook-version={options.hook_version}')
    if options.claude_project_dir:
        args.append(f'--claude-project-dir={options.claude_project_dir}')
    if options.all:
        args.append('--all')
    return args


def spawn_detached(
    argv: list[str],
    settings: VibelogSettings,
    env: Mapping[str, str] | None = None,
) -> int:
    """
    Start `argv` in its own session with no tie to this process.

    Standard streams go to /dev/null; the child logs to upload.log through
    VIBE_LOG_OUTPUT. The child is never waited on.

    Args:
        argv: Full command line
        settings: Settings providing the state directory
        env: Extra environment variables for the child

    Returns:
        PID of the child

    Raises:
        OSError: If the executable cannot be started
    """
    settings.STATE_DIR.mkdir(parents=True, exist_ok=True)
    log_path = settings.upload_log_path
    with log_path.open('a', encoding='utf-8') as f:
        f.write(f'\n=== Upload started at {datetime.now(UTC).isoformat()} ===\n')

    child_env = {key: value for key, value in os.environ.items() if key != UPDATE_LOCK_HANDOFF_ENV}
    child_env[OUTPUT_ENV] = str(log_path)
    child_env.update(env or {})

    kwargs: dict[str, Any] = {}
    if sys.platform == 'win32':
        kwargs['creationflags'] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs['start_new_session'] = True

    process = subprocess.Popen(
        argv,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        env=child_env,
        close_fds=True,
        **kwargs,
    )
    logger.debug('Spawned detached pid %d: %s', process.pid, ' '.join(argv))
    return process.pid


def spawn_current_version(options: SendOptions, settings: VibelogSettings) -> int:
    """Run the upload in a detached child of the installed version (no --background, no recursion)."""
    argv = [sys.executable, '-m', 'vibelog', *build_send_args(options, background=False)]
    return spawn_detached(argv, settings)


def spawn_latest_version(options: SendOptions, settings: VibelogSettings) -> int:
    """
    Re-dispatch to the newest release through uvx.

    The child is marked so it does not check for updates again, and it takes
    over the Update Lock held by this process.

    Raises:
        FileNotFoundError: If uvx is not on PATH
        OSError: If the child cannot be started
    """
    uvx = shutil.which('uvx')
    if uvx is None:
        log_update_event(settings, 'uvx not found on PATH, staying on current version')
        raise FileNotFoundError('uvx not found on PATH')

    argv = [uvx, f'{settings.PACKAGE_NAME}@latest', *build_send_args(options, background=True)]
    pid = spawn_detached(argv, settings, env={SPAWNED_LATEST_ENV: '1', UPDATE_LOCK_HANDOFF_ENV: '1'})
    log_update_event(settings, f'Spawned latest version (pid {pid}) for hook {options.hook_trigger}')
    return pid
