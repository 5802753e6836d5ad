"""
Tests for BackgroundSendOrchestrator and detached spawning.

Spawners are replaced with recorders so no real child is started, except in
the spawn_detached tests, which start a sleeping interpreter and kill it.
"""

from __future__ import annotations

import asyncio
import sys
import time

import psutil
import pytest

from vibelog.config.base import OUTPUT_ENV, SPAWNED_LATEST_ENV, UPDATE_LOCK_HANDOFF_ENV, VibelogSettings
from vibelog.orchestrators.background import BackgroundSendOrchestrator
from vibelog.schemas.sessions import SendOptions
from vibelog.services.locks import update_lock, upload_guard
from vibelog.services.spawn import build_send_args, spawn_detached
from vibelog.services.version import VersionCheckResult

OPTIONS = SendOptions(background=True, silent=True, hook_trigger='sessionend', claude_project_dir='/c/-Users-x')


class StubChecker:
    def __init__(self, latest: str = '0.4.2', error: str | None = None, delay: float = 0.0) -> None:
        self.latest = latest
        self.error = error
        self.delay = delay
        self.calls = 0

    async def check(self) -> VersionCheckResult:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return VersionCheckResult(
            current_version='0.4.2',
            latest_version=self.latest,
            is_outdated=self.latest != '0.4.2',
            error=self.error,
        )


class RecordingSpawner:
    def __init__(self, error: OSError | None = None) -> None:
        self.error = error
        self.calls: list[SendOptions] = []

    def __call__(self, options: SendOptions, settings: VibelogSettings) -> int:
        self.calls.append(options)
        if self.error is not None:
            raise self.error
        return 4242


def build(
    settings: VibelogSettings,
    checker: StubChecker | None = None,
    current: RecordingSpawner | None = None,
    latest: RecordingSpawner | None = None,
) -> tuple[BackgroundSendOrchestrator, StubChecker, RecordingSpawner, RecordingSpawner]:
    checker = checker or StubChecker()
    current = current or RecordingSpawner()
    latest = latest or RecordingSpawner()
    orchestrator = BackgroundSendOrchestrator(
        settings,
        version_checker=checker,  # type: ignore[arg-type]
        spawn_current=current,
        spawn_latest=latest,
    )
    return orchestrator, checker, current, latest


def test_spawns_current_version_when_up_to_date(settings: VibelogSettings) -> None:
    orchestrator, _, current, latest = build(settings)

    outcome = asyncio.run(orchestrator.execute(OPTIONS))

    assert outcome == 'spawned_current'
    assert current.calls == [OPTIONS]
    assert latest.calls == []


def test_returns_quickly(settings: VibelogSettings) -> None:
    """The dispatch itself never waits for the upload."""
    orchestrator, _, _, _ = build(settings)

    started = time.monotonic()
    asyncio.run(orchestrator.execute(OPTIONS))

    assert time.monotonic() - started < 1.0


def test_already_running(settings: VibelogSettings) -> None:
    upload_guard(settings).try_acquire()
    orchestrator, checker, current, _ = build(settings)

    outcome = asyncio.run(orchestrator.execute(OPTIONS))

    assert outcome == 'already_running'
    assert checker.calls == 0
    assert current.calls == []


def test_newer_release_dispatches_latest_under_update_lock(settings: VibelogSettings) -> None:
    orchestrator, _, current, latest = build(settings, checker=StubChecker(latest='0.5.0'))

    outcome = asyncio.run(orchestrator.execute(OPTIONS))

    assert outcome == 'spawned_latest'
    assert latest.calls == [OPTIONS]
    assert current.calls == []
    # Held until the latest-version child releases it
    assert update_lock(settings).is_held()
    assert '0.4.2 -> 0.5.0' in settings.update_log_path.read_text()


def test_update_in_progress_falls_back_to_current(settings: VibelogSettings) -> None:
    update_lock(settings).try_acquire()
    orchestrator, _, current, latest = build(settings, checker=StubChecker(latest='0.5.0'))

    outcome = asyncio.run(orchestrator.execute(OPTIONS))

    assert outcome == 'spawned_current'
    assert latest.calls == []
    assert 'already in progress' in settings.update_log_path.read_text()


def test_failed_latest_spawn_releases_update_lock(settings: VibelogSettings) -> None:
    orchestrator, _, current, _ = build(
        settings,
        checker=StubChecker(latest='0.5.0'),
        latest=RecordingSpawner(error=FileNotFoundError('uvx not found on PATH')),
    )

    outcome = asyncio.run(orchestrator.execute(OPTIONS))

    assert outcome == 'spawned_current'
    assert len(current.calls) == 1
    assert not settings.update_lock_path.exists()


def test_version_check_error_uses_current(settings: VibelogSettings) -> None:
    orchestrator, _, current, latest = build(settings, checker=StubChecker(latest='0.5.0', error='timeout'))

    assert asyncio.run(orchestrator.execute(OPTIONS)) == 'spawned_current'
    assert latest.calls == []


def test_relaunched_latest_child_skips_version_check(
    settings: VibelogSettings, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv(SPAWNED_LATEST_ENV, '1')
    orchestrator, checker, current, _ = build(settings, checker=StubChecker(latest='0.5.0'))

    outcome = asyncio.run(orchestrator.execute(OPTIONS))

    assert outcome == 'spawned_current'
    assert checker.calls == 0


def test_spawn_failure_is_reported(settings: VibelogSettings) -> None:
    orchestrator, _, _, _ = build(settings, current=RecordingSpawner(error=PermissionError('denied')))

    assert asyncio.run(orchestrator.execute(OPTIONS)) == 'failed'


@pytest.mark.parametrize(
    ('background', 'expected'),
    [
        (
            False,
            ['send', '--silent', '--hook-trigger=sessionend', '--claude-project-dir=/c/-Users-x'],
        ),
        (
            True,
            ['send', '--silent', '--background', '--hook-trigger=sessionend', '--claude-project-dir=/c/-Users-x'],
        ),
    ],
    ids=['current', 'latest'],
)
def test_build_send_args(background: bool, expected: list[str]) -> None:
    assert build_send_args(OPTIONS, background=background) == expected


def test_build_send_args_optional_flags() -> None:
    options = SendOptions(hook_trigger='precompact', hook_version='3', all=True)

    assert build_send_args(options, background=False) == [
        'send',
        '--silent',
        '--hook-trigger=precompact',
        '--hook-version=3',
        '--all',
    ]


def test_spawn_detached_does_not_wait(settings: VibelogSettings, monkeypatch: pytest.MonkeyPatch) -> None:
    """A sleeping child keeps running after spawn_detached returns."""
    monkeypatch.setenv(UPDATE_LOCK_HANDOFF_ENV, '1')

    started = time.monotonic()
    pid = spawn_detached([sys.executable, '-c', 'import time; time.sleep(30)'], settings)
    elapsed = time.monotonic() - started

    child = psutil.Process(pid)
    try:
        assert elapsed < 5
        assert child.is_running()
        environ = child.environ()
        assert environ[OUTPUT_ENV] == str(settings.upload_log_path)
        assert UPDATE_LOCK_HANDOFF_ENV not in environ
    except psutil.AccessDenied:
        pytest.skip('cannot inspect child environment on this platform')
    finally:
        child.kill()
        child.wait(timeout=5)

    assert '=== Upload started at' in settings.upload_log_path.read_text()
