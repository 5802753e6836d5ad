"""
Tests for the typer CLI, run in-process with CliRunner.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from vibelog import __version__
from vibelog.cli import main as cli_main
from vibelog.cli.main import app
from vibelog.config import base as config_base
from vibelog.config.base import UPDATE_LOCK_HANDOFF_ENV, VibelogSettings
from vibelog.schemas.sessions import SendOptions
from vibelog.services.locks import update_lock

runner = CliRunner()


@pytest.fixture
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI at tmp_path through environment variables, with no API token."""
    monkeypatch.setenv('VIBE_LOG_STATE_DIR', str(tmp_path / 'state'))
    monkeypatch.setenv('VIBE_LOG_CLAUDE_PROJECTS_DIR', str(tmp_path / 'projects'))
    monkeypatch.setenv('VIBE_LOG_SKIP_UPDATE', 'true')
    monkeypatch.delenv('VIBE_LOG_API_TOKEN', raising=False)
    return tmp_path


def write_project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A ten-minute transcript for a project in tmp_path/webapp, which becomes the cwd."""
    project = tmp_path / 'webapp'
    project.mkdir()
    folder = tmp_path / 'projects' / 'webapp-folder'
    folder.mkdir(parents=True)
    lines = [
        {
            'sessionId': 's1',
            'cwd': str(project),
            'timestamp': timestamp,
            'message': {'role': role, 'content': content},
        }
        for role, content, timestamp in [
            ('user', 'my key is sk_live_4eC39HqLyjWDarjtT1', '2025-03-01T09:00:00.000Z'),
            ('assistant', 'Please rotate it', '2025-03-01T09:10:00.000Z'),
        ]
    ]
    (folder / 's1.jsonl').write_text('\n'.join(json.dumps(line) for line in lines))
    monkeypatch.chdir(project)


def test_version() -> None:
    result = runner.invoke(app, ['--version'])

    assert result.exit_code == 0
    assert result.output.strip() == f'vibelog {__version__}'


def test_hook_test_mode(env: Path) -> None:
    result = runner.invoke(app, ['send', '--test'])

    assert result.exit_code == 0
    assert 'Hook test successful' in result.output


def test_silent_send_never_fails(env: Path) -> None:
    result = runner.invoke(app, ['send', '--silent'])

    assert result.exit_code == 0
    assert result.output == ''


def test_interactive_send_without_token_fails(env: Path) -> None:
    result = runner.invoke(app, ['send'])

    assert result.exit_code == 1
    assert 'Not authenticated' in result.output
    assert 'VIBE_LOG_API_TOKEN' in result.output


def test_dry_run(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    write_project(env, monkeypatch)

    result = runner.invoke(app, ['send', '--dry'])

    assert result.exit_code == 0, result.output
    assert 'Dry run complete' in result.output
    assert 'Sessions: 1 ready' in result.output
    assert 'Redactions: 1' in result.output


def test_preview_then_cancel(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    write_project(env, monkeypatch)
    monkeypatch.setenv('VIBE_LOG_API_TOKEN', 'test-token')

    result = runner.invoke(app, ['send'], input='p\nn\n')

    assert result.exit_code == 0, result.output
    assert 'credentials: 1' in result.output
    assert 'webapp: 2 message(s), 1 redaction(s)' in result.output
    assert 'sk_live_' not in result.output
    assert 'Upload cancelled' in result.output


def test_background_hook_dispatch(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    dispatched: list[SendOptions] = []

    class StubBackground:
        def __init__(self, settings: VibelogSettings) -> None:
            pass

        async def execute(self, options: SendOptions) -> str:
            dispatched.append(options)
            return 'spawned_current'

    monkeypatch.setattr(cli_main, 'BackgroundSendOrchestrator', StubBackground)

    result = runner.invoke(app, ['send', '--silent', '--background', '--hook-trigger=sessionend'])

    assert result.exit_code == 0
    assert [options.hook_trigger for options in dispatched] == ['sessionend']


def test_handed_off_update_lock_released_on_exit(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings = VibelogSettings(_env_file=None)
    update_lock(settings).try_acquire()
    monkeypatch.setenv(UPDATE_LOCK_HANDOFF_ENV, '1')

    result = runner.invoke(app, ['send', '--test'])

    assert result.exit_code == 0
    assert not settings.update_lock_path.exists()


def test_invalid_configuration(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv('VIBE_LOG_HOOK_TIMEOUT_SECONDS', '-1')

    interactive = runner.invoke(app, ['send'])
    silent = runner.invoke(app, ['send', '--silent'])

    assert interactive.exit_code == 1
    assert 'invalid configuration' in interactive.output
    assert silent.exit_code == 0


def test_locks_status_and_clear(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings = VibelogSettings(_env_file=None)
    monkeypatch.setattr(config_base, 'settings', settings)
    update_lock(settings).try_acquire()

    shown = runner.invoke(app, ['locks'])
    cleared = runner.invoke(app, ['locks', '--clear'])

    assert shown.exit_code == 0
    assert 'Update lock' in shown.output
    assert 'alive' in shown.output
    assert 'not held' in shown.output
    assert 'removed' in cleared.output
    assert not settings.update_lock_path.exists()
