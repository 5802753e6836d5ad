"""
Shared fixtures: settings pointed at tmp_path and in-memory collaborators.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from vibelog.config.base import OUTPUT_ENV, SPAWNED_LATEST_ENV, UPDATE_LOCK_HANDOFF_ENV, VibelogSettings
from vibelog.schemas.messages import Message
from vibelog.schemas.sessions import ApiSession, SelectedSession, SessionRecord, UploadResult

START = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)

SessionFactory = Callable[..., SessionRecord]


class FakeSessionSource:
    """In-memory session source that records how it was queried."""

    def __init__(self, sessions: Sequence[SessionRecord] = ()) -> None:
        self.sessions = list(sessions)
        self.calls: list[dict[str, object]] = []

    async def read_sessions(
        self,
        *,
        since: datetime | None = None,
        project_dir: str | None = None,
        project_path: str | None = None,
    ) -> list[SessionRecord]:
        self.calls.append({'since': since, 'project_dir': project_dir, 'project_path': project_path})
        return [session for session in self.sessions if since is None or session.timestamp >= since]

    async def read_selected(self, selected: Sequence[SelectedSession]) -> list[SessionRecord]:
        self.calls.append({'selected': list(selected)})
        wanted = {info.session_file for info in selected}
        return [
            session
            for session in self.sessions
            if session.source_file is not None and session.source_file.session_file in wanted
        ]


class FakeTransport:
    """Transport that keeps every uploaded payload and reports progress per session."""

    def __init__(self, authenticated: bool = True, error: Exception | None = None) -> None:
        self.authenticated = authenticated
        self.error = error
        self.uploads: list[list[ApiSession]] = []

    def is_authenticated(self) -> bool:
        return self.authenticated

    async def upload(self, sessions, on_progress=None) -> UploadResult:  # type: ignore[no-untyped-def]
        if self.error is not None:
            raise self.error
        self.uploads.append(list(sessions))
        for index in range(len(sessions)):
            if on_progress is not None:
                on_progress(index + 1, len(sessions), None)
        return UploadResult(created=len(sessions), duplicates=0)


class FakeSyncStore:
    def __init__(self, watermarks: dict[str, datetime] | None = None) -> None:
        self.watermarks = dict(watermarks or {})
        self.recorded: list[dict[str, object]] = []

    def get_project_watermark(self, project_name: str) -> datetime | None:
        return self.watermarks.get(project_name)

    def record_sync(self, sessions, *, project_name=None, display_name=None) -> None:  # type: ignore[no-untyped-def]
        self.recorded.append(
            {'count': len(sessions), 'project_name': project_name, 'display_name': display_name}
        )


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Remove process markers and restore the package logger after each test."""
    for name in (SPAWNED_LATEST_ENV, UPDATE_LOCK_HANDOFF_ENV, OUTPUT_ENV, 'VIBE_LOG_DEBUG', 'LOAD_ENV_FILE'):
        monkeypatch.delenv(name, raising=False)
    package_logger = logging.getLogger('vibelog')
    handlers, level = list(package_logger.handlers), package_logger.level
    yield
    package_logger.handlers = handlers
    package_logger.setLevel(level)


@pytest.fixture
def settings(tmp_path: Path) -> VibelogSettings:
    return VibelogSettings(
        _env_file=None,
        STATE_DIR=tmp_path / 'state',
        CLAUDE_PROJECTS_DIR=tmp_path / 'projects',
        API_URL='https://api.test',
        API_TOKEN='test-token',
        REGISTRY_URL='https://registry.test',
        SKIP_UPDATE=False,
        DEBUG=False,
    )


@pytest.fixture
def make_session() -> SessionFactory:
    """Build a SessionRecord whose messages span `duration` seconds."""

    def factory(
        session_id: str = 'session-1',
        duration: int = 600,
        project_path: str = '/Users/danny/webapp',
        contents: Sequence[str] = ('Please fix the login bug', 'Done, see the patch'),
        started: datetime = START,
    ) -> SessionRecord:
        step = duration / max(len(contents) - 1, 1)
        messages = [
            Message(
                role='user' if index % 2 == 0 else 'assistant',
                content=content,
                timestamp=started + timedelta(seconds=step * index),
            )
            for index, content in enumerate(contents)
        ]
        return SessionRecord(
            id=session_id,
            project_path=project_path,
            timestamp=started,
            messages=messages,
            duration=duration,
            claude_session_id=session_id,
        )

    return factory
