"""
Shared protocols for vibelog services and orchestrators.

This module contains the Protocol definitions for the collaborators the send
orchestrator depends on (session source, transport, sync-state store) and the
async logger used for user-facing output. Having a single source of truth for
protocols prevents type incompatibility issues when the same protocol is
defined in multiple modules.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Literal, Protocol

from vibelog.schemas.messages import SessionSummary
from vibelog.schemas.sessions import ApiSession, SelectedSession, SessionRecord, UploadResult

# (current, total, size_kb) - size is None when the transport does not know it
ProgressCallback = Callable[[int, int, float | None], None]

ConfirmChoice = Literal['proceed', 'preview', 'cancel']


class ConfirmCallback(Protocol):
    """Asks the user what to do with the sanitized sessions before upload."""

    async def __call__(self, session_count: int, total_redactions: int) -> ConfirmChoice: ...


class PreviewCallback(Protocol):
    """Shows the redaction detail when the user asks for a preview."""

    async def __call__(self, summary: SessionSummary, sessions: Sequence[ApiSession]) -> None: ...


class LoggerProtocol(Protocol):
    """
    Protocol for async logger - enables services to work with any logging implementation.

    Implementations:
    - CLILogger (cli/logger.py): Logs to stdout with optional verbose mode
    - NullLogger (below): No-op implementation for when logging is optional
    """

    async def info(self, message: str) -> None: ...
    async def warning(self, message: str) -> None: ...
    async def error(self, message: str) -> None: ...


class SessionSource(Protocol):
    """
    Supplies canonical session records.

    Implementations:
    - ClaudeSessionReader (services/reader.py): Claude Code JSONL transcripts
    """

    async def read_sessions(
        self,
        *,
        since: datetime | None = None,
        project_dir: str | None = None,
        project_path: str | None = None,
    ) -> list[SessionRecord]:
        """Sessions started at or after `since`, oldest first.

        `project_dir` limits the scan to one project (its Claude folder or its own
        path); `project_path` keeps sessions whose working directory is that path
        or nested inside it.
        """
        ...

    async def read_selected(self, selected: Sequence[SelectedSession]) -> list[SessionRecord]:
        """Exactly the sessions the user picked."""
        ...


class Transport(Protocol):
    """
    Uploads sanitized session payloads.

    Implementations:
    - ApiClient (services/transport.py): vibe-log HTTP API
    """

    def is_authenticated(self) -> bool: ...

    async def upload(
        self,
        sessions: Sequence[ApiSession],
        on_progress: ProgressCallback | None = None,
    ) -> UploadResult: ...


class SyncStateStore(Protocol):
    """
    Persisted "last synced" watermarks.

    Implementations:
    - JsonSyncStateStore (services/sync_state.py): sync-state.json under the state dir
    """

    def get_project_watermark(self, project_name: str) -> datetime | None:
        """Newest synced session timestamp for a project, if it was ever synced."""
        ...

    def record_sync(
        self,
        sessions: Sequence[SessionRecord],
        *,
        project_name: str | None = None,
        display_name: str | None = None,
    ) -> None:
        """Advance the watermark after a successful upload.

        `project_name` is the watermark key; without it only the last sync summary
        (described by `display_name`) is updated.
        """
        ...


class NullLogger:
    """
    No-op logger implementation for when logging is optional.

    Use this when a function requires a LoggerProtocol but the caller
    doesn't need logging output.
    """

    async def info(self, message: str) -> None:
        pass

    async def warning(self, message: str) -> None:
        pass

    async def error(self, message: str) -> None:
        pass
