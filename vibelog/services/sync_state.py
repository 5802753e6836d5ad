"""
Sync-state store - persisted "last synced" watermarks.

Stores per-project sync boundaries and the last sync summary in
~/.vibe-log/sync-state.json. Read-modify-write cycles are serialized across
processes with filelock; writes go through a temp file and an atomic rename.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

import pydantic
from filelock import FileLock

from vibelog.paths import parse_project_name
from vibelog.schemas.sessions import SessionRecord
from vibelog.schemas.state import LastSyncSummary, ProjectSyncData, SyncState

__all__ = ['JsonSyncStateStore']

logger = logging.getLogger(__name__)


class JsonSyncStateStore:
    """Service for reading and advancing sync watermarks.

    Uses filelock for cross-process safety and atomic writes.
    """

    def __init__(self, state_file: Path) -> None:
        """Initialize with the sync-state.json path (normally under ~/.vibe-log/)."""
        self.state_file = state_file
        self.lock_file = state_file.with_suffix('.lock')

    def get_project_watermark(self, project_name: str) -> datetime | None:
        project = self.read().projects.get(project_name)
        return project.newest_synced_timestamp if project else None

    def get_last_sync(self) -> datetime | None:
        return self.read().last_sync

    def record_sync(
        self,
        sessions: Sequence[SessionRecord],
        *,
        project_name: str | None = None,
        display_name: str | None = None,
    ) -> None:
        """Record a successful upload.

        Args:
            sessions: The uploaded sessions (their timestamps bound the sync window)
            project_name: Watermark key (Claude project folder name); None for
                multi-project uploads, which only update the summary
            display_name: Description stored in the last sync summary
                (defaults to the project name, or 'all projects')
        """
        if not sessions:
            return

        timestamps = sorted(session.timestamp for session in sessions)
        now = datetime.now(UTC)
        description = display_name or project_name or 'all projects'

        self.state_file.parent.mkdir(parents=True, exist_ok=True)

        # Acquire lock, read, modify, write atomically
        with FileLock(self.lock_file):
            state = self.read()
            if project_name is not None:
                project = state.projects.get(project_name) or ProjectSyncData()
                # ProjectSyncData is not frozen
                if project.oldest_synced_timestamp is None or timestamps[0] < project.oldest_synced_timestamp:
                    project.oldest_synced_timestamp = timestamps[0]
                if project.newest_synced_timestamp is None or timestamps[-1] > project.newest_synced_timestamp:
                    project.newest_synced_timestamp = timestamps[-1]
                project.last_sync_time = now
                project.project_name = display_name or parse_project_name(project_name)
                project.session_count += len(sessions)
                state.projects[project_name] = project

            state.last_sync_summary = LastSyncSummary(timestamp=now, description=description)
            state.last_sync = now
            self._write(state)

        logger.debug('Recorded sync of %d session(s) for %s', len(sessions), description)

    def read(self) -> SyncState:
        """Read and parse sync-state.json (empty state if missing or unreadable)."""
        if not self.state_file.exists():
            return SyncState()
        try:
            return SyncState.model_validate_json(self.state_file.read_bytes())
        except (OSError, pydantic.ValidationError) as e:
            logger.warning('Ignoring unreadable sync state %s: %s', self.state_file, e)
            return SyncState()

    def _write(self, state: SyncState) -> None:
        """Write sync-state.json atomically using temp file + rename."""
        tmp_file = self.state_file.with_suffix('.tmp.json')
        with tmp_file.open('w', encoding='utf-8') as f:
            json.dump(state.model_dump(mode='json', by_alias=True), f, indent=2)
        tmp_file.replace(self.state_file)
