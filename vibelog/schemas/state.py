"""
Local state schemas: lock records, version cache and sync watermarks.

All of these live as small JSON files under the state directory.
"""

from __future__ import annotations

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from vibelog.base_model import StrictModel, WireModel
from vibelog.types import JsonDatetime


class LockRecord(StrictModel):
    """Content of update.lock / upload.lock."""

    pid: int
    timestamp: int  # milliseconds since the epoch
    version: str


class VersionCache(WireModel):
    latest_version: str
    timestamp: int  # milliseconds since the epoch


class ProjectSyncData(WireModel):
    model_config = ConfigDict(
        extra='forbid',
        strict=True,
        frozen=False,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    oldest_synced_timestamp: JsonDatetime | None = None
    newest_synced_timestamp: JsonDatetime | None = None
    last_sync_time: JsonDatetime | None = None
    project_name: str | None = None
    session_count: int = 0


class LastSyncSummary(WireModel):
    timestamp: JsonDatetime
    description: str


class SyncState(WireModel):
    """The sync-state.json file structure.

    This model is NOT frozen to allow the projects dict to be updated in place.
    """

    model_config = ConfigDict(
        extra='forbid',
        strict=True,
        frozen=False,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    schema_version: str = '1.0'
    last_sync: JsonDatetime | None = None
    last_sync_summary: LastSyncSummary | None = None
    projects: dict[str, ProjectSyncData] = Field(default_factory=dict)
