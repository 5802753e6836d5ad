"""
Session, payload and send-run schemas.

SessionRecord is what a session source hands to the send orchestrator;
ApiSession is the sanitized wire payload; SendOptions and SendReport describe
one send attempt from the caller's point of view.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from pydantic import ConfigDict, Field

from vibelog.base_model import StrictModel, WireModel
from vibelog.schemas.messages import Message
from vibelog.types import JsonDatetime

ToolName = Literal['claude_code', 'cursor', 'vscode']
SendStatus = Literal['pending', 'uploaded', 'dry_run', 'cancelled', 'no_sessions', 'failed']


class SourceFile(StrictModel):
    """Where a session was read from, for re-reading and display."""

    claude_project_path: str  # e.g. ~/.claude/projects/-Users-danny-vibe-log
    session_file: str  # e.g. 7f3c...e1.jsonl


class SessionRecord(StrictModel):
    """Canonical session handed over by a session source."""

    id: str
    project_path: str
    timestamp: JsonDatetime
    messages: Sequence[Message]
    duration: int  # seconds between first and last message
    tool: ToolName = 'claude_code'
    source_file: SourceFile | None = None
    claude_session_id: str | None = None
    files_edited: int = 0
    languages: Sequence[str] = ()
    models: Sequence[str] = ()
    primary_model: str | None = None
    git_branch: str | None = None


class SelectedSession(StrictModel):
    """A session explicitly picked by the user."""

    claude_project_path: str
    session_file: str


class ApiSessionMetadata(WireModel):
    files_edited: int
    languages: Sequence[str]
    models: Sequence[str] | None = None
    primary_model: str | None = None
    git_branch: str | None = None


class ApiSessionData(WireModel):
    project_name: str
    message_summary: str  # JSON array of SanitizedMessage (camelCase)
    message_count: int
    metadata: ApiSessionMetadata


class ApiSession(WireModel):
    """Sanitized payload for one session, as accepted by the remote API."""

    tool: ToolName
    timestamp: str
    duration: int
    claude_session_id: str | None = None
    data: ApiSessionData


class PointsEarned(WireModel):
    streak: int = 0
    volume: int = 0
    total: int = 0


class UploadResult(WireModel):
    """Aggregated response of the transport for one batch upload."""

    created: int = 0
    duplicates: int = 0
    points_earned: PointsEarned | None = None
    streak: int | None = None


class SendOptions(StrictModel):
    """Caller-supplied configuration for one send attempt.

    Passed by value down the orchestration chain. The only derived value is
    `origin`, set once through `with_origin()`.
    """

    silent: bool = False
    dry: bool = False
    background: bool = False
    all: bool = False
    test: bool = False
    hook_trigger: str | None = None
    hook_version: str | None = None
    claude_project_dir: str | None = None
    selected_sessions: Sequence[SelectedSession] = ()
    is_initial_sync: bool = False
    origin: str | None = None

    def with_origin(self) -> SendOptions:
        """Return a copy with `origin` defaulted (manual-upload or hook-<trigger>)."""
        if self.origin is not None:
            return self
        origin = f'hook-{self.hook_trigger}' if self.hook_trigger else 'manual-upload'
        return self.model_copy(update={'origin': origin})


class SendReport(StrictModel):
    """Outcome of one send attempt. Filled in stage by stage."""

    model_config = ConfigDict(extra='forbid', strict=True, frozen=False)

    status: SendStatus = 'pending'
    loaded: int = 0
    filtered_out: int = 0
    sanitized: int = 0
    failed: int = 0
    uploaded: int = 0
    total_redactions: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    result: UploadResult | None = None
    error: str | None = None
