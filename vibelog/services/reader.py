"""
Claude Code session reader - the default session source.

Reads JSONL transcripts from ~/.claude/projects/<encoded-project>/<session>.jsonl
and turns each file into a SessionRecord. Malformed lines are skipped;
unreadable files are logged and skipped without aborting the batch. Files are
parsed in a worker thread, one at a time, so the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path, PurePath
from typing import Any

from vibelog.exceptions import SessionReadError
from vibelog.paths import encode_path, is_within
from vibelog.schemas.messages import Message
from vibelog.schemas.sessions import SelectedSession, SessionRecord, SourceFile

__all__ = ['ClaudeSessionReader', 'LANGUAGE_MAPPINGS', 'language_for_path']

logger = logging.getLogger(__name__)

# File extension (or special file name) -> language
LANGUAGE_MAPPINGS: dict[str, str] = {
    'js': 'JavaScript',
    'jsx': 'JavaScript',
    'mjs': 'JavaScript',
    'cjs': 'JavaScript',
    'ts': 'TypeScript',
    'tsx': 'TypeScript',
    'mts': 'TypeScript',
    'cts': 'TypeScript',
    'py': 'Python',
    'pyi': 'Python',
    'pyx': 'Python',
    'html': 'HTML',
    'htm': 'HTML',
    'css': 'CSS',
    'scss': 'SCSS',
    'sass': 'Sass',
    'less': 'Less',
    'json': 'JSON',
    'jsonc': 'JSON',
    'xml': 'XML',
    'yaml': 'YAML',
    'yml': 'YAML',
    'toml': 'TOML',
    'md': 'Markdown',
    'mdx': 'Markdown',
    'rst': 'reStructuredText',
    'txt': 'Text',
    'sh': 'Shell',
    'bash': 'Bash',
    'zsh': 'Zsh',
    'fish': 'Fish',
    'ps1': 'PowerShell',
    'bat': 'Batch',
    'cmd': 'Batch',
    'c': 'C',
    'h': 'C',
    'cpp': 'C++',
    'cc': 'C++',
    'cxx': 'C++',
    'hpp': 'C++',
    'java': 'Java',
    'kt': 'Kotlin',
    'kts': 'Kotlin',
    'scala': 'Scala',
    'groovy': 'Groovy',
    'gradle': 'Groovy',
    'cs': 'C#',
    'fs': 'F#',
    'vb': 'Visual Basic',
    'rs': 'Rust',
    'go': 'Go',
    'zig': 'Zig',
    'swift': 'Swift',
    'm': 'Objective-C',
    'mm': 'Objective-C',
    'dart': 'Dart',
    'rb': 'Ruby',
    'php': 'PHP',
    'pl': 'Perl',
    'lua': 'Lua',
    'hs': 'Haskell',
    'elm': 'Elm',
    'clj': 'Clojure',
    'erl': 'Erlang',
    'ex': 'Elixir',
    'exs': 'Elixir',
    'sql': 'SQL',
    'r': 'R',
    'ipynb': 'Jupyter Notebook',
    'jl': 'Julia',
    'vue': 'Vue',
    'svelte': 'Svelte',
    'astro': 'Astro',
    'tf': 'Terraform',
    'graphql': 'GraphQL',
    'gql': 'GraphQL',
    'proto': 'Protocol Buffers',
    'dockerfile': 'Docker',
    'makefile': 'Makefile',
    'cmake': 'CMake',
}

# Claude Code tools whose input names a file
FILE_OPERATION_TOOLS = frozenset({'Edit', 'Write', 'MultiEdit', 'NotebookEdit', 'Read', 'Create', 'Delete', 'Move', 'Copy'})
_FILE_PATH_KEYS = ('file_path', 'filePath', 'path', 'notebook_path', 'filename')
_VALID_ROLES = frozenset({'user', 'assistant', 'system'})


def language_for_path(file_path: str) -> str | None:
    """Language for a file, by special file name first, then by extension.

    Unknown extensions are reported upper-cased (e.g. 'ABC'); files with no
    extension give None.
    """
    name = PurePath(file_path.replace('\\', '/')).name.lower()
    if name in LANGUAGE_MAPPINGS:
        return LANGUAGE_MAPPINGS[name]
    suffix = PurePath(name).suffix.lstrip('.')
    if not suffix:
        return None
    return LANGUAGE_MAPPINGS.get(suffix, suffix.upper())


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)


def _tool_use_paths(content: Any) -> list[str]:
    if not isinstance(content, list):
        return []
    paths = []
    for block in content:
        if not isinstance(block, Mapping) or block.get('type') != 'tool_use':
            continue
        if block.get('name') not in FILE_OPERATION_TOOLS:
            continue
        tool_input = block.get('input')
        if not isinstance(tool_input, Mapping):
            continue
        for key in _FILE_PATH_KEYS:
            if isinstance(tool_input.get(key), str):
                paths.append(tool_input[key])
                break
    return paths


class ClaudeSessionReader:
    """Reads Claude Code JSONL transcripts into SessionRecords."""

    def __init__(self, projects_dir: Path) -> None:
        """Initialize with the Claude projects directory (normally ~/.claude/projects)."""
        self.projects_dir = projects_dir

    async def read_sessions(
        self,
        *,
        since: datetime | None = None,
        project_dir: str | None = None,
        project_path: str | None = None,
    ) -> list[SessionRecord]:
        """
        Read every session matching the filters, oldest first.

        Args:
            since: Skip sessions that started before this moment
            project_dir: Only read this project (Claude folder or real project path)
            project_path: Only keep sessions whose cwd is this path or nested in it

        Raises:
            SessionReadError: If the Claude projects directory does not exist
        """
        if project_dir is not None:
            directories = [self.resolve_project_dir(project_dir)]
        else:
            if not self.projects_dir.is_dir():
                raise SessionReadError(
                    str(self.projects_dir),
                    'Claude Code data not found. Make sure Claude Code is installed and has been used at least once.',
                )
            directories = sorted(path for path in self.projects_dir.iterdir() if path.is_dir())

        cutoff = _as_utc(since) if since is not None else None
        sessions: list[SessionRecord] = []
        for directory in directories:
            for file_path in sorted(directory.glob('*.jsonl')):
                # Files untouched since the cutoff cannot hold newer sessions
                if cutoff is not None and datetime.fromtimestamp(file_path.stat().st_mtime, UTC) < cutoff:
                    continue
                try:
                    session = await asyncio.to_thread(self.parse_session_file, file_path)
                except SessionReadError as e:
                    logger.warning('%s', e)
                    continue
                if session is None:
                    continue
                if cutoff is not None and session.timestamp < cutoff:
                    continue
                if project_path is not None and not is_within(session.project_path, project_path):
                    continue
                sessions.append(session)

        return sorted(sessions, key=lambda session: session.timestamp)

    async def read_selected(self, selected: Sequence[SelectedSession]) -> list[SessionRecord]:
        """Read explicitly selected session files. Failures are logged and skipped."""
        sessions: list[SessionRecord] = []
        failed = 0
        for info in selected:
            try:
                file_path = Path(info.claude_project_path) / info.session_file
                session = await asyncio.to_thread(self.parse_session_file, file_path)
            except SessionReadError as e:
                logger.warning('%s', e)
                failed += 1
                continue
            if session is not None:
                sessions.append(session)

        if failed:
            logger.warning('Failed to read %d session file(s). Continuing with %d valid sessions.', failed, len(sessions))
        return sessions

    def resolve_project_dir(self, project_dir: str) -> Path:
        """Map a project directory argument onto the folder holding its transcripts."""
        path = Path(project_dir).expanduser()
        if path.is_dir() and any(path.glob('*.jsonl')):
            return path
        return self.projects_dir / encode_path(path)

    def parse_session_file(self, file_path: Path) -> SessionRecord | None:
        """
        Parse one transcript.

        Returns:
            The session, or None if the file holds no session metadata or no messages

        Raises:
            SessionReadError: If the file cannot be read
        """
        try:
            text = file_path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise SessionReadError(str(file_path), str(e)) from e

        session_id: str | None = None
        cwd: str | None = None
        started_at: datetime | None = None
        git_branch: str | None = None
        messages: list[Message] = []
        model_usage: Counter[str] = Counter()
        edited_files: set[str] = set()
        touched_files: list[str] = []

        for line_num, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.debug('Skipping malformed line %d in %s', line_num, file_path.name)
                continue
            if not isinstance(entry, dict):
                continue

            timestamp = _parse_timestamp(entry.get('timestamp'))

            if (
                session_id is None
                and isinstance(entry.get('sessionId'), str)
                and isinstance(entry.get('cwd'), str)
                and timestamp is not None
            ):
                session_id, cwd, started_at = entry['sessionId'], entry['cwd'], timestamp

            if git_branch is None and isinstance(entry.get('gitBranch'), str) and entry['gitBranch']:
                git_branch = entry['gitBranch']

            message = entry.get('message')
            if isinstance(message, dict) and timestamp is not None and message.get('role') in _VALID_ROLES:
                content = message.get('content')
                if not isinstance(content, (str, list, dict)):
                    content = None
                messages.append(Message(role=message['role'], content=content, timestamp=timestamp))
                if message['role'] == 'assistant' and isinstance(message.get('model'), str):
                    model_usage[message['model']] += 1
                touched_files.extend(_tool_use_paths(content))

            tool_result = entry.get('toolUseResult')
            if isinstance(tool_result, dict) and tool_result.get('type') in ('create', 'update'):
                if isinstance(tool_result.get('filePath'), str):
                    edited_files.add(tool_result['filePath'])
                    touched_files.append(tool_result['filePath'])

        if session_id is None or cwd is None or started_at is None or not messages:
            return None

        duration = max(0, int((messages[-1].timestamp - messages[0].timestamp).total_seconds()))
        languages = sorted({language for path in touched_files if (language := language_for_path(path))})

        return SessionRecord(
            id=session_id,
            project_path=cwd,
            timestamp=started_at,
            messages=messages,
            duration=duration,
            tool='claude_code',
            source_file=SourceFile(claude_project_path=str(file_path.parent), session_file=file_path.name),
            claude_session_id=session_id,
            files_edited=len(edited_files),
            languages=languages,
            models=list(model_usage),
            primary_model=model_usage.most_common(1)[0][0] if model_usage else None,
            git_branch=git_branch,
        )
