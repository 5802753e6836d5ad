"""
Path utilities for Claude Code project directories.

Claude Code stores each project's transcripts under ~/.claude/projects in a
directory named after the project path, encoded by replacing:
- `/` -> `-`
- `.` -> `-`
- ` ` -> `-`
- `~` -> `-`
- `\\` and `:` -> `-` (Windows)

WARNING: This encoding is LOSSY - decoding is impossible.
To get the real path, read the `cwd` field from the session records.
"""

from __future__ import annotations

from pathlib import Path

__all__ = ['encode_path', 'is_within', 'parse_project_name']


def encode_path(path: Path | str) -> str:
    """
    Encode path for Claude's directory naming.

    Args:
        path: Filesystem path to encode

    Returns:
        Encoded string for use as directory name in ~/.claude/projects/

    Examples:
        >>> encode_path("/Users/danny/project")
        '-Users-danny-project'

        >>> encode_path("/Users/danny/My Project.app")
        '-Users-danny-My-Project-app'
    """
    result = str(path) if isinstance(path, Path) else path
    for char in ['/', '\\', ':', '.', ' ', '~']:
        result = result.replace(char, '-')
    return result


def parse_project_name(path: Path | str) -> str:
    """
    Project name: the last component of a path, for either separator style.

    For a Claude project directory this is the encoded folder name, which is
    also the key used for per-project sync watermarks.

    Examples:
        >>> parse_project_name("/Users/danny/vibe-log")
        'vibe-log'

        >>> parse_project_name("C:\\\\Users\\\\danny\\\\webapp")
        'webapp'

        >>> parse_project_name("/home/me/.claude/projects/-Users-danny-webapp")
        '-Users-danny-webapp'
    """
    normalized = str(path).replace('\\', '/').rstrip('/')
    return normalized.rsplit('/', 1)[-1]


def is_within(path: str, root: str) -> bool:
    """True if `path` equals `root` or is nested inside it (case-insensitive)."""
    normalized_path = path.rstrip('/\\').lower()
    normalized_root = root.rstrip('/\\').lower()
    if normalized_path == normalized_root:
        return True
    return normalized_path.startswith(normalized_root + '/') or normalized_path.startswith(normalized_root + '\\')
