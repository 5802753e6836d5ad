"""
Schema definitions for vibelog.

This package contains Pydantic models for:
- messages: raw and sanitized conversation messages, redaction counts and summaries
- sessions: session records, wire payloads, send options and reports
- state: lock records, version cache and sync watermarks
"""

from __future__ import annotations

from vibelog.schemas.messages import Message, RedactedItems, SanitizedMessage, SessionSummary
from vibelog.schemas.sessions import ApiSession, SendOptions, SendReport, SessionRecord, UploadResult
from vibelog.schemas.state import LockRecord, SyncState, VersionCache

__all__ = [
    'ApiSession',
    'LockRecord',
    'Message',
    'RedactedItems',
    'SanitizedMessage',
    'SendOptions',
    'SendReport',
    'SessionRecord',
    'SessionSummary',
    'SyncState',
    'UploadResult',
    'VersionCache',
]
