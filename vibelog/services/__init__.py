"""Service layer: redaction, locking, version lookup and the default collaborators."""

from vibelog.services.locks import FileMutex, LockHandle, update_lock, upload_guard
from vibelog.services.reader import ClaudeSessionReader
from vibelog.services.sanitizer import MessageSanitizer, sanitize
from vibelog.services.summary import count_total_redactions, create_session_summary
from vibelog.services.sync_state import JsonSyncStateStore
from vibelog.services.transport import ApiClient
from vibelog.services.version import VersionChecker, VersionCheckResult

__all__ = [
    'ApiClient',
    'ClaudeSessionReader',
    'FileMutex',
    'JsonSyncStateStore',
    'LockHandle',
    'MessageSanitizer',
    'VersionCheckResult',
    'VersionChecker',
    'count_total_redactions',
    'create_session_summary',
    'sanitize',
    'update_lock',
    'upload_guard',
]
