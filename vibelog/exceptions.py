"""
Shared exceptions for vibelog.

Domain-specific exceptions used across services and orchestrators, plus the
classification that turns arbitrary failures into a coded VibelogError.

Exception Hierarchy:
    VibelogError (base, carries a machine-readable code)
    ├── AuthenticationError (no or rejected API token)
    ├── NoSessionsError (nothing left to upload after filtering)
    ├── SessionReadError (unreadable or unparsable session file)
    ├── NetworkError (connection refused, DNS failure, timeout, reset, 502/503/504)
    ├── ResourceError (disk full, permission denied)
    └── UploadError (remote service rejected the upload)

Lock contention is deliberately absent: failing to acquire a lock is never an error.
"""

from __future__ import annotations

import errno
from typing import Literal

import httpx

__all__ = [
    'AuthenticationError',
    'NetworkError',
    'NetworkErrorType',
    'NoSessionsError',
    'ResourceError',
    'SessionReadError',
    'UploadError',
    'VibelogError',
    'classify_error',
    'get_network_error_type',
    'is_network_error',
]

NetworkErrorType = Literal[
    'DNS_RESOLUTION_FAILED',
    'CONNECTION_REFUSED',
    'TIMEOUT',
    'CONNECTION_RESET',
    'SERVICE_UNAVAILABLE',
    'UNKNOWN_NETWORK_ERROR',
]

NETWORK_ERROR_MESSAGES: dict[NetworkErrorType, str] = {
    'DNS_RESOLUTION_FAILED': 'Cannot reach vibe-log servers. Please check your internet connection',
    'CONNECTION_REFUSED': 'Connection refused. The server might be down or your firewall is blocking the connection',
    'TIMEOUT': 'Request timed out. Your connection might be slow or the server is not responding',
    'CONNECTION_RESET': 'Connection was reset. Please try again',
    'SERVICE_UNAVAILABLE': 'Service temporarily unavailable. Please try again in a few moments',
    'UNKNOWN_NETWORK_ERROR': 'Network error. Please check your internet connection and try again',
}

NETWORK_ERROR_CODES: dict[NetworkErrorType, str] = {
    'DNS_RESOLUTION_FAILED': 'NETWORK_ERROR',
    'CONNECTION_REFUSED': 'CONNECTION_REFUSED',
    'TIMEOUT': 'TIMEOUT',
    'CONNECTION_RESET': 'CONNECTION_RESET',
    'SERVICE_UNAVAILABLE': 'SERVICE_UNAVAILABLE',
    'UNKNOWN_NETWORK_ERROR': 'NETWORK_ERROR',
}

# Markers looked for in error text when the exception type alone is not conclusive
_NETWORK_MARKERS = ('enotfound', 'econnrefused', 'etimedout', 'econnaborted', 'econnreset', 'timeout')
_UNAVAILABLE_STATUSES = frozenset({502, 503, 504})


class VibelogError(Exception):
    """Base exception for all vibelog errors."""

    def __init__(self, message: str, code: str = 'UNKNOWN') -> None:
        self.code = code
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)


class AuthenticationError(VibelogError):
    """Raised when no API token is configured or the API rejects it."""

    def __init__(self, message: str = 'Not authenticated', code: str = 'AUTH_REQUIRED') -> None:
        super().__init__(message, code)


class NoSessionsError(VibelogError):
    """Raised when every loaded session was dropped by the duration filter."""

    def __init__(self, filtered_count: int, min_duration_seconds: int) -> None:
        self.filtered_count = filtered_count
        minutes = min_duration_seconds // 60
        super().__init__(
            f'All {filtered_count} session(s) were shorter than {minutes} minutes. '
            f'Sessions must be at least {minutes} minutes long to upload.',
            'VALIDATION_ERROR',
        )


class SessionReadError(VibelogError):
    """Raised when a session transcript cannot be read or parsed."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f'Could not read session file {path}: {reason}', 'SESSION_READ_ERROR')


class NetworkError(VibelogError):
    """Raised for transport failures that are the network's fault, not ours."""

    def __init__(self, error_type: NetworkErrorType) -> None:
        self.error_type = error_type
        super().__init__(NETWORK_ERROR_MESSAGES[error_type], NETWORK_ERROR_CODES[error_type])


class ResourceError(VibelogError):
    """Raised for local resource exhaustion (disk full) or permission problems."""


class UploadError(VibelogError):
    """Raised when the remote service rejects an upload."""

    def __init__(self, message: str, code: str = 'SEND_FAILED', status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message, code)


def get_network_error_type(error: BaseException) -> NetworkErrorType | None:
    """Classify a transport exception, or return None if it is not network-related."""
    if isinstance(error, NetworkError):
        return error.error_type
    if isinstance(error, httpx.TimeoutException):
        return 'TIMEOUT'
    if isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code in _UNAVAILABLE_STATUSES:
            return 'SERVICE_UNAVAILABLE'
        return None

    text = str(error).lower()
    if isinstance(error, httpx.ConnectError):
        if 'name or service not known' in text or 'nodename nor servname' in text or 'enotfound' in text:
            return 'DNS_RESOLUTION_FAILED'
        if 'reset' in text:
            return 'CONNECTION_RESET'
        return 'CONNECTION_REFUSED'
    if isinstance(error, (httpx.RemoteProtocolError, ConnectionResetError)):
        return 'CONNECTION_RESET'
    if isinstance(error, ConnectionRefusedError):
        return 'CONNECTION_REFUSED'
    if isinstance(error, TimeoutError):
        return 'TIMEOUT'
    if isinstance(error, httpx.TransportError):
        return 'UNKNOWN_NETWORK_ERROR'

    if 'enotfound' in text:
        return 'DNS_RESOLUTION_FAILED'
    if 'econnrefused' in text:
        return 'CONNECTION_REFUSED'
    if 'econnreset' in text:
        return 'CONNECTION_RESET'
    if any(marker in text for marker in _NETWORK_MARKERS):
        return 'TIMEOUT'
    return None


def is_network_error(error: BaseException) -> bool:
    return get_network_error_type(error) is not None


def classify_error(error: BaseException) -> VibelogError:
    """Map any exception raised during a send onto the VibelogError taxonomy.

    VibelogError instances pass through unchanged. Network failures become
    NetworkError, ENOSPC becomes DISK_FULL, EACCES/EPERM become
    PERMISSION_DENIED, and anything else is reported as SEND_FAILED.
    """
    if isinstance(error, VibelogError):
        return error

    network_type = get_network_error_type(error)
    if network_type is not None:
        return NetworkError(network_type)

    if isinstance(error, OSError):
        if error.errno == errno.ENOSPC:
            return ResourceError('Insufficient disk space. Please free up some space and try again.', 'DISK_FULL')
        if isinstance(error, PermissionError) or error.errno in (errno.EACCES, errno.EPERM):
            return ResourceError('Permission denied. Please check file permissions.', 'PERMISSION_DENIED')

    text = str(error)
    if 'ENOSPC' in text:
        return ResourceError('Insufficient disk space. Please free up some space and try again.', 'DISK_FULL')
    if 'EACCES' in text or 'EPERM' in text:
        return ResourceError('Permission denied. Please check file permissions.', 'PERMISSION_DENIED')

    return VibelogError('Failed to send sessions. Please try again.', 'SEND_FAILED')
