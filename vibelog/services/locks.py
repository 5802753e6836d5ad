"""
Cross-process file locks: the Update Lock and the Upload Guard.

Both are the same non-blocking mutex applied to two resources:

    update.lock  - "I am installing/running a newer release right now"
    upload.lock  - "a background upload is already in flight"

A lock is a small JSON file ({pid, timestamp, version}) created exclusively.
The record is written to a private temp file first and then hard-linked into
place, so the lock file never exists without its full content. Callers that
fail to acquire do not wait: they skip the optional action the lock guards.

A lock older than the timeout (or one that cannot be parsed) is abandoned.
Taking it over renames it to a private tombstone, checks that the tombstone
still holds the record that was judged stale, and retries creation exactly
once.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from pathlib import Path

import attrs
import psutil
import pydantic

from vibelog import __version__
from vibelog.config.base import UPDATE_LOCK_HANDOFF_ENV, VibelogSettings
from vibelog.schemas.state import LockRecord

__all__ = [
    'FileMutex',
    'LockHandle',
    'LockStatus',
    'release_handed_off_update_lock',
    'update_lock',
    'upload_guard',
]

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@attrs.define(frozen=True)
class LockHandle:
    """Proof of ownership returned by a successful try_acquire()."""

    path: Path
    record: LockRecord

    def release(self) -> None:
        """Best-effort delete. Leaves the file alone if another process has taken it over."""
        try:
            current = LockRecord.model_validate_json(self.path.read_bytes())
        except FileNotFoundError:
            return
        except (OSError, pydantic.ValidationError) as e:
            logger.debug('Lock %s unreadable on release: %s', self.path, e)
            return
        if current != self.record:
            logger.debug('Lock %s now belongs to pid %d, not releasing', self.path, current.pid)
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug('Could not release lock %s: %s', self.path, e)


@attrs.define(frozen=True)
class LockStatus:
    """Snapshot of a lock file, for display."""

    path: Path
    exists: bool
    record: LockRecord | None  # None when missing or corrupt
    age_seconds: float | None
    stale: bool
    owner_alive: bool | None


class FileMutex:
    """Non-blocking cross-process mutex backed by one lock file."""

    def __init__(self, path: Path, timeout_seconds: float = 300.0, version: str = __version__) -> None:
        self.path = path
        self.timeout_seconds = timeout_seconds
        self.version = version

    def __repr__(self) -> str:
        return f'FileMutex({str(self.path)!r})'

    def try_acquire(self) -> LockHandle | None:
        """Acquire the lock, or return None immediately if someone else holds it."""
        try:
            return self._try_acquire(allow_takeover=True)
        except OSError as e:
            # Lock trouble must never break the primary task
            logger.warning('Could not acquire lock %s: %s', self.path, e)
            return None

    def is_held(self) -> bool:
        """True if a live (non-stale, parsable) lock exists."""
        raw = self._read_raw()
        if raw is None:
            return False
        record = self._parse(raw)
        return record is not None and not self._is_stale(record)

    def force_release(self) -> bool:
        """Remove the lock file regardless of owner. Returns True if a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True

    def status(self) -> LockStatus:
        raw = self._read_raw()
        if raw is None:
            return LockStatus(self.path, exists=False, record=None, age_seconds=None, stale=False, owner_alive=None)
        record = self._parse(raw)
        if record is None:
            return LockStatus(self.path, exists=True, record=None, age_seconds=None, stale=True, owner_alive=None)
        return LockStatus(
            self.path,
            exists=True,
            record=record,
            age_seconds=(_now_ms() - record.timestamp) / 1000,
            stale=self._is_stale(record),
            owner_alive=psutil.pid_exists(record.pid),
        )

    def _try_acquire(self, allow_takeover: bool) -> LockHandle | None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        record = LockRecord(pid=os.getpid(), timestamp=_now_ms(), version=self.version)
        if self._create_exclusive(record):
            logger.debug('Acquired lock %s', self.path)
            return LockHandle(self.path, record)

        if not allow_takeover:
            logger.debug('Lock %s taken by another process during takeover', self.path)
            return None

        raw = self._read_raw()
        if raw is not None:
            existing = self._parse(raw)
            if existing is not None and not self._is_stale(existing):
                logger.debug('Lock %s held by pid %d (version %s)', self.path, existing.pid, existing.version)
                return None
            if not self._remove_stale(raw):
                return None
            logger.info('Took over stale lock %s', self.path)

        return self._try_acquire(allow_takeover=False)

    def _create_exclusive(self, record: LockRecord) -> bool:
        tmp_path = self.path.with_name(f'{self.path.name}.{os.getpid()}.{uuid.uuid4().hex}.tmp')
        tmp_path.write_text(record.model_dump_json())
        try:
            os.link(tmp_path, self.path)
        except FileExistsError:
            return False
        finally:
            tmp_path.unlink(missing_ok=True)
        return True

    def _remove_stale(self, stale_raw: bytes) -> bool:
        """Move a stale lock aside. Returns False if it was replaced by a live one meanwhile."""
        tombstone = self.path.with_name(f'{self.path.name}.{os.getpid()}.{uuid.uuid4().hex}.stale')
        try:
            os.rename(self.path, tombstone)
        except FileNotFoundError:
            return True
        try:
            if tombstone.read_bytes() == stale_raw:
                return True
            # A fresh lock appeared between the read and the rename: put it back
            try:
                os.link(tombstone, self.path)
            except FileExistsError:
                pass
            return False
        finally:
            tombstone.unlink(missing_ok=True)

    def _read_raw(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug('Could not read lock %s: %s', self.path, e)
            return b''

    def _parse(self, raw: bytes) -> LockRecord | None:
        try:
            return LockRecord.model_validate_json(raw)
        except pydantic.ValidationError:
            logger.debug('Lock %s is corrupt, treating as stale', self.path)
            return None

    def _is_stale(self, record: LockRecord) -> bool:
        return _now_ms() - record.timestamp > self.timeout_seconds * 1000


def update_lock(settings: VibelogSettings) -> FileMutex:
    return FileMutex(settings.update_lock_path, settings.LOCK_TIMEOUT_SECONDS, settings.VERSION)


def upload_guard(settings: VibelogSettings) -> FileMutex:
    return FileMutex(settings.upload_lock_path, settings.LOCK_TIMEOUT_SECONDS, settings.VERSION)


def release_handed_off_update_lock(settings: VibelogSettings) -> bool:
    """Release the Update Lock if the parent process handed it to us.

    A re-dispatched latest-version child inherits the lock its parent acquired
    and is responsible for removing it when it finishes.
    """
    if os.environ.get(UPDATE_LOCK_HANDOFF_ENV) != '1':
        return False
    released = update_lock(settings).force_release()
    logger.debug('Released handed-off update lock (%s)', 'removed' if released else 'already gone')
    return released
