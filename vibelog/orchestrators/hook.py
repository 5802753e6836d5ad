"""
Hook send orchestrator - the send path for editor lifecycle hooks.

Hooks block the host tool while they run, so this wrapper bounds the send
with a hard timeout, never raises, and holds the Upload Guard for the
duration so rapid hook firings do not upload the same sessions twice.

The send runs on its own event loop in a daemon thread. A collaborator that
blocks without awaiting (large transcripts, slow disks) cannot hold the hook
past the deadline, and an abandoned send dies with the process.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import threading
from typing import Literal

from vibelog.config.base import VibelogSettings
from vibelog.orchestrators.send import SendOrchestrator
from vibelog.schemas.sessions import SendOptions, SendReport
from vibelog.services.locks import FileMutex, upload_guard

__all__ = ['HookOutcome', 'HookSendOrchestrator', 'SendThread']

logger = logging.getLogger(__name__)

HookOutcome = Literal['tested', 'skipped', 'sent', 'failed', 'timed_out']


class HookSendOrchestrator:
    """Runs SendOrchestrator silently under a timeout and the Upload Guard."""

    def __init__(
        self,
        settings: VibelogSettings,
        send_orchestrator: SendOrchestrator,
        guard: FileMutex | None = None,
    ) -> None:
        self.settings = settings
        self.send_orchestrator = send_orchestrator
        self.guard = guard or upload_guard(settings)

    async def execute(self, options: SendOptions) -> HookOutcome:
        """
        Run a hook-triggered send. Never raises.

        Returns:
            'tested' for --test (no work done), 'skipped' if another upload holds
            the guard, otherwise 'sent', 'failed' or 'timed_out'
        """
        if options.test:
            logger.info('Hook test mode, nothing sent')
            return 'tested'

        handle = self.guard.try_acquire()
        if handle is None:
            logger.info('Another upload is in progress, skipping')
            return 'skipped'

        silent_options = options.model_copy(update={'silent': True})
        worker = SendThread(self.send_orchestrator, silent_options)
        worker.start()
        try:
            report = await asyncio.wait_for(
                asyncio.wrap_future(worker.result),
                timeout=self.settings.HOOK_TIMEOUT_SECONDS,
            )
        except TimeoutError:
            worker.cancel()
            logger.error('Hook send timed out after %.1fs', self.settings.HOOK_TIMEOUT_SECONDS)
            return 'timed_out'
        except Exception:
            # The send already swallows errors in silent mode; this guards the guard itself
            logger.exception('Hook send failed')
            return 'failed'
        finally:
            handle.release()

        return 'failed' if report.status == 'failed' else 'sent'


class SendThread(threading.Thread):
    """
    Daemon thread running one send on its own event loop.

    The outcome lands in `result`. cancel() cancels the send at its next
    await; work already handed to a worker thread finishes first.
    """

    def __init__(self, send_orchestrator: SendOrchestrator, options: SendOptions) -> None:
        super().__init__(name='vibelog-hook-send', daemon=True)
        self.send_orchestrator = send_orchestrator
        self.options = options
        self.result: concurrent.futures.Future[SendReport] = concurrent.futures.Future()
        self._cancelled = threading.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[SendReport] | None = None

    def run(self) -> None:
        self.result.set_running_or_notify_cancel()
        try:
            report = asyncio.run(self._send())
        except (Exception, asyncio.CancelledError) as e:
            self.result.set_exception(e)
        else:
            self.result.set_result(report)

    def cancel(self) -> None:
        self._cancelled.set()
        loop, task = self._loop, self._task
        if loop is None or task is None:
            return
        # The loop may close between the check and the call
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(task.cancel)

    async def _send(self) -> SendReport:
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.current_task()  # type: ignore[assignment]
        if self._cancelled.is_set():
            raise asyncio.CancelledError
        return await self.send_orchestrator.execute(self.options)
