"""
Send orchestrator - one upload attempt from transcripts to the remote service.

    LOAD -> FILTER -> SANITIZE -> PREVIEW -> CONFIRM? -> UPLOAD -> PERSIST

Collaborators (session source, transport, sync-state store) are injected, so
the orchestrator itself does no UI and no direct I/O. Nothing is uploaded or
persisted before CONFIRM; once UPLOAD starts it runs to completion or failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from vibelog.config.base import VibelogSettings
from vibelog.exceptions import AuthenticationError, NoSessionsError, VibelogError, classify_error
from vibelog.paths import parse_project_name
from vibelog.protocols import ConfirmCallback, PreviewCallback, ProgressCallback, SessionSource, SyncStateStore, Transport
from vibelog.schemas.messages import SanitizedMessage
from vibelog.schemas.sessions import (
    ApiSession,
    ApiSessionData,
    ApiSessionMetadata,
    SendOptions,
    SendReport,
    SessionRecord,
)
from vibelog.services.sanitizer import MessageSanitizer, dump_messages
from vibelog.services.summary import create_session_summary

__all__ = ['SendOrchestrator', 'build_api_session']

logger = logging.getLogger(__name__)


def _isoformat(moment: datetime) -> str:
    moment = moment if moment.tzinfo else moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def build_api_session(session: SessionRecord, sanitized: list[SanitizedMessage]) -> ApiSession:
    """Wire payload for one session. Only sanitized content is included."""
    return ApiSession(
        tool=session.tool,
        timestamp=_isoformat(session.timestamp),
        duration=session.duration,
        claude_session_id=session.claude_session_id,
        data=ApiSessionData(
            project_name=parse_project_name(session.project_path),
            message_summary=dump_messages(sanitized),
            message_count=len(session.messages),
            metadata=ApiSessionMetadata(
                files_edited=session.files_edited,
                languages=list(session.languages),
                models=list(session.models) or None,
                primary_model=session.primary_model,
                git_branch=session.git_branch,
            ),
        ),
    )


class SendOrchestrator:
    """
    Coordinates one send attempt.

    In silent mode every failure is logged and reported through the returned
    SendReport (status 'failed'); otherwise failures are classified into the
    VibelogError taxonomy and raised.
    """

    def __init__(
        self,
        settings: VibelogSettings,
        session_source: SessionSource,
        transport: Transport,
        sync_state: SyncStateStore,
        sanitizer: MessageSanitizer | None = None,
        cwd: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            settings: Settings (duration floor, initial sync window)
            session_source: Supplies session records (LOAD)
            transport: Uploads sanitized payloads (UPLOAD)
            sync_state: Watermark store (LOAD since-date, PERSIST)
            sanitizer: Redaction engine (defaults to the built-in pattern table)
            cwd: Working directory used for the default project filter
            clock: Current time source
        """
        self.settings = settings
        self.session_source = session_source
        self.transport = transport
        self.sync_state = sync_state
        self.sanitizer = sanitizer or MessageSanitizer(debug=settings.DEBUG)
        self.cwd = cwd
        self.clock = clock or (lambda: datetime.now(UTC))

    async def execute(
        self,
        options: SendOptions,
        *,
        on_progress: ProgressCallback | None = None,
        confirm: ConfirmCallback | None = None,
        preview: PreviewCallback | None = None,
    ) -> SendReport:
        """
        Run one send attempt.

        Args:
            options: Caller options (origin is defaulted once here)
            on_progress: Upload progress callback (current, total, size_kb)
            confirm: Interactive confirmation; ignored in silent, background and hook runs
            preview: Shows the redaction detail when confirm answers 'preview'

        Returns:
            SendReport describing what happened

        Raises:
            VibelogError: Any failure outside silent mode (already classified)
        """
        options = options.with_origin()
        report = SendReport()
        logger.debug('Send started (origin=%s)', options.origin)

        try:
            await self._run(options, report, on_progress, confirm, preview)
        except Exception as e:
            error = classify_error(e)
            report.status = 'failed'
            report.error = error.message
            if options.silent:
                logger.error('Send failed [%s]: %s', error.code, error.message, exc_info=error is not e)
                return report
            if error is e:
                raise
            raise error from e

        return report

    async def _run(
        self,
        options: SendOptions,
        report: SendReport,
        on_progress: ProgressCallback | None,
        confirm: ConfirmCallback | None,
        preview: PreviewCallback | None,
    ) -> None:
        if not options.dry and not self.transport.is_authenticated():
            raise AuthenticationError('Not authenticated. Set VIBE_LOG_API_TOKEN to upload sessions.')

        # LOAD
        sessions = await self.load_sessions(options)
        report.loaded = len(sessions)
        if not sessions:
            logger.info('No sessions found')
            report.status = 'no_sessions'
            return

        # FILTER
        kept = self.filter_sessions(sessions)
        report.filtered_out = len(sessions) - len(kept)
        if not kept:
            if options.is_initial_sync:
                logger.info('No sessions long enough for initial sync')
                report.status = 'no_sessions'
                return
            raise NoSessionsError(report.filtered_out, self.settings.MIN_SESSION_DURATION_SECONDS)

        # SANITIZE
        uploadable: list[SessionRecord] = []
        api_sessions: list[ApiSession] = []
        all_messages: list[SanitizedMessage] = []
        for session in kept:
            try:
                # Off the event loop, so cancellation lands between sessions
                sanitized, api_session = await asyncio.to_thread(self.prepare_session, session)
            except Exception:
                logger.warning('Could not prepare session %s, skipping it', session.id, exc_info=True)
                report.failed += 1
                continue
            api_sessions.append(api_session)
            uploadable.append(session)
            all_messages.extend(sanitized)
        report.sanitized = len(api_sessions)
        if not api_sessions:
            raise VibelogError(f'Could not prepare any of {report.failed} session(s) for upload.', 'SEND_FAILED')

        # PREVIEW
        summary = create_session_summary(all_messages)
        report.total_redactions = summary.redaction_summary.total_redactions
        report.by_type = dict(summary.redaction_summary.by_type)
        logger.info(
            'Prepared %d session(s) with %d redaction(s) (%d filtered, %d failed)',
            report.sanitized,
            report.total_redactions,
            report.filtered_out,
            report.failed,
        )

        if options.dry:
            logger.info('Dry run - no data sent')
            report.status = 'dry_run'
            return

        # CONFIRM
        interactive = not (options.silent or options.background or options.hook_trigger)
        if interactive and confirm is not None:
            while True:
                choice = await confirm(len(api_sessions), report.total_redactions)
                if choice == 'proceed':
                    break
                if choice == 'cancel':
                    logger.info('Upload cancelled')
                    report.status = 'cancelled'
                    return
                if preview is not None:
                    await preview(summary, api_sessions)

        # UPLOAD
        logger.debug('Uploading %d sessions', len(api_sessions))
        report.result = await self.transport.upload(api_sessions, on_progress)
        report.uploaded = len(api_sessions)

        # PERSIST
        self.persist(uploadable, options)
        report.status = 'uploaded'
        logger.info('Uploaded %d session(s)', report.uploaded)

    async def load_sessions(self, options: SendOptions) -> list[SessionRecord]:
        """Candidate sessions, by precedence: selection, --all, project dir, cwd."""
        if options.selected_sessions:
            return await self.session_source.read_selected(options.selected_sessions)

        # --all wins over the project dir so global hooks see every project
        if options.all:
            return await self.session_source.read_sessions()

        since = self.determine_since_date(options)
        if options.claude_project_dir and options.claude_project_dir.strip():
            return await self.session_source.read_sessions(since=since, project_dir=options.claude_project_dir)

        return await self.session_source.read_sessions(since=since, project_path=self.cwd)

    def determine_since_date(self, options: SendOptions) -> datetime | None:
        """Hook runs resume from the project watermark; manual runs have no date filter."""
        if not (options.hook_trigger and options.claude_project_dir):
            return None
        watermark = self.sync_state.get_project_watermark(parse_project_name(options.claude_project_dir))
        if watermark is not None:
            return watermark
        return self.clock() - timedelta(days=self.settings.INITIAL_SYNC_DAYS)

    def prepare_session(self, session: SessionRecord) -> tuple[list[SanitizedMessage], ApiSession]:
        sanitized = self.sanitizer.sanitize_messages(session.messages)
        return sanitized, build_api_session(session, sanitized)

    def filter_sessions(self, sessions: list[SessionRecord]) -> list[SessionRecord]:
        floor = self.settings.MIN_SESSION_DURATION_SECONDS
        kept = []
        for session in sessions:
            if session.duration < floor:
                logger.debug('Filtering out short session (%ds < %ds) from %s', session.duration, floor, session.project_path)
                continue
            kept.append(session)
        return kept

    def persist(self, sessions: list[SessionRecord], options: SendOptions) -> None:
        current_project = parse_project_name(self.cwd) if self.cwd else None
        if options.claude_project_dir:
            self.sync_state.record_sync(
                sessions,
                project_name=parse_project_name(options.claude_project_dir),
                display_name=current_project,
            )
        elif options.all:
            self.sync_state.record_sync(sessions, display_name='all projects')
        else:
            self.sync_state.record_sync(sessions, display_name=current_project)
