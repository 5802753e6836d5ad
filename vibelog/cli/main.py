#!/usr/bin/env python3
"""
Command-line interface for vibelog.

Provides the `send` command (interactive, hook and background uploads) and
`locks` for inspecting the cross-process lock files.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Sequence

import pydantic
import typer

from vibelog import __version__
from vibelog.cli.logger import CLILogger
from vibelog.config import base as config
from vibelog.config.base import OUTPUT_ENV, VibelogSettings, get_settings
from vibelog.exceptions import VibelogError
from vibelog.orchestrators import BackgroundSendOrchestrator, HookSendOrchestrator, SendOrchestrator
from vibelog.protocols import ConfirmChoice, LoggerProtocol, NullLogger
from vibelog.schemas.messages import SessionSummary
from vibelog.schemas.sessions import ApiSession, SendOptions, SendReport
from vibelog.services.locks import release_handed_off_update_lock, update_lock, upload_guard
from vibelog.services.reader import ClaudeSessionReader
from vibelog.services.summary import count_total_redactions, redaction_breakdown
from vibelog.services.sync_state import JsonSyncStateStore
from vibelog.services.transport import ApiClient

app = typer.Typer(
    name='vibelog',
    help='Upload sanitized Claude Code sessions to vibe-log',
    add_completion=False,
)

# Shown under the error message, keyed by VibelogError.code
ERROR_HINTS: dict[str, str] = {
    'AUTH_REQUIRED': 'Set VIBE_LOG_API_TOKEN to your vibe-log API token and try again.',
    'VALIDATION_ERROR': 'Only sessions of at least 4 minutes are uploaded. Keep coding and try again later.',
    'NETWORK_ERROR': 'Check your internet connection and try again.',
    'CONNECTION_REFUSED': 'Check that no firewall or proxy blocks vibe-log.dev.',
    'TIMEOUT': 'Your connection may be slow. Try again in a moment.',
    'CONNECTION_RESET': 'Try again in a moment.',
    'SERVICE_UNAVAILABLE': 'vibe-log is temporarily unavailable. Try again in a few minutes.',
    'RATE_LIMITED': 'Wait a minute before uploading again.',
    'DISK_FULL': 'Free up some disk space and try again.',
    'PERMISSION_DENIED': 'Check the permissions of ~/.vibe-log and ~/.claude.',
    'SESSION_READ_ERROR': 'Make sure Claude Code has been used at least once on this machine.',
}


def _configure_logging(verbose: bool, silent: bool, settings: VibelogSettings) -> None:
    """Route vibelog's log records to a file for detached children, or to the terminal unless silent."""
    output = os.environ.get(OUTPUT_ENV) or (str(settings.OUTPUT) if settings.OUTPUT else None)
    handler: logging.Handler
    if output:
        handler = logging.FileHandler(output, encoding='utf-8')
        level = logging.DEBUG if verbose or settings.DEBUG else logging.INFO
    elif silent:
        handler = logging.NullHandler()
        level = logging.WARNING
    else:
        handler = logging.StreamHandler(sys.stderr)
        level = logging.DEBUG if verbose or settings.DEBUG else logging.WARNING
    handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))

    package_logger = logging.getLogger('vibelog')
    package_logger.handlers = [handler]
    package_logger.setLevel(level)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f'vibelog {__version__}')
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, '--version', help='Show the version and exit', callback=_version_callback, is_eager=True
    ),
) -> None:
    """Upload sanitized Claude Code sessions to vibe-log."""


@app.command()
def send(
    silent: bool = typer.Option(False, '--silent', help='No output; never fails (for hooks)'),
    background: bool = typer.Option(False, '--background', help='Upload in a detached process and return at once'),
    dry: bool = typer.Option(False, '--dry', help='Sanitize and preview without uploading'),
    all_projects: bool = typer.Option(False, '--all', help='Upload sessions from every project'),
    hook_trigger: str | None = typer.Option(None, '--hook-trigger', help='Hook event that triggered this run'),
    hook_version: str | None = typer.Option(None, '--hook-version', help='Version of the installed hook'),
    claude_project_dir: str | None = typer.Option(
        None, '--claude-project-dir', help='Only upload sessions of this Claude project'
    ),
    test: bool = typer.Option(False, '--test', help='Validate the hook setup without doing any work'),
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Verbose output'),
) -> None:
    """Sanitize local sessions and upload them to vibe-log."""
    try:
        settings = get_settings()
    except (pydantic.ValidationError, FileNotFoundError) as e:
        if silent:
            raise typer.Exit(0)
        typer.secho(f'Error: invalid configuration: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    _configure_logging(verbose, silent, settings)
    options = SendOptions(
        silent=silent,
        dry=dry,
        background=background,
        all=all_projects,
        test=test,
        hook_trigger=hook_trigger,
        hook_version=hook_version,
        claude_project_dir=claude_project_dir,
    )

    try:
        exit_code = asyncio.run(_send_async(options, settings, verbose))
    except Exception:
        if not silent:
            raise
        # Silent runs are invoked by hooks and must never fail them
        logging.getLogger(__name__).exception('Silent send failed')
        exit_code = 0
    finally:
        release_handed_off_update_lock(settings)

    if exit_code:
        raise typer.Exit(exit_code)


def _build_send_orchestrator(settings: VibelogSettings) -> SendOrchestrator:
    return SendOrchestrator(
        settings,
        session_source=ClaudeSessionReader(settings.CLAUDE_PROJECTS_DIR),
        transport=ApiClient(settings),
        sync_state=JsonSyncStateStore(settings.sync_state_path),
        cwd=os.getcwd(),
    )


async def _send_async(options: SendOptions, settings: VibelogSettings, verbose: bool) -> int:
    """Async implementation of send command. Returns the exit code."""
    logger: LoggerProtocol = NullLogger() if options.silent else CLILogger(verbose=verbose)

    if options.test:
        await HookSendOrchestrator(settings, _build_send_orchestrator(settings)).execute(options)
        typer.echo('Hook test successful')
        return 0

    if options.background and options.hook_trigger:
        outcome = await BackgroundSendOrchestrator(settings).execute(options)
        await logger.info(f'Background dispatch: {outcome}')
        return 0

    orchestrator = _build_send_orchestrator(settings)

    if options.hook_trigger:
        outcome = await HookSendOrchestrator(settings, orchestrator).execute(options)
        await logger.info(f'Hook send: {outcome}')
        return 0

    if options.silent:
        await orchestrator.execute(options)
        return 0

    try:
        report = await orchestrator.execute(
            options,
            on_progress=_print_progress,
            confirm=_confirm_upload,
            preview=_print_preview,
        )
    except VibelogError as e:
        typer.secho(f'Error: {e.message}', fg=typer.colors.RED, err=True)
        hint = ERROR_HINTS.get(e.code)
        if hint:
            typer.echo(f'  {hint}', err=True)
        if verbose:
            await logger.error(f'Error code: {e.code}')
        return 1

    await _print_report(report, logger)
    return 0


async def _confirm_upload(session_count: int, total_redactions: int) -> ConfirmChoice:
    typer.echo(f'Ready to upload {session_count} session(s) with {total_redactions} item(s) redacted.')
    answer = typer.prompt('Upload now? [y]es / [p]review / [n]o', default='y').strip().lower()
    if answer in ('p', 'preview'):
        return 'preview'
    if answer in ('y', 'yes'):
        return 'proceed'
    return 'cancel'


async def _print_preview(summary: SessionSummary, sessions: Sequence[ApiSession]) -> None:
    # Counts are decoded from the payloads as they would be uploaded
    typer.echo()
    typer.secho('Redaction summary:', bold=True)
    for category, count in redaction_breakdown(sessions).items():
        typer.echo(f'  {category.replace("_", " ")}: {count}')
    typer.echo(f'  total: {summary.redaction_summary.total_redactions}')

    typer.echo()
    typer.secho('Sessions:', bold=True)
    for session in sessions:
        typer.echo(
            f'  {session.timestamp}  {session.data.project_name}: '
            f'{session.data.message_count} message(s), {count_total_redactions([session])} redaction(s)'
        )

    typer.echo()
    typer.secho('Conversation preview (sanitized):', bold=True)
    for line in summary.conversation_flow.splitlines()[:10]:
        typer.echo(f'  {line[:120]}')
    typer.echo()


def _print_progress(current: int, total: int, size_kb: float | None) -> None:
    size = f' ({size_kb:.1f} KB)' if size_kb is not None else ''
    typer.echo(f'  Uploaded {current}/{total} session(s){size}')


async def _print_report(report: SendReport, logger: LoggerProtocol) -> None:
    if report.status == 'no_sessions':
        await logger.warning('No sessions found to upload.')
        return
    if report.status == 'cancelled':
        typer.echo('Upload cancelled. Nothing was sent.')
        return
    if report.status == 'dry_run':
        typer.secho('✓ Dry run complete - nothing was sent', fg=typer.colors.GREEN)
        typer.echo(f'  Sessions: {report.sanitized} ready, {report.filtered_out} too short, {report.failed} failed')
        typer.echo(f'  Redactions: {report.total_redactions}')
        return

    typer.secho(f'✓ Uploaded {report.uploaded} session(s)', fg=typer.colors.GREEN)
    if report.filtered_out:
        typer.echo(f'  Skipped {report.filtered_out} session(s) shorter than 4 minutes')
    if report.failed:
        await logger.warning(f'{report.failed} session(s) could not be prepared and were skipped')
    typer.echo(f'  Redactions: {report.total_redactions}')
    if report.result is not None:
        typer.echo(f'  New: {report.result.created}, already uploaded: {report.result.duplicates}')
        points = report.result.points_earned
        if points is not None and points.total:
            typer.echo(f'  Points earned: {points.total} ({points.streak} streak + {points.volume} volume)')


@app.command()
def locks(
    clear: bool = typer.Option(False, '--clear', help='Remove both lock files'),
) -> None:
    """Show the update and upload lock files."""
    settings = config.settings
    for label, mutex in (('Update lock', update_lock(settings)), ('Upload guard', upload_guard(settings))):
        status = mutex.status()
        typer.secho(f'{label}: {status.path}', bold=True)
        if not status.exists:
            typer.echo('  not held')
            continue
        if status.record is None:
            typer.secho('  corrupt (treated as stale)', fg=typer.colors.YELLOW)
        else:
            alive = 'alive' if status.owner_alive else 'not running'
            typer.echo(f'  pid {status.record.pid} ({alive}), version {status.record.version}')
            typer.echo(f'  age {status.age_seconds:.0f}s{" - stale" if status.stale else ""}')
        if clear:
            mutex.force_release()
            typer.secho('  removed', fg=typer.colors.GREEN)


def main() -> None:
    """Entry point for CLI."""
    app()


if __name__ == '__main__':
    main()
