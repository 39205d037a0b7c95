#!/usr/bin/env python3
"""
Command-line interface for attachment-purge.

Provides commands to preview and purge the attachments of Maildir messages,
backing every attachment and message body up before anything is deleted.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, TypeGuard

import typer

from attachment_purge.cli.logger import CLILogger
from attachment_purge.cli.prompts import TerminalConfirmationUI, TerminalNotifier, render_preview, render_stats
from attachment_purge.config.base import BodyBackupScope, PurgeSettings, settings
from attachment_purge.exceptions import AttachmentPurgeError
from attachment_purge.services.evaluation import SelectionEvaluator, collect_selected_ids
from attachment_purge.services.purge import AttachmentPurgeService
from attachment_purge.services.runtime import PurgeRuntime
from attachment_purge.storage.http import WebDavSink
from attachment_purge.storage.local import LocalFileSystemSink
from attachment_purge.stores.maildir import MaildirRecordStore
from attachment_purge.stores.preview import InMemoryPreviewStore

app = typer.Typer(
    name='attachment-purge',
    help='Back up, verify and delete email attachments',
    add_completion=False,
)

SUCCESS_STATUSES = ('completed', 'nothing_to_do')


def _is_body_scope(value: str) -> TypeGuard[BodyBackupScope]:
    return value in ('records_with_payloads', 'all_selected')


def _validate_body_scope(value: str | None) -> BodyBackupScope | None:
    """Validate and narrow body scope for typer callback."""
    if value is None:
        return None
    if _is_body_scope(value):
        return value
    raise typer.BadParameter("Must be 'records_with_payloads' or 'all_selected'")


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, '--debug', help='Show library debug logging'),
) -> None:
    """Back up, verify and delete email attachments."""
    logging.basicConfig(level=logging.DEBUG if debug else logging.WARNING, format='%(levelname)s %(name)s: %(message)s')

    # One runtime per invocation; released when the command finishes
    runtime = PurgeRuntime()
    runtime.initialize()
    ctx.obj = runtime
    ctx.call_on_close(runtime.shutdown)


@app.command()
def preview(
    maildir: Path = typer.Argument(..., help='Maildir folder (with cur/ and new/)'),
    message: list[str] | None = typer.Option(None, '--message', '-m', help='Message key to include (repeatable)'),
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Verbose output'),
) -> None:
    """Show what a purge would back up and delete, without changing anything."""
    asyncio.run(_preview_async(maildir, message, verbose))


@app.command()
def purge(
    ctx: typer.Context,
    maildir: Path = typer.Argument(..., help='Maildir folder (with cur/ and new/)'),
    message: list[str] | None = typer.Option(None, '--message', '-m', help='Message key to include (repeatable)'),
    backup_dir: Path | None = typer.Option(None, '--backup-dir', '-o', help='Local backup directory'),
    webdav_url: str | None = typer.Option(None, '--webdav-url', help='Back up to a WebDAV collection instead'),
    webdav_token: str | None = typer.Option(None, '--webdav-token', help='WebDAV bearer token (or use WEBDAV_TOKEN env)'),
    yes: bool = typer.Option(False, '--yes', '-y', help='Skip confirmation prompts'),
    body_scope: str | None = typer.Option(
        None,
        '--body-scope',
        help='Body snapshots for: records_with_payloads or all_selected',
        callback=_validate_body_scope,
    ),
    batch_size: int | None = typer.Option(None, '--batch-size', help='Attachments per deletion call (1-64)'),
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Verbose output'),
) -> None:
    """Back up every attachment and body of the selected messages, then delete the attachments."""
    if backup_dir is None and webdav_url is None:
        typer.secho('Error: Provide --backup-dir or --webdav-url.', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    overrides: dict[str, Any] = {}
    if body_scope is not None:
        overrides['BODY_BACKUP_SCOPE'] = body_scope
    if batch_size is not None:
        overrides['DELETE_BATCH_SIZE'] = batch_size

    try:
        run_settings = PurgeSettings.model_validate({**settings.model_dump(), **overrides})
    except ValueError as e:
        typer.secho(f'Error: Invalid option: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    status = asyncio.run(
        _purge_async(ctx.obj, maildir, message, backup_dir, webdav_url, webdav_token, yes, run_settings, verbose)
    )
    if status not in SUCCESS_STATUSES:
        raise typer.Exit(1)


async def _preview_async(maildir: Path, message: list[str] | None, verbose: bool) -> None:
    """Async implementation of preview command."""
    logger = CLILogger(verbose=verbose)

    try:
        store = MaildirRecordStore(maildir, selection=message or None)
        ids = await collect_selected_ids(store)
        evaluation = await SelectionEvaluator(store).evaluate(ids, logger=logger)
    except (AttachmentPurgeError, ValueError, KeyError) as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    typer.echo(f'Selected records: {len(evaluation.selected_ids)}')
    for line in render_stats(evaluation.stats):
        typer.echo(line)
    if evaluation.preview:
        typer.echo()
        for line in render_preview(evaluation.preview):
            typer.echo(line)


async def _purge_async(
    runtime: PurgeRuntime,
    maildir: Path,
    message: list[str] | None,
    backup_dir: Path | None,
    webdav_url: str | None,
    webdav_token: str | None,
    yes: bool,
    run_settings: PurgeSettings,
    verbose: bool,
) -> str:
    """Async implementation of purge command. Returns the run status."""
    logger = CLILogger(verbose=verbose)

    try:
        store = MaildirRecordStore(maildir, selection=message or None)
        sink: WebDavSink | LocalFileSystemSink
        if webdav_url:
            sink = WebDavSink(webdav_url, token=webdav_token or os.environ.get('WEBDAV_TOKEN'))
            lock_dir = backup_dir or maildir
            await logger.info(f'Backing up to {webdav_url}')
        else:
            assert backup_dir is not None
            sink = LocalFileSystemSink(backup_dir)
            lock_dir = backup_dir / run_settings.SAVE_ROOT
            await logger.info(f'Backing up to {lock_dir}')
    except ValueError as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    service = AttachmentPurgeService(
        store=store,
        sink=sink,
        ui=TerminalConfirmationUI(assume_yes=yes),
        notifier=TerminalNotifier(),
        preview_store=InMemoryPreviewStore(),
        settings=run_settings,
    )

    try:
        async with runtime.exclusive_run(lock_dir):
            result = await service.run(logger=logger)
    except AttachmentPurgeError as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    finally:
        await sink.aclose()

    await logger.info(f'Run finished with status {result.status} in {result.duration_ms:.0f} ms')
    return result.status


if __name__ == '__main__':
    app()
