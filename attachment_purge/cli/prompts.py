"""
Terminal dialogs and notifications.

Implements ConfirmationUI and Notifier on top of typer prompts and output.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Sequence

import typer

from attachment_purge.paths import human_size
from attachment_purge.schemas.operations.evaluation import PreviewRow, PurgeStats

MAX_PREVIEW_ROWS = 20


def render_stats(stats: PurgeStats) -> list[str]:
    lines = [
        f'Records with attachments: {stats.affected_records}',
        f'Attachments: {stats.total_payloads} ({human_size(stats.total_bytes)})',
    ]
    for ext in stats.extensions:
        lines.append(f'  .{ext.ext:<10} {ext.count:>5} files  {human_size(ext.bytes):>10}')
    return lines


def render_preview(rows: Sequence[PreviewRow], limit: int = MAX_PREVIEW_ROWS) -> list[str]:
    lines: list[str] = []
    for row in rows[:limit]:
        lines.append(f'{row.date}  {row.author}  {row.title}')
        for payload in row.payloads:
            lines.append(f'    - {payload.name} ({human_size(payload.size)}, {payload.content_type})')
    if len(rows) > limit:
        lines.append(f'... and {len(rows) - limit} more records')
    return lines


class TerminalConfirmationUI:
    """
    Asks on the terminal; `assume_yes` answers every dialog with yes.

    Prompts run in a daemon thread so the event loop keeps serving the
    dialog timeout, and an expired prompt does not hold up exit.
    """

    def __init__(self, assume_yes: bool = False) -> None:
        self.assume_yes = assume_yes

    async def preflight(self, key: str, selected_count: int) -> bool | None:
        typer.secho(
            f'{selected_count} records are selected. Evaluating them may take a while.',
            fg=typer.colors.YELLOW,
        )
        return await self._ask('Continue?')

    async def confirm(self, key: str, stats: PurgeStats, rows: Sequence[PreviewRow]) -> bool | None:
        for line in render_stats(stats):
            typer.echo(line)
        typer.echo()
        for line in render_preview(rows):
            typer.echo(line)
        typer.echo()
        return await self._ask('Back up and then delete these attachments?')

    async def _ask(self, question: str) -> bool | None:
        if self.assume_yes:
            return True

        loop = asyncio.get_running_loop()
        answer: asyncio.Future[bool | None] = loop.create_future()

        def resolve(value: bool | None, error: BaseException | None = None) -> None:
            if answer.done():
                return
            if error is not None:
                answer.set_exception(error)
            else:
                answer.set_result(value)

        def prompt() -> None:
            value: bool | None = None
            error: BaseException | None = None
            try:
                value = typer.confirm(question, default=False)
            except typer.Abort:
                value = None
            except Exception as e:
                error = e
            try:
                loop.call_soon_threadsafe(resolve, value, error)
            except RuntimeError:
                pass  # Loop already closed: the dialog timed out and the run ended

        # Daemon thread: an unanswered prompt must not keep the process alive
        threading.Thread(target=prompt, name='confirm-prompt', daemon=True).start()
        return await answer


class TerminalNotifier:
    """Prints the run's final notification."""

    async def notify(self, title: str, message: str) -> None:
        typer.secho(title, bold=True)
        typer.echo(message)
