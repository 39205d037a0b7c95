"""Shared utilities for the MCP server."""

from __future__ import annotations

# Standard Library
import logging
import sys
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

# Third-Party Libraries
import pydantic
from mcp.server.fastmcp import Context

# Local
from attachment_purge.paths import human_size
from attachment_purge.schemas.operations.evaluation import PreviewRow, PurgeStats

logger = logging.getLogger(__name__)

MAX_PREVIEW_ROWS = 10


class DualLogger:
    """Logs messages to both stderr and MCP client context."""

    def __init__(self, ctx: Context[Any, Any, Any]) -> None:
        self.ctx = ctx

    def _timestamp(self) -> str:
        return datetime.now(UTC).strftime('%Y-%m-%d %H:%M:%S')

    async def info(self, message: str) -> None:
        print(f'[{self._timestamp()}] [INFO] {message}', file=sys.stderr)
        await self.ctx.info(message)

    async def warning(self, message: str) -> None:
        print(f'[{self._timestamp()}] [WARNING] {message}', file=sys.stderr)
        await self.ctx.warning(message)

    async def error(self, message: str) -> None:
        print(f'[{self._timestamp()}] [ERROR] {message}', file=sys.stderr)
        await self.ctx.error(message)


class ConfirmSchema(pydantic.BaseModel):
    """Form shown to the user by the MCP client."""

    confirm: bool = pydantic.Field(default=False, description='Check to proceed')


class ElicitationConfirmationUI:
    """
    ConfirmationUI backed by MCP elicitation.

    Declined, cancelled or failed elicitations are reported as no answer,
    which the coordinator treats as cancel.
    """

    def __init__(self, ctx: Context[Any, Any, Any], assume_yes: bool = False) -> None:
        self.ctx = ctx
        self.assume_yes = assume_yes

    async def preflight(self, key: str, selected_count: int) -> bool | None:
        return await self._ask(f'{selected_count} messages are selected. Evaluating them may take a while. Continue?')

    async def confirm(self, key: str, stats: PurgeStats, rows: Sequence[PreviewRow]) -> bool | None:
        lines = [
            f'{stats.total_payloads} attachments ({human_size(stats.total_bytes)}) '
            f'in {stats.affected_records} messages will be backed up and then deleted.',
        ]
        lines += [f'- .{ext.ext}: {ext.count} files, {human_size(ext.bytes)}' for ext in stats.extensions]
        for row in rows[:MAX_PREVIEW_ROWS]:
            names = ', '.join(payload.name for payload in row.payloads)
            lines.append(f'* {row.date} {row.title}: {names}')
        if len(rows) > MAX_PREVIEW_ROWS:
            lines.append(f'... and {len(rows) - MAX_PREVIEW_ROWS} more messages')
        return await self._ask('\n'.join(lines))

    async def _ask(self, message: str) -> bool | None:
        if self.assume_yes:
            return True
        try:
            result = await self.ctx.elicit(message=message, schema=ConfirmSchema)
        except Exception as e:
            logger.warning(f'Elicitation failed, treating as no answer: {e}')
            return None
        if result.action != 'accept':
            return None
        return result.data.confirm


class ContextNotifier:
    """Sends the run's final notification to the MCP client log."""

    def __init__(self, ctx: Context[Any, Any, Any]) -> None:
        self.ctx = ctx

    async def notify(self, title: str, message: str) -> None:
        await self.ctx.info(f'{title}: {message}')
