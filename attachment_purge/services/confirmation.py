"""
Preflight and confirmation coordination.

The dialogs themselves are collaborators (terminal prompt, MCP elicitation).
This module owns what surrounds them: a fresh correlation key per dialog,
the ephemeral preview entry the confirm dialog reads, the safety timeout,
and the rule that anything but an explicit True means cancel.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import time
import uuid
from collections.abc import Awaitable, Sequence

from attachment_purge.protocols import ConfirmationUI, PreviewStore
from attachment_purge.schemas.operations.evaluation import PreviewRow, PurgeStats

__all__ = ['ConfirmationCoordinator', 'RunKeyFactory']

logger = logging.getLogger(__name__)


class RunKeyFactory:
    """
    Correlation keys unique per invocation, across overlapping runs.

    Monotonic clock + process id + process-wide counter + random suffix.
    """

    _counter = itertools.count(1)

    def new_key(self, prefix: str) -> str:
        return f'{prefix}-{time.monotonic_ns():x}-{os.getpid():x}-{next(self._counter)}-{uuid.uuid4().hex[:8]}'


class ConfirmationCoordinator:
    """Runs the preflight warning and the final confirmation dialog."""

    def __init__(
        self,
        ui: ConfirmationUI,
        preview_store: PreviewStore,
        dialog_timeout_s: float = 600.0,
        keys: RunKeyFactory | None = None,
    ) -> None:
        self.ui = ui
        self.preview_store = preview_store
        self.dialog_timeout_s = dialog_timeout_s
        self.keys = keys or RunKeyFactory()

    async def preflight(self, selected_count: int) -> bool:
        """Large-selection warning, asked before any evaluation work."""
        key = self.keys.new_key('preflight')
        return await self._ask(key, self.ui.preflight(key, selected_count))

    async def confirm(self, stats: PurgeStats, rows: Sequence[PreviewRow]) -> bool:
        """
        Final consent before any backup write.

        The preview entry exists only while the dialog is open; it is removed
        whatever the answer, and a failing removal does not change the answer.
        """
        key = self.keys.new_key('confirm')
        await self.preview_store.put(
            key,
            {
                'stats': stats.model_dump(mode='json'),
                'preview_rows': [row.model_dump(mode='json') for row in rows],
            },
        )
        try:
            return await self._ask(key, self.ui.confirm(key, stats, rows))
        finally:
            try:
                await self.preview_store.remove(key)
            except Exception as e:
                logger.warning(f'Could not remove preview entry {key}: {e}')

    async def _ask(self, key: str, dialog: Awaitable[bool | None]) -> bool:
        try:
            async with asyncio.timeout(self.dialog_timeout_s):
                answer = await dialog
        except TimeoutError:
            logger.warning(f'Dialog {key} timed out after {self.dialog_timeout_s}s, treating as cancel')
            return False
        return answer is True
