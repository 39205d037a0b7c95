"""
Verified backup writer.

Writes one blob to one logical path through a BackupSink and only reports
success once the sink itself confirms a completed write whose file exists.
A returned download is not proof of durability: the sink's index may lag its
completion event, and an unknown existence flag is never read as success.

The writer never raises to its caller; every path ends in a BackupOutcome.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from attachment_purge.paths import add_suffix_to_path
from attachment_purge.schemas.operations.backup import BackupOutcome, SinkRecord
from attachment_purge.storage.protocol import BackupSink

__all__ = ['VerifiedBackupWriter', 'attempt_path']

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def attempt_path(logical_path: str, attempt: int) -> str:
    """
    Physical filename for an attempt.

    Always derived from the original logical path, never from a name a
    previous attempt resolved to.
    """
    if attempt == 1:
        return logical_path
    return add_suffix_to_path(logical_path, f'_retry{attempt}')


class VerifiedBackupWriter:
    """Write-wait-verify loop with linear backoff between attempts."""

    def __init__(
        self,
        sink: BackupSink,
        max_retries: int = 3,
        backoff_base_ms: int = 400,
        verify_polls: int = 3,
        verify_poll_delay_ms: int = 150,
        completion_timeout_s: float = 60.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.sink = sink
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.verify_polls = verify_polls
        self.verify_poll_delay_ms = verify_poll_delay_ms
        self.completion_timeout_s = completion_timeout_s
        self._sleep = sleep

    async def write(self, data: bytes, logical_path: str) -> BackupOutcome:
        """
        Back up `data` under `logical_path`, retrying until verified or out of attempts.

        Returns:
            BackupOutcome with success=True and the sink's resolved path, or
            success=False after the last attempt
        """
        for attempt in range(1, self.max_retries + 1):
            path = attempt_path(logical_path, attempt)
            try:
                resolved = await self._attempt(data, path)
            except Exception as e:
                logger.warning(f'Backup attempt {attempt}/{self.max_retries} failed for {path}: {e}')
                resolved = None

            if resolved is not None:
                return BackupOutcome(
                    success=True,
                    logical_path=logical_path,
                    resolved_path=resolved,
                    attempts_used=attempt,
                )

            if attempt < self.max_retries:
                await self._sleep(self.backoff_base_ms * attempt / 1000)

        logger.warning(f'Backup not verified after {self.max_retries} attempts: {logical_path}')
        return BackupOutcome(success=False, logical_path=logical_path, attempts_used=self.max_retries)

    async def _attempt(self, data: bytes, path: str) -> str | None:
        """One write + wait + verify. Returns the resolved path, or None if not verified."""
        async with self.sink.stage(data) as source:
            handle = await self.sink.write(source, path)

            initial = await self.sink.query_state(handle)
            if initial is None or initial.state != 'complete':
                if not await self._wait_for_completion(handle):
                    return None

            record = await self._verify(handle)
            if record is None:
                return None
            return record.resolved_path or path

    async def _wait_for_completion(self, handle: int) -> bool:
        """Follow the sink's change stream until a terminal state or timeout."""
        try:
            async with asyncio.timeout(self.completion_timeout_s):
                async for change in self.sink.changes(handle):
                    if change.state == 'complete':
                        return True
                    if change.state == 'interrupted':
                        logger.warning(f'Write {handle} interrupted: {change.error or "no reason given"}')
                        return False
        except TimeoutError:
            logger.warning(f'Write {handle} did not complete within {self.completion_timeout_s}s')
            return False

        # Stream ended without a terminal state - let verification decide
        return True

    async def _verify(self, handle: int) -> SinkRecord | None:
        """
        Poll the sink's record until it shows a complete, existing file.

        `exists` must be exactly True; None (unknown) counts as not yet verified.
        """
        for poll in range(self.verify_polls):
            record = await self.sink.query_state(handle)
            if record is not None and record.state == 'complete' and record.exists is True:
                return record
            if poll < self.verify_polls - 1:
                await self._sleep(self.verify_poll_delay_ms / 1000)
        return None
