"""
Per-handle write bookkeeping shared by the backup sinks.

Keeps the latest SinkRecord of every write and fans state changes out to
subscribers of `changes()`.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator, Awaitable, Callable

import attrs

from attachment_purge.schemas.operations.backup import SinkRecord


@attrs.define
class WriteJob:
    """Mutable bookkeeping for one background write."""

    record: SinkRecord
    task: asyncio.Task[None] | None = None
    listeners: list[asyncio.Queue[SinkRecord]] = attrs.Factory(list)


class WriteTracker:
    """Handle allocation, state storage and change notification."""

    def __init__(self) -> None:
        self._handles = itertools.count(1)
        self._jobs: dict[int, WriteJob] = {}

    def start(self, work: Callable[[int], Awaitable[None]]) -> int:
        """Register a new in-progress write and run `work(handle)` in the background."""
        handle = next(self._handles)
        job = WriteJob(record=SinkRecord(handle=handle, state='in_progress'))
        self._jobs[handle] = job
        job.task = asyncio.ensure_future(work(handle))
        return handle

    def get(self, handle: int) -> SinkRecord | None:
        job = self._jobs.get(handle)
        return job.record if job is not None else None

    def publish(self, handle: int, **update: object) -> None:
        job = self._jobs[handle]
        job.record = job.record.model_copy(update=update)
        for queue in job.listeners:
            queue.put_nowait(job.record)

    async def changes(self, handle: int) -> AsyncIterator[SinkRecord]:
        job = self._jobs.get(handle)
        if job is None:
            return
        if job.record.state != 'in_progress':
            yield job.record
            return

        queue: asyncio.Queue[SinkRecord] = asyncio.Queue()
        job.listeners.append(queue)
        try:
            while True:
                record = await queue.get()
                yield record
                if record.state != 'in_progress':
                    return
        finally:
            job.listeners.remove(queue)

    async def drain(self) -> None:
        """Wait for background writes still running."""
        tasks = [job.task for job in self._jobs.values() if job.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
