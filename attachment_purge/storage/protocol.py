"""
Backup sink protocol.

Defines the download-style interface every backup destination implements
(local filesystem, HTTP). Writes are asynchronous: `write` hands back a handle
immediately and the sink reports progress per handle, both on demand
(`query_state`) and as a change stream (`changes`).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from typing import Protocol, runtime_checkable

from attachment_purge.schemas.operations.backup import SinkRecord


@runtime_checkable
class BackupSink(Protocol):
    """Protocol for backup destinations."""

    def stage(self, data: bytes) -> AbstractAsyncContextManager[str]:
        """
        Stage a blob for writing.

        The yielded source reference is only valid inside the context and is
        released on exit, whatever the outcome of the write.
        """
        ...

    async def write(self, source: str, path: str) -> int:
        """
        Start writing a staged blob under a logical path.

        Args:
            source: Reference yielded by `stage`
            path: Logical destination path (relative, '/'-separated)

        Returns:
            Handle identifying this write

        Raises:
            SinkWriteError: If the write cannot be started
        """
        ...

    async def query_state(self, handle: int) -> SinkRecord | None:
        """
        Return the sink's current record for a write, or None if unknown.
        """
        ...

    def changes(self, handle: int) -> AsyncIterator[SinkRecord]:
        """
        Stream state changes of one write.

        The stream ends after a terminal state (complete or interrupted).
        """
        ...
