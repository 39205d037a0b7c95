"""
Local filesystem backup sink.

Implements BackupSink for a local directory, behaving like a browser download
manager: writes run in the background, colliding names are uniquified
(`name (1).ext`), and existence is only reported once the write has completed.
"""

from __future__ import annotations

import asyncio
import logging
import pathlib
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from attachment_purge.exceptions import SinkWriteError
from attachment_purge.schemas.operations.backup import SinkRecord
from attachment_purge.storage.jobs import WriteTracker

logger = logging.getLogger(__name__)


class LocalFileSystemSink:
    """Local filesystem backup sink."""

    def __init__(self, base_path: pathlib.Path) -> None:
        """
        Initialize local filesystem sink.

        Args:
            base_path: Base directory backups are written under

        Raises:
            ValueError: If base_path doesn't exist (fail-fast)
        """
        if not base_path.exists():
            raise ValueError(f'Backup path does not exist: {base_path}. Please create it first.')

        if not base_path.is_dir():
            raise ValueError(f'Backup path is not a directory: {base_path}')

        self.base_path = base_path.resolve()
        self._tracker = WriteTracker()

    @asynccontextmanager
    async def stage(self, data: bytes) -> AsyncIterator[str]:
        """Spool the blob to a temporary file; the file is removed on exit."""
        fd, name = tempfile.mkstemp(prefix='attachment-purge-', suffix='.blob')
        staged = pathlib.Path(name)
        try:
            with open(fd, 'wb') as f:
                f.write(data)
            yield str(staged)
        finally:
            staged.unlink(missing_ok=True)

    async def write(self, source: str, path: str) -> int:
        """
        Start copying a staged blob to base_path / path.

        Returns:
            Handle for query_state / changes

        Raises:
            SinkWriteError: If the path escapes base_path or the source is gone
        """
        destination = (self.base_path / path).resolve()
        if not destination.is_relative_to(self.base_path):
            raise SinkWriteError(f'Refusing to write outside {self.base_path}: {path}')

        source_path = pathlib.Path(source)
        if not source_path.is_file():
            raise SinkWriteError(f'Staged blob not found: {source}')
        # Read now: the staged file is released when the caller leaves `stage`
        data = source_path.read_bytes()

        destination.parent.mkdir(parents=True, exist_ok=True)
        destination = self._uniquify(destination)
        # Reserve the name so a later write cannot pick it while this one runs
        destination.touch(exist_ok=False)

        async def copy(handle: int) -> None:
            try:
                await asyncio.to_thread(destination.write_bytes, data)
            except OSError as e:
                logger.warning(f'Backup write failed for {destination}: {e}')
                destination.unlink(missing_ok=True)
                self._tracker.publish(handle, state='interrupted', error=str(e))
            else:
                self._tracker.publish(handle, state='complete', resolved_path=str(destination))

        return self._tracker.start(copy)

    async def query_state(self, handle: int) -> SinkRecord | None:
        record = self._tracker.get(handle)
        if record is not None and record.state == 'complete' and record.resolved_path is not None:
            return record.model_copy(update={'exists': pathlib.Path(record.resolved_path).is_file()})
        return record

    def changes(self, handle: int) -> AsyncIterator[SinkRecord]:
        return self._tracker.changes(handle)

    async def aclose(self) -> None:
        await self._tracker.drain()

    @staticmethod
    def _uniquify(destination: pathlib.Path) -> pathlib.Path:
        candidate = destination
        n = 0
        while candidate.exists():
            n += 1
            candidate = destination.with_name(f'{destination.stem} ({n}){destination.suffix}')
        return candidate
