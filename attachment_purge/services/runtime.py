"""
Process-wide runtime state.

Entry points (CLI callback, MCP lifespan) call `initialize()` once at startup
and `shutdown()` on exit. Runs go through `exclusive_run()`, which keeps two
runs from sharing a backup root at the same time: an asyncio lock covers
overlapping runs inside this process, a file lock covers other processes.

Lifecycle:
    uninitialized --initialize()--> ready --shutdown()--> closed
"""

from __future__ import annotations

import asyncio
import logging
import pathlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

from filelock import FileLock, Timeout

from attachment_purge.exceptions import ConcurrentRunError, RuntimeStateError

__all__ = ['LOCK_FILENAME', 'PurgeRuntime', 'runtime']

logger = logging.getLogger(__name__)

LOCK_FILENAME = '.attachment-purge.lock'

RuntimeState = Literal['uninitialized', 'ready', 'closed']


class PurgeRuntime:
    """Explicit init/teardown boundary plus the overlapping-run guard."""

    def __init__(self) -> None:
        self.state: RuntimeState = 'uninitialized'
        self._run_lock: asyncio.Lock | None = None

    def initialize(self) -> None:
        """
        Raises:
            RuntimeStateError: If called more than once
        """
        if self.state != 'uninitialized':
            raise RuntimeStateError(f'Runtime already {self.state}')
        self._run_lock = asyncio.Lock()
        self.state = 'ready'
        logger.debug('Runtime initialized')

    def shutdown(self) -> None:
        if self.state == 'closed':
            return
        self.state = 'closed'
        self._run_lock = None
        logger.debug('Runtime shut down')

    @property
    def is_ready(self) -> bool:
        return self.state == 'ready'

    @asynccontextmanager
    async def exclusive_run(self, save_dir: pathlib.Path) -> AsyncIterator[None]:
        """
        Hold the backup root for the duration of one run.

        Raises:
            RuntimeStateError: If the runtime is not initialized
            ConcurrentRunError: If another run (here or in another process) holds save_dir
        """
        if self.state != 'ready' or self._run_lock is None:
            raise RuntimeStateError(f'Runtime is {self.state}; call initialize() first')
        if self._run_lock.locked():
            raise ConcurrentRunError(str(save_dir))

        async with self._run_lock:
            save_dir.mkdir(parents=True, exist_ok=True)
            file_lock = FileLock(save_dir / LOCK_FILENAME, timeout=0)
            try:
                file_lock.acquire()
            except Timeout as e:
                raise ConcurrentRunError(str(save_dir)) from e
            try:
                yield
            finally:
                file_lock.release()


# Module-level singleton driven by the entry points' lifecycle hooks
runtime = PurgeRuntime()
