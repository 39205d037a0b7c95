"""
HTTP (WebDAV-style) backup sink.

Uploads backups with PUT under a base URL, creating parent collections with
MKCOL, and verifies existence with HEAD. Any answer other than a clear 200 or
404 leaves `exists` unknown, which verification treats as not verified.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import quote

import httpx

from attachment_purge.exceptions import SinkWriteError
from attachment_purge.paths import add_suffix_to_path
from attachment_purge.schemas.operations.backup import SinkRecord
from attachment_purge.storage.jobs import WriteTracker

logger = logging.getLogger(__name__)


class WebDavSink:
    """
    WebDAV backup sink.

    Existing files are never overwritten: uploads use `If-None-Match: *` and a
    412 answer moves on to the next uniquified name.
    """

    MAX_UNIQUIFY_ATTEMPTS = 20

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize WebDAV sink.

        Args:
            base_url: Collection URL backups are written under
            token: Optional bearer token
            client: Optional preconfigured client (tests inject a MockTransport)
            timeout: Per-request timeout in seconds
        """
        if not base_url.startswith(('http://', 'https://')):
            raise ValueError(f'Backup URL must be http(s): {base_url}')

        self.base_url = base_url.rstrip('/')
        headers = {'Authorization': f'Bearer {token}'} if token else {}
        self._client = client or httpx.AsyncClient(headers=headers, timeout=timeout)
        self._staged: dict[str, bytes] = {}
        self._tracker = WriteTracker()

    @asynccontextmanager
    async def stage(self, data: bytes) -> AsyncIterator[str]:
        """Keep the blob in memory under a one-off reference."""
        ref = uuid.uuid4().hex
        self._staged[ref] = data
        try:
            yield ref
        finally:
            self._staged.pop(ref, None)

    async def write(self, source: str, path: str) -> int:
        """
        Start uploading a staged blob.

        Raises:
            SinkWriteError: If the source is not staged or the path is unsafe
        """
        if source not in self._staged:
            raise SinkWriteError(f'Blob not staged: {source}')
        if path.startswith('/') or '..' in path.split('/'):
            raise SinkWriteError(f'Refusing unsafe backup path: {path}')
        data = self._staged[source]

        async def upload(handle: int) -> None:
            try:
                await self._ensure_collections(path)
                final_path = await self._put_unique(path, data)
            except (httpx.HTTPError, SinkWriteError) as e:
                logger.warning(f'Upload failed for {path}: {e}')
                self._tracker.publish(handle, state='interrupted', error=str(e))
            else:
                self._tracker.publish(handle, state='complete', resolved_path=final_path)

        return self._tracker.start(upload)

    async def query_state(self, handle: int) -> SinkRecord | None:
        record = self._tracker.get(handle)
        if record is None or record.state != 'complete' or record.resolved_path is None:
            return record
        return record.model_copy(update={'exists': await self._exists(record.resolved_path)})

    def changes(self, handle: int) -> AsyncIterator[SinkRecord]:
        return self._tracker.changes(handle)

    async def aclose(self) -> None:
        await self._tracker.drain()
        await self._client.aclose()

    def _url(self, path: str) -> str:
        return f'{self.base_url}/{quote(path)}'

    async def _ensure_collections(self, path: str) -> None:
        parts = path.split('/')[:-1]
        for i in range(1, len(parts) + 1):
            response = await self._client.request('MKCOL', self._url('/'.join(parts[:i])) + '/')
            # 405: collection already exists
            if response.status_code not in (201, 405):
                response.raise_for_status()

    async def _put_unique(self, path: str, data: bytes) -> str:
        candidate = path
        for n in range(1, self.MAX_UNIQUIFY_ATTEMPTS + 1):
            response = await self._client.put(self._url(candidate), content=data, headers={'If-None-Match': '*'})
            if response.status_code == 412:
                candidate = add_suffix_to_path(path, f' ({n})')
                continue
            response.raise_for_status()
            return candidate
        raise SinkWriteError(f'No free name for {path} after {self.MAX_UNIQUIFY_ATTEMPTS} attempts')

    async def _exists(self, path: str) -> bool | None:
        try:
            response = await self._client.head(self._url(path))
        except httpx.HTTPError as e:
            logger.warning(f'Existence check failed for {path}: {e}')
            return None
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        return None
