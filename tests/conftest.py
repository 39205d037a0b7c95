"""
Shared fakes for service tests.

In-memory stand-ins for the collaborators the services depend on: a record
store (optionally renumbering payload ids on deletion, like real hosts do),
a scriptable backup sink, dialogs and a notifier.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from typing import Any

import attrs
import pytest

from attachment_purge.config.base import PurgeSettings
from attachment_purge.exceptions import PayloadNotFoundError, SinkWriteError
from attachment_purge.schemas.operations.backup import SinkRecord
from attachment_purge.schemas.operations.evaluation import PreviewRow, PurgeStats
from attachment_purge.schemas.records import (
    DELETED_PLACEHOLDER_TYPE,
    ContentNode,
    Payload,
    PayloadBlob,
    RecordMetadata,
    SelectionPage,
    TextPart,
)
from attachment_purge.stores.preview import InMemoryPreviewStore

# ==============================================================================
# Record store
# ==============================================================================


@attrs.define
class FakeRecord:
    metadata: RecordMetadata
    payloads: list[Payload]
    blobs: dict[str, bytes]
    text_parts: list[TextPart] = attrs.field(factory=list)
    tree: ContentNode | None = None


class FakeRecordStore:
    """
    RecordStore over plain dicts.

    With `renumber=True` payload ids are positional ('1.2', '1.3', ...): removing
    a payload shifts every later sibling down by one, so an id cached across a
    deletion may point at a different payload afterwards.
    """

    def __init__(self, page_size: int = 2, renumber: bool = False, fail_first_batch: bool = False) -> None:
        self.records: dict[str, FakeRecord] = {}
        self.selection: list[str] = []
        self.page_size = page_size
        self.renumber = renumber
        self.fail_first_batch = fail_first_batch
        self.fail_selection = False
        self.fail_listing_after_first = False
        self.delete_calls: list[tuple[str, list[str]]] = []
        self.deleted_names: list[str] = []
        self._list_calls = 0

    def add(
        self,
        record_id: str,
        payloads: Sequence[tuple[str, int]] = (),
        title: str | None = 'Quarterly report',
        author: str | None = 'alice@example.com',
        date: Any = '2024-03-05T10:20:30',
        body: str | None = 'hello',
        placeholders: int = 0,
        select: bool = True,
    ) -> FakeRecord:
        """Add a record whose payloads are named '1.2', '1.3', ... in order."""
        items: list[Payload] = []
        blobs: dict[str, bytes] = {}
        for index, (name, size) in enumerate(payloads):
            payload_id = f'1.{index + 2}'
            items.append(Payload(payload_id=payload_id, name=name, size=size, content_type='application/octet-stream'))
            blobs[payload_id] = bytes(size)
        for index in range(placeholders):
            items.append(
                Payload(
                    payload_id=f'1.{len(payloads) + index + 2}',
                    name=f'Deleted: old{index}.bin',
                    size=0,
                    content_type=DELETED_PLACEHOLDER_TYPE,
                )
            )
        record = FakeRecord(
            metadata=RecordMetadata(record_id=record_id, title=title, author=author, date=date),
            payloads=items,
            blobs=blobs,
            text_parts=[TextPart(content_type='text/plain', content=body)] if body is not None else [],
        )
        self.records[record_id] = record
        if select:
            self.selection.append(record_id)
        return record

    def live_names(self, record_id: str) -> list[str]:
        return [p.name for p in self.records[record_id].payloads if p.content_type != DELETED_PLACEHOLDER_TYPE]

    async def list_selected(self, page_token: str | None = None) -> SelectionPage:
        if self.fail_selection:
            raise ConnectionError('selection unavailable')
        start = int(page_token or 0)
        end = start + self.page_size
        return SelectionPage(
            record_ids=self.selection[start:end],
            next_page=str(end) if end < len(self.selection) else None,
        )

    async def get_metadata(self, record_id: str) -> RecordMetadata:
        return self.records[record_id].metadata

    async def list_payloads(self, record_id: str) -> list[Payload]:
        self._list_calls += 1
        if self.fail_listing_after_first and self._list_calls > 1:
            raise ConnectionError('listing unavailable')
        return list(self.records[record_id].payloads)

    async def get_payload_blob(self, record_id: str, payload_id: str) -> PayloadBlob:
        record = self.records[record_id]
        for payload in record.payloads:
            if payload.payload_id == payload_id:
                return PayloadBlob(
                    name=payload.name,
                    content_type=payload.content_type,
                    data=record.blobs.get(payload_id, b''),
                )
        raise PayloadNotFoundError(record_id, payload_id)

    async def list_inline_text_parts(self, record_id: str) -> list[TextPart]:
        return list(self.records[record_id].text_parts)

    async def get_content_tree(self, record_id: str) -> ContentNode | None:
        return self.records[record_id].tree

    async def delete_many(self, record_id: str, payload_ids: Sequence[str]) -> None:
        self.delete_calls.append((record_id, list(payload_ids)))
        if self.fail_first_batch and len(payload_ids) > 1:
            self.fail_first_batch = False
            raise RuntimeError('batch rejected')

        record = self.records[record_id]
        live = {p.payload_id: p for p in record.payloads if p.content_type != DELETED_PLACEHOLDER_TYPE}
        for payload_id in payload_ids:
            if payload_id not in live:
                raise PayloadNotFoundError(record_id, payload_id)

        doomed = set(payload_ids)
        self.deleted_names.extend(live[payload_id].name for payload_id in payload_ids)
        if self.renumber:
            survivors = [p for p in record.payloads if p.payload_id not in doomed]
            record.payloads = [
                p.model_copy(update={'payload_id': f'1.{index + 2}'}) for index, p in enumerate(survivors)
            ]
        else:
            record.payloads = [
                p.model_copy(update={'content_type': DELETED_PLACEHOLDER_TYPE, 'size': 0})
                if p.payload_id in doomed
                else p
                for p in record.payloads
            ]


# ==============================================================================
# Backup sink
# ==============================================================================


class FakeSink:
    """
    In-memory BackupSink with scripted write behaviours.

    Behaviours (per write call, in order; default 'ok'):
        ok          complete immediately, file exists
        lagging     in progress at first; completion arrives on the change stream
        interrupted change stream reports an interruption
        unknown     complete, but existence cannot be determined (exists=None)
        missing     complete, but the file does not exist
        raise       write() raises SinkWriteError
        hang        never completes

    `fail_matching` forces 'unknown' for every path containing one of the
    given substrings, regardless of the script.
    """

    def __init__(self, script: Iterable[str] = (), fail_matching: Iterable[str] = ()) -> None:
        self.script = list(script)
        self.fail_matching = list(fail_matching)
        self.attempted: list[str] = []
        self.files: dict[str, bytes] = {}
        self.open_stages = 0
        self._staged = b''
        self._records: dict[int, SinkRecord] = {}
        self._behaviour: dict[int, str] = {}
        self._pending: dict[int, tuple[str, bytes]] = {}
        self._handles = itertools.count(1)

    @asynccontextmanager
    async def stage(self, data: bytes) -> AsyncIterator[str]:
        self.open_stages += 1
        self._staged = data
        try:
            yield f'blob:{id(data)}'
        finally:
            self.open_stages -= 1

    async def write(self, source: str, path: str) -> int:
        self.attempted.append(path)
        behaviour = self.script.pop(0) if self.script else 'ok'
        if any(part in path for part in self.fail_matching):
            behaviour = 'unknown'
        if behaviour == 'raise':
            raise SinkWriteError(f'cannot write {path}')

        handle = next(self._handles)
        self._behaviour[handle] = behaviour
        self._pending[handle] = (path, self._staged)
        if behaviour == 'ok':
            self.files[path] = self._staged
            self._records[handle] = SinkRecord(handle=handle, state='complete', exists=True, resolved_path=path)
        elif behaviour == 'unknown':
            self._records[handle] = SinkRecord(handle=handle, state='complete', exists=None, resolved_path=path)
        elif behaviour == 'missing':
            self._records[handle] = SinkRecord(handle=handle, state='complete', exists=False, resolved_path=path)
        else:
            self._records[handle] = SinkRecord(handle=handle, state='in_progress')
        return handle

    async def query_state(self, handle: int) -> SinkRecord | None:
        return self._records.get(handle)

    async def changes(self, handle: int) -> AsyncIterator[SinkRecord]:
        behaviour = self._behaviour[handle]
        if behaviour == 'hang':
            await asyncio.sleep(3600)
        await asyncio.sleep(0)
        if behaviour == 'interrupted':
            record = SinkRecord(handle=handle, state='interrupted', error='NETWORK_FAILED')
        else:
            path, data = self._pending[handle]
            record = SinkRecord(handle=handle, state='complete', exists=True, resolved_path=path)
            self.files[path] = data
        self._records[handle] = record
        yield record

    @property
    def written_paths(self) -> list[str]:
        return list(self.files)


# ==============================================================================
# Dialogs and notifications
# ==============================================================================


class ScriptedUI:
    """ConfirmationUI answering from fixed values; records what it was shown."""

    def __init__(
        self,
        preflight: bool | None = True,
        confirm: bool | None = True,
        preview_store: InMemoryPreviewStore | None = None,
        hang: bool = False,
    ) -> None:
        self.preflight_answer = preflight
        self.confirm_answer = confirm
        self.preview_store = preview_store
        self.hang = hang
        self.preflight_calls: list[tuple[str, int]] = []
        self.confirm_calls: list[tuple[str, PurgeStats, Sequence[PreviewRow]]] = []
        self.preview_seen: list[Any] = []

    async def preflight(self, key: str, selected_count: int) -> bool | None:
        self.preflight_calls.append((key, selected_count))
        if self.hang:
            await asyncio.sleep(3600)
        return self.preflight_answer

    async def confirm(self, key: str, stats: PurgeStats, rows: Sequence[PreviewRow]) -> bool | None:
        self.confirm_calls.append((key, stats, rows))
        if self.preview_store is not None:
            self.preview_seen.append(await self.preview_store.get(key))
        if self.hang:
            await asyncio.sleep(3600)
        return self.confirm_answer


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.notifications: list[tuple[str, str]] = []

    async def notify(self, title: str, message: str) -> None:
        self.notifications.append((title, message))
        if self.fail:
            raise RuntimeError('notification service down')

    @property
    def titles(self) -> list[str]:
        return [title for title, _ in self.notifications]


class RecordingLogger:
    """LoggerProtocol collecting messages per level."""

    def __init__(self) -> None:
        self.messages: dict[str, list[str]] = {'info': [], 'warning': [], 'error': []}

    async def info(self, message: str) -> None:
        self.messages['info'].append(message)

    async def warning(self, message: str) -> None:
        self.messages['warning'].append(message)

    async def error(self, message: str) -> None:
        self.messages['error'].append(message)


async def no_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def fast_settings() -> PurgeSettings:
    """Settings with no real waiting, independent of the environment."""
    return PurgeSettings.model_validate(
        {
            'RETRY_BACKOFF_MS': 0,
            'VERIFY_POLL_DELAY_MS': 0,
            'WRITE_COMPLETION_TIMEOUT_S': 0.05,
            'DIALOG_TIMEOUT_S': 0.2,
        }
    )
