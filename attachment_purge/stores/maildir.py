"""
Maildir record store.

Implements RecordStore over a local Maildir using the standard library's
`mailbox` and `email` packages.

Part names follow the IMAP section scheme: the top-level entity is '1',
children of a multipart are numbered '<parent>.<n>' from 1. Deleted
attachments are replaced in place by a `text/x-moz-deleted` stub, so the
names of the remaining parts do not shift.
"""

from __future__ import annotations

import asyncio
import logging
import mailbox
import pathlib
from collections.abc import Iterator, Sequence
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser

from attachment_purge.exceptions import PayloadNotFoundError
from attachment_purge.schemas.records import (
    DELETED_PLACEHOLDER_TYPE,
    ContentNode,
    Payload,
    PayloadBlob,
    RecordMetadata,
    SelectionPage,
    TextPart,
)

__all__ = ['MaildirRecordStore', 'iter_parts']

logger = logging.getLogger(__name__)

DELETED_NOTE = (
    'You deleted an attachment from this message. The original MIME headers for the attachment were:\n'
)


def iter_parts(message: EmailMessage, name: str = '1') -> Iterator[tuple[str, EmailMessage]]:
    """Yield (part name, part) depth-first, the message itself first."""
    yield name, message
    if message.is_multipart():
        for index, child in enumerate(message.iter_parts(), start=1):
            yield from iter_parts(child, f'{name}.{index}')


def _is_payload(part: EmailMessage) -> bool:
    if part.get_content_maintype() == 'multipart':
        return False
    if part.get_content_type() == DELETED_PLACEHOLDER_TYPE:
        return True
    disposition = part.get_content_disposition()
    if disposition == 'attachment':
        return True
    # Inline parts with a file name and a non-text body are attachments too
    return disposition == 'inline' and part.get_filename() is not None and part.get_content_maintype() != 'text'


def _decoded(part: EmailMessage) -> bytes:
    if part.get_content_type() == 'message/rfc822':
        return part.get_payload(0).as_bytes()
    data = part.get_payload(decode=True)
    return data if isinstance(data, bytes) else b''


def _text(part: EmailMessage) -> str:
    try:
        return part.get_content()
    except (LookupError, ValueError):
        return _decoded(part).decode('utf-8', errors='replace')


class MaildirRecordStore:
    """Maildir-backed record store; record ids are Maildir keys."""

    def __init__(self, path: pathlib.Path, selection: Sequence[str] | None = None, page_size: int = 50) -> None:
        """
        Initialize Maildir store.

        Args:
            path: Maildir directory (with cur/, new/, tmp/)
            selection: Keys to operate on (default: every message, sorted)
            page_size: Selection page size

        Raises:
            ValueError: If path is not a Maildir
        """
        if not (path / 'cur').is_dir() or not (path / 'new').is_dir():
            raise ValueError(f'Not a Maildir: {path}')
        if page_size < 1:
            raise ValueError('page_size must be at least 1')

        self.path = path
        self.selection = list(selection) if selection is not None else None
        self.page_size = page_size
        self._mailbox = mailbox.Maildir(path, factory=None, create=False)
        self._parser = BytesParser(policy=policy.default)

    # --- selection -------------------------------------------------------

    async def list_selected(self, page_token: str | None = None) -> SelectionPage:
        keys = self.selection if self.selection is not None else sorted(self._mailbox.keys())
        start = int(page_token) if page_token else 0
        end = start + self.page_size
        return SelectionPage(
            record_ids=keys[start:end],
            next_page=str(end) if end < len(keys) else None,
        )

    # --- reading ---------------------------------------------------------

    async def get_metadata(self, record_id: str) -> RecordMetadata:
        message = self._read(record_id)
        received = message.get_all('Received') or []
        return RecordMetadata(
            record_id=record_id,
            title=str(message['Subject']) if message['Subject'] is not None else None,
            author=str(message['From']) if message['From'] is not None else None,
            # Topmost Received header is the final hop, i.e. local receipt
            received_header=str(received[0]) if received else None,
            date=str(message['Date']) if message['Date'] is not None else None,
        )

    async def list_payloads(self, record_id: str) -> list[Payload]:
        message = self._read(record_id)
        return [
            Payload(
                payload_id=name,
                name=part.get_filename() or '',
                size=len(_decoded(part)),
                content_type=part.get_content_type(),
            )
            for name, part in iter_parts(message)
            if _is_payload(part)
        ]

    async def get_payload_blob(self, record_id: str, payload_id: str) -> PayloadBlob:
        part = self._find_payload(self._read(record_id), record_id, payload_id)
        return PayloadBlob(
            name=part.get_filename() or '',
            content_type=part.get_content_type(),
            data=_decoded(part),
        )

    async def list_inline_text_parts(self, record_id: str) -> list[TextPart]:
        message = self._read(record_id)
        return [
            TextPart(content_type=part.get_content_type(), content=_text(part))
            for _, part in iter_parts(message)
            if not part.is_multipart() and not _is_payload(part) and part.get_content_maintype() == 'text'
            and part.get_content_disposition() != 'attachment'
        ]

    async def get_content_tree(self, record_id: str) -> ContentNode:
        return self._node(self._read(record_id))

    # --- deletion --------------------------------------------------------

    async def delete_many(self, record_id: str, payload_ids: Sequence[str]) -> None:
        """
        Replace the given payloads with deleted-attachment stubs.

        All ids are resolved before anything is modified; an unknown id
        fails the whole call and leaves the message untouched.

        Raises:
            PayloadNotFoundError: If an id is not a live payload of the record
        """
        message = self._read(record_id)
        parts = [self._find_payload(message, record_id, payload_id) for payload_id in payload_ids]
        for part in parts:
            self._replace_with_stub(part)
        await asyncio.to_thread(self._store, record_id, message)
        logger.info(f'Removed {len(parts)} attachments from {record_id}')

    # --- helpers ---------------------------------------------------------

    def _read(self, record_id: str) -> EmailMessage:
        try:
            raw = self._mailbox.get_bytes(record_id)
        except KeyError:
            raise KeyError(f'No message with key {record_id} in {self.path}') from None
        message = self._parser.parsebytes(raw)
        if not isinstance(message, EmailMessage):
            raise TypeError(f'Parser produced {type(message).__name__}, expected EmailMessage')
        return message

    def _store(self, record_id: str, message: EmailMessage) -> None:
        original = self._mailbox.get_message(record_id)
        updated = mailbox.MaildirMessage(message.as_bytes(policy=policy.default))
        updated.set_subdir(original.get_subdir())
        updated.set_flags(original.get_flags())
        updated.set_date(original.get_date())
        self._mailbox[record_id] = updated
        self._mailbox.flush()

    @staticmethod
    def _find_payload(message: EmailMessage, record_id: str, payload_id: str) -> EmailMessage:
        for name, part in iter_parts(message):
            if name == payload_id:
                if _is_payload(part) and part.get_content_type() != DELETED_PLACEHOLDER_TYPE:
                    return part
                break
        raise PayloadNotFoundError(record_id, payload_id)

    @staticmethod
    def _replace_with_stub(part: EmailMessage) -> None:
        filename = part.get_filename() or 'attachment'
        original_headers = ''.join(f'{key}: {value}\n' for key, value in part.items())
        part.clear()
        part.set_content(
            DELETED_NOTE + original_headers,
            subtype='x-moz-deleted',
            disposition='attachment',
            filename=f'Deleted: {filename}',
        )

    def _node(self, part: EmailMessage) -> ContentNode:
        if part.is_multipart():
            return ContentNode(
                content_type=part.get_content_type(),
                parts=[self._node(child) for child in part.iter_parts()],
            )
        body = _text(part) if part.get_content_maintype() == 'text' and not _is_payload(part) else None
        return ContentNode(content_type=part.get_content_type(), body=body)
