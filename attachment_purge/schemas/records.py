"""
Record store schemas.

Read-only snapshots of what the host store reports about records (messages)
and their payloads (attachments). Taken at evaluation time and never refreshed
within a run, except for the live payload ids the deletion executor re-queries.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from attachment_purge.schemas.base import StrictModel

DELETED_PLACEHOLDER_TYPE = 'text/x-moz-deleted'
"""Content type of the stub a host leaves behind for an already-deleted payload."""


class SelectionPage(StrictModel):
    """One page of the user's record selection."""

    record_ids: Sequence[str]
    next_page: str | None = None  # Opaque continuation token, None on last page


class RecordMetadata(StrictModel):
    """Header-level metadata of a record, with raw timestamp candidates."""

    record_id: str
    title: str | None = None
    author: str | None = None
    received_header: str | None = None  # Raw protocol receipt header (e.g. Received:)
    date: datetime | int | float | str | None = None  # Structured date in whatever form the host offers


class Payload(StrictModel):
    """A removable sub-item of a record as listed by the host."""

    payload_id: str  # Hierarchical part name, e.g. '1.2.1' - NOT stable across sibling deletions
    name: str
    size: int
    content_type: str

    @property
    def is_placeholder(self) -> bool:
        return self.content_type.lower() == DELETED_PLACEHOLDER_TYPE


class PayloadBlob(StrictModel):
    """Payload content fetched for backup."""

    name: str
    content_type: str
    data: bytes


class TextPart(StrictModel):
    """Pre-structured inline text representation of a record body."""

    content_type: str
    content: str


class ContentNode(StrictModel):
    """Node of a record's full content tree."""

    content_type: str
    body: str | None = None
    parts: Sequence[ContentNode] = ()


class RecordSnapshot(StrictModel):
    """
    Per-record metadata fixed before any backup begins.

    `stamp` is the canonical timestamp rendered for logical paths so that every
    artifact from one record clusters together lexically.
    """

    record_id: str
    title: str
    author: str
    timestamp: datetime
    stamp: str
