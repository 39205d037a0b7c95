"""
Shared protocols for attachment-purge services.

Single source of truth for the collaborator interfaces the core depends on.
Services only ever talk to these protocols; concrete hosts live in
`attachment_purge.stores`, `attachment_purge.storage`, `attachment_purge.cli`
and `attachment_purge.mcp`.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from attachment_purge.schemas.operations.evaluation import PreviewRow, PurgeStats
from attachment_purge.schemas.records import (
    ContentNode,
    Payload,
    PayloadBlob,
    RecordMetadata,
    SelectionPage,
    TextPart,
)


class LoggerProtocol(Protocol):
    """
    Protocol for async logger - enables services to work with any logging implementation.

    Implementations:
    - DualLogger (mcp/utils.py): Logs to both stdout and MCP client
    - CLILogger (cli/logger.py): Logs to stdout with optional verbose mode
    - NullLogger (below): No-op implementation for when logging is optional
    """

    async def info(self, message: str) -> None: ...
    async def warning(self, message: str) -> None: ...
    async def error(self, message: str) -> None: ...


class NullLogger:
    """
    No-op logger implementation for when logging is optional.

    Use this when a function requires a LoggerProtocol but the caller
    doesn't need logging output.
    """

    async def info(self, message: str) -> None:
        pass

    async def warning(self, message: str) -> None:
        pass

    async def error(self, message: str) -> None:
        pass


@runtime_checkable
class RecordStore(Protocol):
    """Host store owning records (messages) and their payloads (attachments)."""

    async def list_selected(self, page_token: str | None = None) -> SelectionPage:
        """Return one page of selected record ids; `next_page` is None on the last page."""
        ...

    async def get_metadata(self, record_id: str) -> RecordMetadata: ...

    async def list_payloads(self, record_id: str) -> Sequence[Payload]:
        """List the payloads currently owned by a record, placeholders included."""
        ...

    async def get_payload_blob(self, record_id: str, payload_id: str) -> PayloadBlob: ...

    async def list_inline_text_parts(self, record_id: str) -> Sequence[TextPart]: ...

    async def get_content_tree(self, record_id: str) -> ContentNode | None: ...

    async def delete_many(self, record_id: str, payload_ids: Sequence[str]) -> None:
        """
        Delete a batch of payloads from one record.

        Raises:
            PayloadNotFoundError: If any id does not resolve (nothing is deleted)
        """
        ...


class ConfirmationUI(Protocol):
    """
    Modal dialogs correlated by a caller-supplied key.

    Returning None means the dialog was dismissed without an answer.
    """

    async def preflight(self, key: str, selected_count: int) -> bool | None: ...

    async def confirm(self, key: str, stats: PurgeStats, rows: Sequence[PreviewRow]) -> bool | None: ...


class Notifier(Protocol):
    """Fire-and-forget presentation of final results or fatal errors."""

    async def notify(self, title: str, message: str) -> None: ...


class PreviewStore(Protocol):
    """Ephemeral key -> preview payload store read by the confirmation dialog."""

    async def put(self, key: str, value: Mapping[str, Any]) -> None: ...

    async def remove(self, key: str) -> None: ...
