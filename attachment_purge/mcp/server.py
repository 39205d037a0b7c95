"""
Attachment Purge MCP Server.

Provides tools for previewing and purging the attachments of Maildir
messages. Every attachment and message body is backed up and verified
before anything is deleted; the user confirms through MCP elicitation.

Setup:
    claude mcp add --scope user attachment-purge -- uvx --from attachment-purge attachment-purge-mcp

Example:
    # See what would be removed
    preview_attachments(maildir='/home/me/Mail/Archive')

    # Back up to a local folder, then delete
    purge_attachments(maildir='/home/me/Mail/Archive', backup_dir='/home/me/attachment-backups')
"""

from __future__ import annotations

import contextlib
import os
import sys
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import attrs
from mcp.server.fastmcp import Context, FastMCP

from attachment_purge.config.base import BodyBackupScope, PurgeSettings, get_settings
from attachment_purge.mcp.utils import ContextNotifier, DualLogger, ElicitationConfirmationUI
from attachment_purge.schemas.operations.evaluation import Evaluation
from attachment_purge.schemas.operations.purge import PurgeResult
from attachment_purge.services.evaluation import SelectionEvaluator, collect_selected_ids
from attachment_purge.services.purge import AttachmentPurgeService
from attachment_purge.services.runtime import PurgeRuntime, runtime
from attachment_purge.storage.http import WebDavSink
from attachment_purge.storage.local import LocalFileSystemSink
from attachment_purge.stores.maildir import MaildirRecordStore
from attachment_purge.stores.preview import InMemoryPreviewStore

# ==============================================================================
# Server State (immutable)
# ==============================================================================


@attrs.define(frozen=True)
class ServerState:
    """
    Immutable server state initialized at startup.

    Contains the settings and shared collaborators needed for tool execution.
    """

    settings: PurgeSettings
    preview_store: InMemoryPreviewStore
    runtime: PurgeRuntime


# ==============================================================================
# Lifespan Management
# ==============================================================================


@contextlib.asynccontextmanager
async def lifespan(mcp_server: FastMCP) -> AsyncIterator[None]:
    """
    Manage server lifecycle and state initialization.

    Initializes the process runtime at startup and releases it on shutdown.
    """
    runtime.initialize()

    try:
        state = ServerState(
            settings=get_settings(PurgeSettings),
            preview_store=InMemoryPreviewStore(),
            runtime=runtime,
        )

        # Register tools with closure over state
        register_tools(state)

        print(f'[MCP Server] Save root: {state.settings.SAVE_ROOT}', file=sys.stderr)
        print(f'[MCP Server] Body backup scope: {state.settings.BODY_BACKUP_SCOPE}', file=sys.stderr)

        yield  # Setup successful; application active

    finally:
        runtime.shutdown()
        print('[MCP Server] Runtime shut down', file=sys.stderr)


# ==============================================================================
# Server Setup
# ==============================================================================

server = FastMCP('attachment-purge', lifespan=lifespan)


# ==============================================================================
# Tool Registration (Closure Pattern)
# ==============================================================================


def register_tools(state: ServerState) -> None:
    """
    Register MCP tools with closure over server state.

    Args:
        state: Server state containing settings and shared stores
    """

    @server.tool()
    async def preview_attachments(
        maildir: str,
        message_keys: list[str] | None = None,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> Evaluation:
        """
        Preview which attachments a purge would back up and delete.

        Read-only: nothing is written and nothing is deleted.

        Args:
            maildir: Maildir folder (with cur/ and new/)
            message_keys: Message keys to include (default: every message)

        Returns:
            Evaluation with per-message targets, statistics and preview rows
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')
        logger = DualLogger(ctx)

        store = MaildirRecordStore(Path(maildir), selection=message_keys)
        ids = await collect_selected_ids(store)
        return await SelectionEvaluator(store).evaluate(ids, logger=logger)

    @server.tool()
    async def purge_attachments(
        maildir: str,
        backup_dir: str | None = None,
        webdav_url: str | None = None,
        message_keys: list[str] | None = None,
        body_scope: BodyBackupScope | None = None,
        assume_yes: bool = False,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> PurgeResult:
        """
        Back up every attachment and message body, verify, then delete the attachments.

        The user is asked to confirm (MCP elicitation) before any backup is
        written. Deletion only happens when every expected backup was
        verified; otherwise the run ends with status 'gate_aborted' and
        nothing is deleted.

        Args:
            maildir: Maildir folder (with cur/ and new/)
            backup_dir: Local backup directory (must exist)
            webdav_url: WebDAV collection URL to back up to instead (token from WEBDAV_TOKEN)
            message_keys: Message keys to include (default: every message)
            body_scope: 'records_with_payloads' (default) or 'all_selected'
            assume_yes: Skip the confirmation dialogs

        Returns:
            PurgeResult with backup, gate and deletion counts

        Examples:
            result = await purge_attachments(maildir='/home/me/Mail/Archive', backup_dir='/home/me/backups')
            # Returns: PurgeResult(status='completed', payloads_saved=12, deleted=12, ...)
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')
        logger = DualLogger(ctx)

        settings = state.settings
        if body_scope is not None:
            settings = settings.model_copy(update={'BODY_BACKUP_SCOPE': body_scope})

        sink: WebDavSink | LocalFileSystemSink
        if webdav_url:
            sink = WebDavSink(webdav_url, token=os.environ.get('WEBDAV_TOKEN'))
            lock_dir = Path(backup_dir) if backup_dir else Path(maildir)
        elif backup_dir:
            sink = LocalFileSystemSink(Path(backup_dir))
            lock_dir = Path(backup_dir) / settings.SAVE_ROOT
        else:
            raise ValueError('Provide backup_dir or webdav_url')

        service = AttachmentPurgeService(
            store=MaildirRecordStore(Path(maildir), selection=message_keys),
            sink=sink,
            ui=ElicitationConfirmationUI(ctx, assume_yes=assume_yes),
            notifier=ContextNotifier(ctx),
            preview_store=state.preview_store,
            settings=settings,
        )

        try:
            async with state.runtime.exclusive_run(lock_dir):
                result = await service.run(logger=logger)
        finally:
            await sink.aclose()

        await logger.info(f'Purge finished with status {result.status}')
        return result


def main() -> None:
    """Entry point for the MCP server."""
    server.run()


if __name__ == '__main__':
    main()
