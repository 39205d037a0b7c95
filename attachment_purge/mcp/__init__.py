"""MCP server entry point for attachment-purge."""

from __future__ import annotations

from attachment_purge.mcp.server import main, server

__all__ = ['main', 'server']
