"""
Backup operation schemas.

Outcome of one verified write, and the per-handle state a backup sink reports.
"""

from __future__ import annotations

from typing import Literal

from attachment_purge.schemas.base import StrictModel

SinkState = Literal['in_progress', 'complete', 'interrupted']


class SinkRecord(StrictModel):
    """
    The sink's own record of one write.

    `exists` is None while the sink does not know yet (or cannot tell) whether
    the file is on disk. Verification treats None as not verified.
    """

    handle: int
    state: SinkState
    exists: bool | None = None
    resolved_path: str | None = None
    error: str | None = None


class BackupOutcome(StrictModel):
    """Result of VerifiedBackupWriter.write - always returned, never raised."""

    success: bool
    logical_path: str
    resolved_path: str | None = None
    attempts_used: int
