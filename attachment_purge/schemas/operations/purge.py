"""
Purge operation schemas.

Gate, deletion and whole-run results.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Literal

from attachment_purge.schemas.base import StrictModel


class PayloadRef(StrictModel):
    """A (record, payload) pair used in diagnostics."""

    record_id: str
    payload_id: str

    def __str__(self) -> str:
        return f'{self.record_id}:{self.payload_id}'


class GateReport(StrictModel):
    """Expected vs. verified backup counts for one run."""

    expected_payloads: int
    actual_payloads: int
    expected_bodies: int
    actual_bodies: int

    # Bounded samples for operator visibility
    missing_payloads: Sequence[PayloadRef] = ()
    missing_bodies: Sequence[str] = ()

    @property
    def passed(self) -> bool:
        return self.actual_payloads == self.expected_payloads and self.actual_bodies == self.expected_bodies

    def details(self) -> list[str]:
        """Human-readable mismatch lines (empty when the gate passed)."""
        lines: list[str] = []
        if self.actual_payloads != self.expected_payloads:
            line = f'attachments saved {self.actual_payloads}/{self.expected_payloads}'
            if self.missing_payloads:
                line += f' (missing sample: {", ".join(str(ref) for ref in self.missing_payloads)})'
            lines.append(line)
        if self.actual_bodies != self.expected_bodies:
            line = f'bodies saved {self.actual_bodies}/{self.expected_bodies}'
            if self.missing_bodies:
                line += f' (missing sample IDs: {", ".join(self.missing_bodies)})'
            lines.append(line)
        return lines


class DeletionReport(StrictModel):
    """What the deletion executor intended and what it actually achieved."""

    intended: int
    deleted: int
    vanished: Sequence[PayloadRef] = ()  # No longer live when their batch came up
    failed: Sequence[PayloadRef] = ()  # Individual deletion failed after batch fallback


PurgeStatus = Literal[
    'completed',
    'nothing_to_do',
    'cancelled',
    'gate_aborted',
    'unavailable',
    'error',
]


class PurgeResult(StrictModel):
    """Execution result of one purge run."""

    status: PurgeStatus
    selected_count: int = 0
    affected_records: int = 0

    payloads_expected: int = 0
    payloads_saved: int = 0
    payload_failures: int = 0

    bodies_expected: int = 0
    bodies_saved: int = 0
    body_failures: int = 0

    deletions_intended: int = 0
    deleted: int = 0

    gate: GateReport | None = None
    deletion: DeletionReport | None = None
    notes: Sequence[str] = ()
    error_message: str | None = None

    duration_ms: float
    finished_at: datetime
