"""
Evaluation schemas.

The TargetSet, aggregate statistics and preview rows computed from the
selection before the user is asked to confirm.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from attachment_purge.schemas.base import StrictModel
from attachment_purge.schemas.records import RecordSnapshot


class PurgeTarget(StrictModel):
    """A record and the payload ids eligible for deletion in this run."""

    record_id: str
    payload_ids: Sequence[str]


class ExtensionSummary(StrictModel):
    """Per-extension aggregate shown in the confirmation dialog."""

    ext: str
    count: int
    bytes: int


class PurgeStats(StrictModel):
    """Aggregate counts over the whole TargetSet."""

    affected_records: int
    total_payloads: int
    total_bytes: int
    extensions: Sequence[ExtensionSummary]  # Sorted by bytes, largest first


class PreviewPayload(StrictModel):
    name: str
    size: int
    content_type: str


class PreviewRow(StrictModel):
    """One record line of the confirmation preview."""

    record_id: str
    title: str
    author: str
    date: str
    payloads: Sequence[PreviewPayload]


class Evaluation(StrictModel):
    """Everything the run knows about the selection before any backup."""

    selected_ids: Sequence[str]  # De-duplicated, selection order
    targets: Sequence[PurgeTarget]  # Only records with at least one payload
    snapshots: Mapping[str, RecordSnapshot]  # Every selected record
    stats: PurgeStats
    preview: Sequence[PreviewRow]

    @property
    def expected_payload_total(self) -> int:
        return sum(len(target.payload_ids) for target in self.targets)
