"""
Selection evaluation.

Enumerates the selected records (following pagination), snapshots each
record's metadata exactly once, and builds the TargetSet plus the statistics
and preview rows shown in the confirmation dialog.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import datetime

from attachment_purge.exceptions import SelectionEnumerationError
from attachment_purge.paths import format_stamp
from attachment_purge.protocols import LoggerProtocol, NullLogger, RecordStore
from attachment_purge.schemas.operations.evaluation import (
    Evaluation,
    ExtensionSummary,
    PreviewPayload,
    PreviewRow,
    PurgeStats,
    PurgeTarget,
)
from attachment_purge.schemas.records import Payload, RecordSnapshot
from attachment_purge.services.timestamps import derive_record_timestamp

__all__ = ['SelectionEvaluator', 'collect_selected_ids', 'payload_extension']

NO_TITLE = '(no subject)'
NO_NAME = '(no name)'

_EXTENSION = re.compile(r'\.([^.]+)$')


async def collect_selected_ids(store: RecordStore) -> list[str]:
    """
    Follow the selection's pagination to the end.

    Duplicate ids are collapsed (first occurrence wins) so that every record
    is evaluated at most once per run.

    Raises:
        SelectionEnumerationError: If any page cannot be listed
    """
    ids: dict[str, None] = {}
    token: str | None = None
    try:
        while True:
            page = await store.list_selected(token)
            ids.update(dict.fromkeys(page.record_ids))
            if page.next_page is None:
                break
            token = page.next_page
    except SelectionEnumerationError:
        raise
    except Exception as e:
        raise SelectionEnumerationError(f'Could not list selected records: {e}') from e
    return list(ids)


def payload_extension(payload: Payload) -> str:
    """Extension from the display name, else the content subtype, else 'unknown'."""
    match = _EXTENSION.search(payload.name or '')
    if match:
        return match.group(1).lower()
    _, _, subtype = (payload.content_type or '').partition('/')
    return (subtype or 'unknown').lower()


class SelectionEvaluator:
    """Builds an Evaluation from selected record ids."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def evaluate(
        self,
        record_ids: Sequence[str],
        logger: LoggerProtocol | None = None,
        now: datetime | None = None,
    ) -> Evaluation:
        """
        Snapshot every selected record and collect its deletable payloads.

        Args:
            record_ids: Selected ids (already de-duplicated)
            logger: Optional progress logger
            now: Fallback timestamp for records without a usable date
        """
        logger = logger or NullLogger()
        now = now or datetime.now()

        targets: list[PurgeTarget] = []
        snapshots: dict[str, RecordSnapshot] = {}
        preview: list[PreviewRow] = []
        by_ext: dict[str, list[int]] = {}
        total_bytes = 0
        total_payloads = 0

        for record_id in dict.fromkeys(record_ids):
            metadata = await self.store.get_metadata(record_id)
            timestamp = derive_record_timestamp(metadata, now=now)
            snapshot = RecordSnapshot(
                record_id=record_id,
                title=metadata.title or NO_TITLE,
                author=metadata.author or '',
                timestamp=timestamp,
                stamp=format_stamp(timestamp),
            )
            snapshots[record_id] = snapshot

            usable = [p for p in await self.store.list_payloads(record_id) if not p.is_placeholder]
            if not usable:
                continue

            targets.append(PurgeTarget(record_id=record_id, payload_ids=[p.payload_id for p in usable]))
            preview.append(
                PreviewRow(
                    record_id=record_id,
                    title=snapshot.title,
                    author=snapshot.author,
                    date=snapshot.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
                    payloads=[
                        PreviewPayload(name=p.name or NO_NAME, size=p.size, content_type=p.content_type)
                        for p in usable
                    ],
                )
            )
            for payload in usable:
                total_payloads += 1
                total_bytes += payload.size
                count_and_bytes = by_ext.setdefault(payload_extension(payload), [0, 0])
                count_and_bytes[0] += 1
                count_and_bytes[1] += payload.size

        extensions = sorted(
            (ExtensionSummary(ext=ext, count=count, bytes=size) for ext, (count, size) in by_ext.items()),
            key=lambda row: row.bytes,
            reverse=True,
        )
        stats = PurgeStats(
            affected_records=len(targets),
            total_payloads=total_payloads,
            total_bytes=total_bytes,
            extensions=extensions,
        )
        await logger.info(
            f'Evaluated {len(snapshots)} records: {stats.affected_records} with attachments, '
            f'{stats.total_payloads} attachments ({stats.total_bytes:,} bytes)'
        )

        return Evaluation(
            selected_ids=list(snapshots),
            targets=targets,
            snapshots=snapshots,
            stats=stats,
            preview=preview,
        )
