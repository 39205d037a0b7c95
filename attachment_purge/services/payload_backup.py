"""
Per-record payload backup.

Drives the verified writer across every payload of every target record.
A failing payload is counted and left out of its record's success set; it
never stops its siblings or other records.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from types import MappingProxyType

import attrs

from attachment_purge.paths import payload_backup_path
from attachment_purge.protocols import LoggerProtocol, NullLogger, RecordStore
from attachment_purge.schemas.operations.backup import BackupOutcome
from attachment_purge.schemas.operations.evaluation import PurgeTarget
from attachment_purge.schemas.records import RecordSnapshot
from attachment_purge.services.writer import VerifiedBackupWriter

__all__ = ['PayloadBackupReport', 'PayloadBackupService']


@attrs.frozen
class PayloadBackupReport:
    """
    SuccessMap plus counters.

    `success_map` only contains records with at least one verified payload and
    is read-only once returned.
    """

    success_map: Mapping[str, frozenset[str]]
    saved_count: int
    fail_count: int
    outcomes: Sequence[BackupOutcome] = ()

    @property
    def actual_payload_saved(self) -> int:
        return sum(len(ok) for ok in self.success_map.values())


class PayloadBackupService:
    """Backs up the payloads of a TargetSet."""

    def __init__(self, store: RecordStore, writer: VerifiedBackupWriter, save_root: str) -> None:
        self.store = store
        self.writer = writer
        self.save_root = save_root

    async def backup(
        self,
        targets: Sequence[PurgeTarget],
        snapshots: Mapping[str, RecordSnapshot],
        logger: LoggerProtocol | None = None,
    ) -> PayloadBackupReport:
        """
        Write and verify every payload of every target.

        Args:
            targets: TargetSet from evaluation
            snapshots: Per-record title/stamp fixed at evaluation time
            logger: Optional progress logger

        Returns:
            PayloadBackupReport with the SuccessMap
        """
        logger = logger or NullLogger()
        success_map: dict[str, frozenset[str]] = {}
        outcomes: list[BackupOutcome] = []
        saved = 0
        failed = 0

        for target in targets:
            snapshot = snapshots[target.record_id]
            ok: set[str] = set()

            for payload_id in target.payload_ids:
                try:
                    blob = await self.store.get_payload_blob(target.record_id, payload_id)
                    path = payload_backup_path(self.save_root, snapshot.stamp, snapshot.title, blob.name)
                    outcome = await self.writer.write(blob.data, path)
                except Exception as e:
                    failed += 1
                    await logger.warning(f'Attachment {target.record_id}:{payload_id} backup error: {e}')
                    continue

                outcomes.append(outcome)
                if outcome.success:
                    ok.add(payload_id)
                    saved += 1
                    await logger.info(f'Saved {outcome.resolved_path}')
                else:
                    failed += 1
                    await logger.warning(f'Backup not verified for {path}')

            if ok:
                success_map[target.record_id] = frozenset(ok)

        return PayloadBackupReport(
            success_map=MappingProxyType(success_map),
            saved_count=saved,
            fail_count=failed,
            outcomes=tuple(outcomes),
        )
