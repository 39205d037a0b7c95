"""
Record body backup.

Extracts a plain-text snapshot of each record and backs it up through the
same verified writer, next to the record's attachments.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import attrs

from attachment_purge.config.base import BodyBackupScope
from attachment_purge.paths import body_backup_path
from attachment_purge.protocols import LoggerProtocol, NullLogger
from attachment_purge.schemas.operations.backup import BackupOutcome
from attachment_purge.schemas.operations.evaluation import Evaluation
from attachment_purge.schemas.records import RecordSnapshot
from attachment_purge.services.extraction import BodyTextExtractor
from attachment_purge.services.writer import VerifiedBackupWriter

__all__ = ['BodyBackupReport', 'BodyBackupService', 'records_requiring_body']


def records_requiring_body(evaluation: Evaluation, scope: BodyBackupScope) -> list[str]:
    """
    Records that need a body snapshot under the configured scope.

    The same list feeds the body backup and the gate's expected body count,
    so one run never mixes the two policies.
    """
    if scope == 'all_selected':
        return list(evaluation.selected_ids)
    return [target.record_id for target in evaluation.targets]


@attrs.frozen
class BodyBackupReport:
    """BodySuccessSet plus counters."""

    succeeded: frozenset[str]
    fail_count: int
    outcomes: Sequence[BackupOutcome] = ()


class BodyBackupService:
    """Backs up plain-text body snapshots."""

    def __init__(self, extractor: BodyTextExtractor, writer: VerifiedBackupWriter, save_root: str) -> None:
        self.extractor = extractor
        self.writer = writer
        self.save_root = save_root

    async def backup(
        self,
        record_ids: Sequence[str],
        snapshots: Mapping[str, RecordSnapshot],
        logger: LoggerProtocol | None = None,
    ) -> BodyBackupReport:
        logger = logger or NullLogger()
        succeeded: set[str] = set()
        outcomes: list[BackupOutcome] = []
        failed = 0

        for record_id in record_ids:
            snapshot = snapshots[record_id]
            path = body_backup_path(self.save_root, snapshot.stamp, snapshot.title)
            try:
                text = await self.extractor.extract(record_id)
                outcome = await self.writer.write(text.encode('utf-8'), path)
            except Exception as e:
                failed += 1
                await logger.warning(f'Body backup error for {record_id}: {e}')
                continue

            outcomes.append(outcome)
            if outcome.success:
                succeeded.add(record_id)
                await logger.info(f'Saved body {outcome.resolved_path}')
            else:
                failed += 1
                await logger.warning(f'Body backup not verified for {path}')

        return BodyBackupReport(succeeded=frozenset(succeeded), fail_count=failed, outcomes=tuple(outcomes))
