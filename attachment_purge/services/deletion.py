"""
Deletion executor.

Runs only after the consistency gate passed. Payload ids are not stable: the
host may invalidate or renumber them as siblings are removed. So ids are
deleted deepest/highest first, in bounded batches, and every batch is
intersected with a freshly queried live set right before the destructive
call. A failing batch falls back to one call per id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Mapping, Sequence, Set as AbstractSet

from attachment_purge.protocols import LoggerProtocol, NullLogger, RecordStore
from attachment_purge.schemas.operations.evaluation import PurgeTarget
from attachment_purge.schemas.operations.purge import DeletionReport, PayloadRef

__all__ = ['DeletionExecutor', 'build_deletion_plan', 'payload_sort_key']

logger = logging.getLogger(__name__)


def payload_sort_key(payload_id: str) -> tuple[tuple[int, int | str], ...]:
    """
    Sort key for hierarchical ids: numeric components compare numerically.

    Sorted in reverse, '1.10' comes before '1.9' and '1.2.1' before '1.2', so
    removing a part never shifts the ids still waiting in the same record.
    """
    key: list[tuple[int, int | str]] = []
    for component in payload_id.split('.'):
        key.append((1, int(component)) if component.isdigit() else (0, component))
    return tuple(key)


def build_deletion_plan(
    targets: Sequence[PurgeTarget],
    success_map: Mapping[str, AbstractSet[str]],
    body_succeeded: AbstractSet[str] | None = None,
) -> list[PurgeTarget]:
    """
    Deletable ids per record: original ids that were verifiably backed up.

    Args:
        targets: TargetSet from evaluation
        success_map: Verified payload ids per record
        body_succeeded: When given, records without a verified body snapshot are skipped
    """
    plan: list[PurgeTarget] = []
    for target in targets:
        if body_succeeded is not None and target.record_id not in body_succeeded:
            continue
        ok = success_map.get(target.record_id)
        if not ok:
            continue
        payload_ids = [payload_id for payload_id in target.payload_ids if payload_id in ok]
        if payload_ids:
            plan.append(PurgeTarget(record_id=target.record_id, payload_ids=payload_ids))
    return plan


def _batches(items: Sequence[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class DeletionExecutor:
    """Deletes planned payloads in re-validated batches."""

    def __init__(self, store: RecordStore, batch_size: int = 16) -> None:
        self.store = store
        self.batch_size = batch_size

    async def execute(self, plan: Sequence[PurgeTarget], logger: LoggerProtocol | None = None) -> DeletionReport:
        """
        Delete every planned payload; failures are recorded, never raised.

        Returns:
            DeletionReport distinguishing intended from actually deleted
        """
        logger = logger or NullLogger()
        intended = sum(len(target.payload_ids) for target in plan)
        deleted = 0
        vanished: list[PayloadRef] = []
        failed: list[PayloadRef] = []

        for target in plan:
            record_id = target.record_id
            ordered = sorted(dict.fromkeys(target.payload_ids), key=payload_sort_key, reverse=True)

            for batch in _batches(ordered, self.batch_size):
                live = await self._live_ids(record_id)
                if live is None:
                    candidates = batch
                else:
                    candidates = [payload_id for payload_id in batch if payload_id in live]
                    for payload_id in batch:
                        if payload_id not in live:
                            vanished.append(PayloadRef(record_id=record_id, payload_id=payload_id))
                            await logger.warning(f'Attachment {record_id}:{payload_id} no longer present, skipped')
                candidates.sort(key=payload_sort_key, reverse=True)

                if candidates:
                    ok, gone, not_ok = await self._delete_batch(record_id, candidates, logger)
                    deleted += ok
                    vanished.extend(PayloadRef(record_id=record_id, payload_id=p) for p in gone)
                    failed.extend(PayloadRef(record_id=record_id, payload_id=p) for p in not_ok)

                # Give the host's event loop a turn between destructive calls
                await asyncio.sleep(0)

            await asyncio.sleep(0)

        await logger.info(f'Deleted {deleted}/{intended} attachments')
        return DeletionReport(intended=intended, deleted=deleted, vanished=vanished, failed=failed)

    async def _live_ids(self, record_id: str) -> set[str] | None:
        """Currently live payload ids, or None if the store could not be queried."""
        try:
            payloads = await self.store.list_payloads(record_id)
        except Exception as e:
            logger.warning(f'Could not re-list attachments of {record_id}, using planned ids: {e}')
            return None
        return {payload.payload_id for payload in payloads if not payload.is_placeholder}

    async def _delete_batch(
        self, record_id: str, candidates: list[str], logger: LoggerProtocol
    ) -> tuple[int, list[str], list[str]]:
        """
        Batch call, falling back to per-id calls.

        A failed batch may have been applied in part, so the live set is
        re-read before the fallback; ids already gone are not retried.

        Returns:
            (deleted count, ids no longer present, failed ids)
        """
        try:
            await self.store.delete_many(record_id, candidates)
        except Exception as e:
            await logger.warning(
                f'Batch delete of {len(candidates)} attachments in {record_id} failed ({e}), retrying one by one'
            )
        else:
            return len(candidates), [], []

        gone: list[str] = []
        remaining = candidates
        live = await self._live_ids(record_id)
        if live is not None:
            gone = [payload_id for payload_id in candidates if payload_id not in live]
            remaining = [payload_id for payload_id in candidates if payload_id in live]
            for payload_id in gone:
                await logger.warning(f'Attachment {record_id}:{payload_id} gone after failed batch, not retried')

        deleted = 0
        failed: list[str] = []
        for payload_id in remaining:
            try:
                await self.store.delete_many(record_id, [payload_id])
            except Exception as e:
                failed.append(payload_id)
                await logger.error(f'Could not delete attachment {record_id}:{payload_id}: {e}')
            else:
                deleted += 1
        return deleted, gone, failed
