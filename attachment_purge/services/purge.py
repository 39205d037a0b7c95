"""
Attachment purge service - backup, verify, then delete.

Top-level flow for one run over the current selection:
    capability check -> enumerate -> preflight -> evaluate -> confirm
    -> payload backup -> body backup -> gate -> delete -> notify

Nothing is written before the user confirms, and nothing is deleted unless
the gate saw every expected backup verified.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from attachment_purge.config.base import PurgeSettings
from attachment_purge.exceptions import CapabilityUnavailableError, GateMismatchError
from attachment_purge.protocols import ConfirmationUI, LoggerProtocol, Notifier, NullLogger, PreviewStore, RecordStore
from attachment_purge.schemas.operations.purge import PurgeResult, PurgeStatus
from attachment_purge.services.body_backup import BodyBackupService, records_requiring_body
from attachment_purge.services.confirmation import ConfirmationCoordinator
from attachment_purge.services.deletion import DeletionExecutor, build_deletion_plan
from attachment_purge.services.evaluation import SelectionEvaluator, collect_selected_ids
from attachment_purge.services.extraction import BodyTextExtractor, HtmlConverter, default_strategies
from attachment_purge.services.gate import ConsistencyGate
from attachment_purge.services.payload_backup import PayloadBackupService
from attachment_purge.services.writer import VerifiedBackupWriter
from attachment_purge.storage.protocol import BackupSink

__all__ = ['AttachmentPurgeService', 'missing_capabilities']

log = logging.getLogger(__name__)

STORE_CAPABILITIES = ('list_selected', 'get_metadata', 'list_payloads', 'get_payload_blob', 'delete_many')
SINK_CAPABILITIES = ('stage', 'write', 'query_state', 'changes')


def missing_capabilities(store: object, sink: object) -> list[str]:
    """Names of required operations the store or sink does not provide."""
    missing = [f'store.{name}' for name in STORE_CAPABILITIES if not callable(getattr(store, name, None))]
    missing += [f'sink.{name}' for name in SINK_CAPABILITIES if not callable(getattr(sink, name, None))]
    return missing


def build_writer(sink: BackupSink, settings: PurgeSettings) -> VerifiedBackupWriter:
    return VerifiedBackupWriter(
        sink,
        max_retries=settings.MAX_DOWNLOAD_RETRIES,
        backoff_base_ms=settings.RETRY_BACKOFF_MS,
        verify_polls=settings.VERIFY_POLL_ATTEMPTS,
        verify_poll_delay_ms=settings.VERIFY_POLL_DELAY_MS,
        completion_timeout_s=settings.WRITE_COMPLETION_TIMEOUT_S,
    )


class AttachmentPurgeService:
    """
    Service for backing up and deleting the attachments of selected records.

    One instance may run several times; every run builds its own targets,
    success sets and reports and discards them when it returns.
    """

    def __init__(
        self,
        store: RecordStore,
        sink: BackupSink,
        ui: ConfirmationUI,
        notifier: Notifier,
        preview_store: PreviewStore,
        settings: PurgeSettings,
        html_converter: HtmlConverter | None = None,
        writer: VerifiedBackupWriter | None = None,
    ) -> None:
        """
        Initialize purge service.

        Args:
            store: Record store holding the selection
            sink: Backup sink every backup is written to
            ui: Preflight/confirmation dialogs
            notifier: Terminal notifications
            preview_store: Ephemeral store read by the confirmation dialog
            settings: Tuning (retries, batch size, body scope, ...)
            html_converter: Optional HTML-to-text converter for body snapshots
            writer: Pre-built writer (default: built from settings)
        """
        self.store = store
        self.sink = sink
        self.notifier = notifier
        self.settings = settings
        self.html_converter = html_converter
        self.writer = writer or build_writer(sink, settings)
        self.confirmation = ConfirmationCoordinator(ui, preview_store, dialog_timeout_s=settings.DIALOG_TIMEOUT_S)
        self.gate = ConsistencyGate(sample_size=settings.GATE_SAMPLE_SIZE)

    async def run(self, logger: LoggerProtocol | None = None) -> PurgeResult:
        """
        Execute one backup-verify-delete run over the current selection.

        Never raises for run failures: they are logged, notified and reported
        through `PurgeResult.status`.

        Args:
            logger: Optional progress logger

        Returns:
            PurgeResult
        """
        logger = logger or NullLogger()
        started = time.monotonic()

        missing = missing_capabilities(self.store, self.sink)
        if missing:
            error = CapabilityUnavailableError(missing)
            await logger.error(str(error))
            await self._notify('Unable to delete attachments', str(error))
            return self._result(started, 'unavailable', error_message=str(error))

        try:
            return await self._run(logger, started)
        except Exception as e:
            log.exception('Purge run failed')
            await logger.error(f'Purge run failed: {e}')
            await self._notify('Error during backup/verify/delete', str(e) or type(e).__name__)
            return self._result(started, 'error', error_message=str(e) or type(e).__name__)

    async def _run(self, logger: LoggerProtocol, started: float) -> PurgeResult:
        ids = await collect_selected_ids(self.store)
        await logger.info(f'{len(ids)} records selected')

        if len(ids) > self.settings.PREFLIGHT_THRESHOLD:
            if not await self.confirmation.preflight(len(ids)):
                await self._notify('Cancelled', 'Bulk deletion was cancelled.')
                return self._result(started, 'cancelled', selected_count=len(ids))

        evaluation = await SelectionEvaluator(self.store).evaluate(ids, logger=logger)
        stats = evaluation.stats
        base: dict[str, Any] = {
            'selected_count': len(evaluation.selected_ids),
            'affected_records': stats.affected_records,
            'payloads_expected': evaluation.expected_payload_total,
        }

        if stats.total_payloads == 0:
            await self._notify('No deletable attachments', 'No removable attachments were found in the selected records.')
            return self._result(started, 'nothing_to_do', **base)

        if not await self.confirmation.confirm(stats, evaluation.preview):
            await self._notify('Cancelled', 'Bulk deletion was cancelled.')
            return self._result(started, 'cancelled', **base)

        save_root = self.settings.SAVE_ROOT

        # Backups run strictly one after the other; the gate needs both complete
        payload_report = await PayloadBackupService(self.store, self.writer, save_root).backup(
            evaluation.targets, evaluation.snapshots, logger=logger
        )
        body_required = records_requiring_body(evaluation, self.settings.BODY_BACKUP_SCOPE)
        extractor = BodyTextExtractor(default_strategies(self.store, self.html_converter))
        body_report = await BodyBackupService(extractor, self.writer, save_root).backup(
            body_required, evaluation.snapshots, logger=logger
        )

        base.update(
            payloads_saved=payload_report.actual_payload_saved,
            payload_failures=payload_report.fail_count,
            bodies_expected=len(body_required),
            bodies_saved=sum(1 for record_id in body_required if record_id in body_report.succeeded),
            body_failures=body_report.fail_count,
        )
        notes = self._backup_notes(payload_report.fail_count, body_report.fail_count)

        gate_report = self.gate.evaluate(
            evaluation.targets, payload_report.success_map, body_required, body_report.succeeded
        )
        try:
            self.gate.enforce(gate_report)
        except GateMismatchError as e:
            await logger.error(str(e))
            await self._notify('Backup not complete - Deletion aborted', str(e))
            return self._result(started, 'gate_aborted', gate=gate_report, notes=notes, **base)

        plan = build_deletion_plan(
            evaluation.targets,
            payload_report.success_map,
            body_report.succeeded if self.settings.REQUIRE_BODY_BACKUP else None,
        )
        deletion = await DeletionExecutor(self.store, batch_size=self.settings.DELETE_BATCH_SIZE).execute(
            plan, logger=logger
        )

        if deletion.vanished:
            notes.append(f'{len(deletion.vanished)} attachment(s) were already gone')
        if deletion.failed:
            notes.append(f'{len(deletion.failed)} attachment(s) could not be deleted')

        message = (
            f'{stats.affected_records} messages selected\n'
            f'{payload_report.actual_payload_saved}/{evaluation.expected_payload_total} attachments saved, '
            f'{deletion.deleted}/{deletion.intended} attachments deleted'
        )
        if notes:
            message += f'\nNotes: {", ".join(notes)}'
        await self._notify('Backup & Deletion Completed', message)

        return self._result(
            started,
            'completed',
            gate=gate_report,
            deletion=deletion,
            deletions_intended=deletion.intended,
            deleted=deletion.deleted,
            notes=notes,
            **base,
        )

    @staticmethod
    def _backup_notes(payload_failures: int, body_failures: int) -> list[str]:
        notes: list[str] = []
        if payload_failures:
            notes.append(f'{payload_failures} attachment(s) failed backup')
        if body_failures:
            notes.append(f'{body_failures} message bodies failed backup')
        return notes

    async def _notify(self, title: str, message: str) -> None:
        try:
            await self.notifier.notify(title, message)
        except Exception as e:
            log.warning(f'Notification failed ({title}): {e}')

    @staticmethod
    def _result(started: float, status: PurgeStatus, notes: Sequence[str] = (), **fields: Any) -> PurgeResult:
        return PurgeResult(
            status=status,
            notes=list(notes),
            duration_ms=(time.monotonic() - started) * 1000,
            finished_at=datetime.now(UTC),
            **fields,
        )
