"""End-to-end tests for the purge service over in-memory collaborators."""

from __future__ import annotations

from attachment_purge.config.base import PurgeSettings
from attachment_purge.services.purge import AttachmentPurgeService, missing_capabilities
from attachment_purge.stores.preview import InMemoryPreviewStore
from tests.conftest import FakeRecordStore, FakeSink, RecordingLogger, RecordingNotifier, ScriptedUI


def make_service(
    store: FakeRecordStore,
    sink: object,
    settings: PurgeSettings,
    ui: ScriptedUI | None = None,
    notifier: RecordingNotifier | None = None,
) -> tuple[AttachmentPurgeService, ScriptedUI, RecordingNotifier, InMemoryPreviewStore]:
    previews = InMemoryPreviewStore()
    ui = ui or ScriptedUI(preview_store=previews)
    notifier = notifier or RecordingNotifier()
    service = AttachmentPurgeService(
        store=store,
        sink=sink,  # type: ignore[arg-type]
        ui=ui,
        notifier=notifier,
        preview_store=previews,
        settings=settings,
    )
    return service, ui, notifier, previews


def scenario_store() -> FakeRecordStore:
    store = FakeRecordStore()
    store.add('r1', [('small.bin', 10), ('medium.bin', 20), ('large.bin', 30)], title='Scenario', body='hello')
    return store


async def test_scenario_all_verified_then_deleted(fast_settings: PurgeSettings) -> None:
    store = scenario_store()
    sink = FakeSink()
    service, ui, notifier, previews = make_service(store, sink, fast_settings)

    result = await service.run()

    assert result.status == 'completed'
    assert (result.payloads_saved, result.payloads_expected) == (3, 3)
    assert (result.deleted, result.deletions_intended) == (3, 3)
    assert (result.bodies_saved, result.bodies_expected) == (1, 1)
    assert result.gate is not None and result.gate.passed
    assert store.live_names('r1') == []

    body = sink.files['attachment-purge/20240305-102030_Scenario.txt']
    assert body == b'hello'
    assert len(sink.files) == 4

    assert notifier.titles == ['Backup & Deletion Completed']
    assert '3/3 attachments saved, 3/3 attachments deleted' in notifier.notifications[0][1]
    assert len(previews) == 0


async def test_scenario_one_backup_fails_nothing_deleted(fast_settings: PurgeSettings) -> None:
    store = scenario_store()
    sink = FakeSink(fail_matching=['large'])
    service, _, notifier, _ = make_service(store, sink, fast_settings)

    result = await service.run()

    assert result.status == 'gate_aborted'
    assert (result.payloads_saved, result.payloads_expected) == (2, 3)
    assert result.deleted == 0
    assert store.delete_calls == []
    assert store.live_names('r1') == ['small.bin', 'medium.bin', 'large.bin']
    assert result.gate is not None
    assert [str(ref) for ref in result.gate.missing_payloads] == ['r1:1.4']

    assert notifier.titles == ['Backup not complete - Deletion aborted']
    assert 'attachments saved 2/3 (missing sample: r1:1.4)' in notifier.notifications[0][1]


async def test_scenario_user_cancels(fast_settings: PurgeSettings) -> None:
    store = scenario_store()
    sink = FakeSink()
    previews = InMemoryPreviewStore()
    ui = ScriptedUI(confirm=False, preview_store=previews)
    service, _, notifier, _ = make_service(store, sink, fast_settings, ui=ui)

    result = await service.run()

    assert result.status == 'cancelled'
    assert sink.attempted == []
    assert store.delete_calls == []
    assert notifier.titles == ['Cancelled']


async def test_body_failure_blocks_all_deletion(fast_settings: PurgeSettings) -> None:
    store = scenario_store()
    store.add('r2', [('other.bin', 5)], title='Second')
    sink = FakeSink(fail_matching=['_Second.txt', '_Second_retry'])
    service, _, _, _ = make_service(store, sink, fast_settings)

    result = await service.run()

    assert result.status == 'gate_aborted'
    assert result.payloads_saved == 4
    assert (result.bodies_saved, result.bodies_expected) == (1, 2)
    assert store.delete_calls == []


async def test_nothing_to_do(fast_settings: PurgeSettings) -> None:
    store = FakeRecordStore()
    store.add('r1', [], placeholders=2)
    sink = FakeSink()
    service, ui, notifier, _ = make_service(store, sink, fast_settings)

    result = await service.run()

    assert result.status == 'nothing_to_do'
    assert ui.confirm_calls == []
    assert sink.attempted == []
    assert notifier.titles == ['No deletable attachments']


async def test_all_selected_scope_counts_every_body(fast_settings: PurgeSettings) -> None:
    store = scenario_store()
    store.add('r2', [], title='Plain')
    settings = fast_settings.model_copy(update={'BODY_BACKUP_SCOPE': 'all_selected'})
    sink = FakeSink()
    service, _, _, _ = make_service(store, sink, settings)

    result = await service.run()

    assert result.status == 'completed'
    assert result.bodies_expected == 2
    assert 'attachment-purge/20240305-102030_Plain.txt' in sink.files


async def test_preflight_above_threshold(fast_settings: PurgeSettings) -> None:
    store = FakeRecordStore(page_size=50)
    for i in range(5):
        store.add(f'r{i}', [('a.bin', 1)])
    settings = fast_settings.model_copy(update={'PREFLIGHT_THRESHOLD': 3})
    ui = ScriptedUI(preflight=False)
    service, _, notifier, _ = make_service(store, FakeSink(), settings, ui=ui)

    result = await service.run()

    assert result.status == 'cancelled'
    assert result.selected_count == 5
    assert [count for _, count in ui.preflight_calls] == [5]
    assert ui.confirm_calls == []


async def test_no_preflight_at_threshold(fast_settings: PurgeSettings) -> None:
    store = FakeRecordStore(page_size=50)
    for i in range(3):
        store.add(f'r{i}', [('a.bin', 1)])
    settings = fast_settings.model_copy(update={'PREFLIGHT_THRESHOLD': 3})
    ui = ScriptedUI(preflight=False)
    service, _, _, _ = make_service(store, FakeSink(), settings, ui=ui)

    result = await service.run()

    assert result.status == 'completed'
    assert ui.preflight_calls == []


async def test_unavailable_before_any_side_effect(fast_settings: PurgeSettings) -> None:
    class ReadOnlyStore(FakeRecordStore):
        delete_many = None  # type: ignore[assignment]

    store = ReadOnlyStore()
    store.add('r1', [('a.bin', 1)])
    sink = FakeSink()
    service, ui, notifier, _ = make_service(store, sink, fast_settings)

    result = await service.run()

    assert result.status == 'unavailable'
    assert 'store.delete_many' in (result.error_message or '')
    assert ui.confirm_calls == []
    assert sink.attempted == []
    assert len(notifier.notifications) == 1


def test_missing_capabilities_lists_sink_gaps() -> None:
    class NoChanges:
        def stage(self) -> None: ...
        def write(self) -> None: ...
        def query_state(self) -> None: ...

    assert missing_capabilities(FakeRecordStore(), NoChanges()) == ['sink.changes']
    assert missing_capabilities(FakeRecordStore(), FakeSink()) == []


async def test_enumeration_failure_is_fatal_error(fast_settings: PurgeSettings) -> None:
    store = scenario_store()
    store.fail_selection = True
    logger = RecordingLogger()
    service, ui, notifier, _ = make_service(store, FakeSink(), fast_settings)

    result = await service.run(logger=logger)

    assert result.status == 'error'
    assert 'selection unavailable' in (result.error_message or '')
    assert notifier.titles == ['Error during backup/verify/delete']
    assert ui.confirm_calls == []
    assert logger.messages['error']


async def test_notifier_failure_does_not_change_outcome(fast_settings: PurgeSettings) -> None:
    store = scenario_store()
    service, _, _, _ = make_service(store, FakeSink(), fast_settings, notifier=RecordingNotifier(fail=True))

    result = await service.run()

    assert result.status == 'completed'
    assert result.deleted == 3


async def test_vanished_payload_noted_in_completion(fast_settings: PurgeSettings) -> None:
    store = scenario_store()
    notifier = RecordingNotifier()

    class VanishingUI(ScriptedUI):
        async def confirm(self, key, stats, rows):  # type: ignore[no-untyped-def]
            # Someone else removes a payload while the dialog is open
            await store.delete_many('r1', ['1.3'])
            store.delete_calls.clear()
            return True

    service, _, _, _ = make_service(store, FakeSink(), fast_settings, ui=VanishingUI(), notifier=notifier)

    result = await service.run()

    # The host still serves the stub, so the backup verifies; deletion then skips it
    assert result.status == 'completed'
    assert (result.deleted, result.deletions_intended) == (2, 3)
    assert result.deletion is not None
    assert [str(ref) for ref in result.deletion.vanished] == ['r1:1.3']
    assert '1 attachment(s) were already gone' in notifier.notifications[0][1]


async def test_runs_do_not_share_state(fast_settings: PurgeSettings) -> None:
    store = scenario_store()
    sink = FakeSink()
    service, _, _, _ = make_service(store, sink, fast_settings)

    first = await service.run()
    second = await service.run()

    assert first.status == 'completed'
    assert second.status == 'nothing_to_do'
    assert second.payloads_expected == 0


async def test_malformed_date_does_not_abort_run(fast_settings: PurgeSettings) -> None:
    store = FakeRecordStore()
    store.add('r1', [('a.bin', 1)], title='Odd date', date='--5')
    sink = FakeSink()
    service, _, _, _ = make_service(store, sink, fast_settings)

    result = await service.run()

    assert result.status == 'completed'
    assert result.deleted == 1
