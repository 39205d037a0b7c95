"""Tests for the strict consistency gate."""

from __future__ import annotations

import pytest

from attachment_purge.exceptions import GateMismatchError
from attachment_purge.schemas.operations.evaluation import PurgeTarget
from attachment_purge.services.gate import ConsistencyGate

TARGETS = [
    PurgeTarget(record_id='r1', payload_ids=['1.2', '1.3', '1.4']),
    PurgeTarget(record_id='r2', payload_ids=['1.2']),
]


def test_gate_passes_on_exact_match() -> None:
    report = ConsistencyGate().evaluate(
        TARGETS,
        {'r1': frozenset({'1.2', '1.3', '1.4'}), 'r2': frozenset({'1.2'})},
        ['r1', 'r2'],
        frozenset({'r1', 'r2'}),
    )

    assert report.passed
    assert report.details() == []
    ConsistencyGate.enforce(report)


def test_gate_reports_missing_payloads() -> None:
    report = ConsistencyGate().evaluate(
        TARGETS,
        {'r1': frozenset({'1.2', '1.3'}), 'r2': frozenset({'1.2'})},
        ['r1', 'r2'],
        frozenset({'r1', 'r2'}),
    )

    assert not report.passed
    assert (report.expected_payloads, report.actual_payloads) == (4, 3)
    assert [str(ref) for ref in report.missing_payloads] == ['r1:1.4']
    assert report.details() == ['attachments saved 3/4 (missing sample: r1:1.4)']

    with pytest.raises(GateMismatchError, match='attachments saved 3/4') as exc_info:
        ConsistencyGate.enforce(report)
    assert exc_info.value.report is report


def test_gate_reports_missing_bodies() -> None:
    report = ConsistencyGate().evaluate(
        TARGETS,
        {'r1': frozenset({'1.2', '1.3', '1.4'}), 'r2': frozenset({'1.2'})},
        ['r1', 'r2'],
        frozenset({'r1'}),
    )

    assert not report.passed
    assert (report.expected_bodies, report.actual_bodies) == (2, 1)
    assert report.details() == ['bodies saved 1/2 (missing sample IDs: r2)']


def test_bodies_outside_required_set_do_not_count() -> None:
    report = ConsistencyGate().evaluate(
        TARGETS[:1],
        {'r1': frozenset({'1.2', '1.3', '1.4'})},
        ['r1'],
        frozenset({'r1', 'r9'}),
    )

    assert report.actual_bodies == 1
    assert report.passed


def test_missing_samples_are_bounded() -> None:
    targets = [PurgeTarget(record_id=f'r{i}', payload_ids=['1.2', '1.3']) for i in range(10)]

    report = ConsistencyGate(sample_size=3).evaluate(targets, {}, [f'r{i}' for i in range(10)], frozenset())

    assert len(report.missing_payloads) == 3
    assert len(report.missing_bodies) == 3
    assert report.expected_payloads == 20
    assert report.actual_payloads == 0
