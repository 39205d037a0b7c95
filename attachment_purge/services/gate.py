"""
Strict consistency gate.

All-or-nothing: unless every expected payload backup and every required body
snapshot is verified, the whole deletion phase is refused. There is no
partial-deletion mode.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence, Set as AbstractSet

from attachment_purge.exceptions import GateMismatchError
from attachment_purge.schemas.operations.evaluation import PurgeTarget
from attachment_purge.schemas.operations.purge import GateReport, PayloadRef

__all__ = ['ConsistencyGate']


class ConsistencyGate:
    """Compares expected vs. verified backup counts."""

    def __init__(self, sample_size: int = 5) -> None:
        self.sample_size = sample_size

    def evaluate(
        self,
        targets: Sequence[PurgeTarget],
        success_map: Mapping[str, AbstractSet[str]],
        body_required: Sequence[str],
        body_succeeded: AbstractSet[str],
    ) -> GateReport:
        """
        Count expected and verified backups for the whole run.

        Args:
            targets: TargetSet (expected payloads)
            success_map: Verified payload ids per record
            body_required: Records that need a body snapshot
            body_succeeded: Records whose body snapshot was verified
        """
        expected_payloads = sum(len(target.payload_ids) for target in targets)
        actual_payloads = sum(len(ok) for ok in success_map.values())

        required = list(dict.fromkeys(body_required))
        actual_bodies = sum(1 for record_id in required if record_id in body_succeeded)

        missing_payloads: list[PayloadRef] = []
        for target in targets:
            ok = success_map.get(target.record_id, frozenset())
            for payload_id in target.payload_ids:
                if payload_id not in ok:
                    missing_payloads.append(PayloadRef(record_id=target.record_id, payload_id=payload_id))
                if len(missing_payloads) >= self.sample_size:
                    break
            if len(missing_payloads) >= self.sample_size:
                break

        missing_bodies = [record_id for record_id in required if record_id not in body_succeeded]

        return GateReport(
            expected_payloads=expected_payloads,
            actual_payloads=actual_payloads,
            expected_bodies=len(required),
            actual_bodies=actual_bodies,
            missing_payloads=missing_payloads,
            missing_bodies=missing_bodies[: self.sample_size],
        )

    @staticmethod
    def enforce(report: GateReport) -> None:
        """
        Raises:
            GateMismatchError: If any expected backup is not verified
        """
        if not report.passed:
            raise GateMismatchError(report)
