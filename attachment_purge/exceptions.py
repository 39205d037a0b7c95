"""
Shared exceptions for attachment-purge.

Domain-specific exceptions used across services.

Exception Hierarchy:
    AttachmentPurgeError (base)
    ├── CapabilityUnavailableError (host lacks a required primitive)
    ├── SelectionEnumerationError (selection listing failed)
    ├── PayloadNotFoundError (payload id no longer resolves in its record)
    ├── SinkWriteError (backup sink rejected or interrupted a write)
    ├── GateMismatchError (verified backups != expected backups)
    ├── ConcurrentRunError (another run holds the backup root)
    └── RuntimeStateError (lifecycle used out of order)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from attachment_purge.schemas.operations.purge import GateReport


class AttachmentPurgeError(Exception):
    """Base exception for all attachment-purge errors."""


class CapabilityUnavailableError(AttachmentPurgeError):
    """Raised when the record store or backup sink lacks a required operation."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f'Required capabilities unavailable: {", ".join(missing)}')


class SelectionEnumerationError(AttachmentPurgeError):
    """Raised when the selected records cannot be listed."""


class PayloadNotFoundError(AttachmentPurgeError):
    """Raised by a record store when a payload id does not resolve."""

    def __init__(self, record_id: str, payload_id: str) -> None:
        self.record_id = record_id
        self.payload_id = payload_id
        super().__init__(f'Payload {payload_id} not found in record {record_id}')


class SinkWriteError(AttachmentPurgeError):
    """Raised by a backup sink when a write cannot be started or completed."""


class GateMismatchError(AttachmentPurgeError):
    """Raised when verified backup counts differ from the expected counts."""

    def __init__(self, report: GateReport) -> None:
        self.report = report
        super().__init__('Backup verification failed:\n' + '\n'.join(report.details()))


class ConcurrentRunError(AttachmentPurgeError):
    """Raised when another purge run already holds the backup root."""

    def __init__(self, save_dir: str) -> None:
        self.save_dir = save_dir
        super().__init__(f'Another purge run is already using {save_dir}')


class RuntimeStateError(AttachmentPurgeError):
    """Raised when the runtime is initialized twice or used before initialization."""
