"""Service layer for backup, verification and deletion."""

from attachment_purge.services.purge import AttachmentPurgeService
from attachment_purge.services.runtime import PurgeRuntime, runtime
from attachment_purge.services.writer import VerifiedBackupWriter

__all__ = [
    'AttachmentPurgeService',
    'PurgeRuntime',
    'VerifiedBackupWriter',
    'runtime',
]
