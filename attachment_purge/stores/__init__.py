"""Record stores and ephemeral preview storage."""

from attachment_purge.stores.maildir import MaildirRecordStore
from attachment_purge.stores.preview import InMemoryPreviewStore

__all__ = ['InMemoryPreviewStore', 'MaildirRecordStore']
