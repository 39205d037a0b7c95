"""Backup sinks."""

from attachment_purge.storage.http import WebDavSink
from attachment_purge.storage.local import LocalFileSystemSink
from attachment_purge.storage.protocol import BackupSink

__all__ = ['BackupSink', 'LocalFileSystemSink', 'WebDavSink']
