"""
Logical backup path helpers.

Every artifact of one record shares the same `<stamp>_<title>` prefix so that
a record's attachments and its body snapshot sort next to each other in the
backup folder.
"""

from __future__ import annotations

import re
from datetime import datetime

__all__ = [
    'add_suffix_to_path',
    'body_backup_path',
    'format_stamp',
    'human_size',
    'payload_backup_path',
    'sanitize',
    'truncate_utf8',
]

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|]')
_WHITESPACE = re.compile(r'\s+')

# Filesystems cap a path component at 255 bytes; the rest is left for the
# retry and uniqueness suffixes
MAX_TITLE_BYTES = 100
MAX_NAME_BYTES = 200
MAX_EXT_BYTES = 16


def sanitize(value: str | None) -> str:
    """
    Make a title or file name safe for use as one path component.

    Examples:
        >>> sanitize('Re: Q3 report / draft?')
        'Re_ Q3 report _ draft_'
    """
    return _WHITESPACE.sub(' ', _UNSAFE_CHARS.sub('_', value or '')).strip()


def format_stamp(timestamp: datetime) -> str:
    """Render a record timestamp as YYYYMMDD-HHMMSS (local wall time for aware datetimes)."""
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone()
    return timestamp.strftime('%Y%m%d-%H%M%S')


def add_suffix_to_path(path: str, suffix: str) -> str:
    """
    Insert a suffix before the extension of the last path component.

    A leading dot (hidden file) is not treated as an extension separator.

    Examples:
        >>> add_suffix_to_path('root/a_b_report.pdf', '_retry2')
        'root/a_b_report_retry2.pdf'
        >>> add_suffix_to_path('root/.profile', '_retry3')
        'root/.profile_retry3'
    """
    head, sep, name = path.rpartition('/')
    dot = name.rfind('.')
    if dot > 0:
        base, ext = name[:dot], name[dot:]
    else:
        base, ext = name, ''
    return f'{head}{sep}{base}{suffix}{ext}'


def truncate_utf8(value: str, max_bytes: int) -> str:
    """Cut a string to at most max_bytes of UTF-8, on a character boundary."""
    encoded = value.encode('utf-8')
    if len(encoded) <= max_bytes:
        return value
    return encoded[:max_bytes].decode('utf-8', errors='ignore').rstrip()


def _fit_name(name: str) -> str:
    """Shorten a file name to MAX_NAME_BYTES, keeping a short extension."""
    if len(name.encode('utf-8')) <= MAX_NAME_BYTES:
        return name
    dot = name.rfind('.')
    ext = name[dot:] if dot > 0 else ''
    if len(ext.encode('utf-8')) > MAX_EXT_BYTES:
        ext = ''
    base = name[: len(name) - len(ext)]
    return truncate_utf8(base, MAX_NAME_BYTES - len(ext.encode('utf-8'))) + ext


def payload_backup_path(save_root: str, stamp: str, title: str, payload_name: str) -> str:
    title = truncate_utf8(sanitize(title), MAX_TITLE_BYTES)
    return f'{save_root}/' + _fit_name(f'{stamp}_{title}_{sanitize(payload_name) or "attachment"}')


def body_backup_path(save_root: str, stamp: str, title: str) -> str:
    return f'{save_root}/{stamp}_{truncate_utf8(sanitize(title), MAX_TITLE_BYTES)}.txt'



def human_size(num_bytes: int | float) -> str:
    """
    Format a byte count for display.

    Examples:
        >>> human_size(512)
        '512 B'
        >>> human_size(1536)
        '1.5 KB'
    """
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    size = max(0.0, float(num_bytes or 0))
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f'{size:.1f} {units[i]}' if i else f'{size:.0f} {units[i]}'
