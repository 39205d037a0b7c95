"""
Canonical record timestamp.

Computed once per record before any backup, and reused for every logical path
of that record: receipt header first, then the structured date field, then
the current time.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from attachment_purge.schemas.records import RecordMetadata

__all__ = ['coerce_date', 'derive_record_timestamp', 'parse_received_header']

logger = logging.getLogger(__name__)

# Epoch values at or above this are milliseconds (1e11 s is the year 5138)
EPOCH_MILLIS_THRESHOLD = 100_000_000_000
EPOCH_PATTERN = re.compile(r'-?[0-9]+')


def parse_received_header(header: str | None) -> datetime | None:
    """
    Parse the receipt time out of a Received-style header.

    The date follows the last ';' (RFC 5321 trace field):
        'from mx.example.org by mail.example.com; Tue, 15 Oct 2024 10:00:00 +0000'
    """
    if not header or ';' not in header:
        return None
    return _parse_rfc2822(header.rpartition(';')[2])


def coerce_date(value: datetime | int | float | str | None) -> datetime | None:
    """
    Coerce a structured date field from whatever representation the host offers.

    Accepts datetimes, epoch seconds or milliseconds, RFC 2822 and ISO-8601 strings.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, int | float):
        try:
            seconds = value / 1000 if abs(value) >= EPOCH_MILLIS_THRESHOLD else value
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    text = value.strip()
    if not text:
        return None
    if EPOCH_PATTERN.fullmatch(text):
        return coerce_date(int(text))
    parsed = _parse_rfc2822(text)
    if parsed is not None:
        return parsed
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def derive_record_timestamp(metadata: RecordMetadata, now: datetime | None = None) -> datetime:
    """
    Pick the canonical timestamp for a record.

    Args:
        metadata: Record metadata with raw timestamp candidates
        now: Last-resort value (defaults to the current time)
    """
    received = parse_received_header(metadata.received_header)
    if received is not None:
        return received

    dated = coerce_date(metadata.date)
    if dated is not None:
        return dated

    logger.info(f'No usable timestamp for record {metadata.record_id}, using current time')
    return now or datetime.now()


def _parse_rfc2822(text: str) -> datetime | None:
    try:
        return parsedate_to_datetime(text.strip())
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
