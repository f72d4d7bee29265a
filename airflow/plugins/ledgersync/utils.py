"""
Utility Functions

Time helpers shared by the fetcher, watermark store and orchestrator.
SQL Server DATETIME2 columns hold naive values, always interpreted as UTC.
"""
from datetime import datetime, timezone
from typing import Optional

# Sentinel watermark meaning "never synced" -> full, unfiltered fetch
EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values (as returned by pymssql) are assumed to already be UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_sql_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to the naive UTC form stored in SQL Server."""
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def format_watermark(value: datetime) -> str:
    """
    Format a watermark for an OData $filter clause.

    Returns:
        UTC timestamp with second precision (e.g., '2025-01-15T10:30:00Z')
    """
    return ensure_utc(value).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_api_datetime(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp from the source API into aware UTC.

    Handles the trailing 'Z' and fractional seconds of any precision
    (the API emits up to 7 digits, Python accepts at most 6).
    """
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'

    if '.' in text:
        head, _, tail = text.partition('.')
        digits = ''
        rest = ''
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"

    return ensure_utc(datetime.fromisoformat(text))
