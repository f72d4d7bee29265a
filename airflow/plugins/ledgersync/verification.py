"""
Verification Utilities for the ledger sync.

Operational read-outs over SyncLog rows and run summaries.

Usage:
    from ledgersync.sync_metadata import get_sync_states
    from ledgersync.verification import check_stale_syncs, format_verification_report

    states = get_sync_states(connection, environment_name='Production')
    stale = check_stale_syncs(states, max_age_hours=24)
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ledgersync.orchestrator import RunSummary
from ledgersync.sync_metadata import STATUS_FAILED
from ledgersync.utils import ensure_utc, utcnow


def _table_label(state: Dict[str, Any]) -> str:
    if state.get('EnvironmentName'):
        return f"{state['EnvironmentName']}/{state['TableName']}"
    return state['TableName']


def get_sync_summary(states: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Summarize SyncLog rows.

    Args:
        states: Rows from get_sync_states()

    Returns:
        Dict with sync summary statistics
    """
    if not states:
        return {
            'total_tables': 0,
            'message': 'No sync states found'
        }

    watermarks = [s['LastSyncDateTime'] for s in states if s.get('LastSyncDateTime')]

    return {
        'total_tables': len(states),
        'rows_last_run': sum(s.get('RowsSynced') or 0 for s in states),
        'failed_tables': [_table_label(s) for s in states if s.get('SyncStatus') == STATUS_FAILED],
        'oldest_watermark': min(watermarks).isoformat() if watermarks else None,
        'newest_watermark': max(watermarks).isoformat() if watermarks else None,
        'tables': [
            {
                'table': _table_label(s),
                'last_sync': s['LastSyncDateTime'].isoformat() if s.get('LastSyncDateTime') else None,
                'rows': s.get('RowsSynced') or 0,
                'status': s.get('SyncStatus'),
            }
            for s in states
        ]
    }


def check_stale_syncs(
    states: List[Dict[str, Any]],
    max_age_hours: int = 24,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Find tables whose watermark is old, that never synced, or whose last
    attempt failed.

    Note: the watermark is the newest source modification seen, so a table
    whose source is idle also ages. Pick max_age_hours accordingly.

    Args:
        states: Rows from get_sync_states()
        max_age_hours: Maximum acceptable hours since the watermark
        now: Reference time (defaults to current UTC time)

    Returns:
        List of stale table info
    """
    now = ensure_utc(now) if now else utcnow()
    cutoff = now - timedelta(hours=max_age_hours)
    stale = []

    for state in states:
        table = _table_label(state)
        last_sync = state.get('LastSyncDateTime')

        if state.get('SyncStatus') == STATUS_FAILED:
            stale.append({
                'table': table,
                'last_sync': last_sync.isoformat() if last_sync else None,
                'reason': f"Last attempt failed: {state.get('LastError') or 'unknown error'}"
            })
            continue

        if last_sync is None:
            stale.append({
                'table': table,
                'last_sync': None,
                'reason': 'Never synced'
            })
            continue

        last_sync = ensure_utc(last_sync)
        if last_sync < cutoff:
            hours_ago = (now - last_sync).total_seconds() / 3600
            stale.append({
                'table': table,
                'last_sync': last_sync.isoformat(),
                'hours_ago': round(hours_ago, 1),
                'reason': f'Sync older than {max_age_hours}h'
            })

    return stale


def summarize_run(summary: RunSummary) -> Dict[str, Any]:
    """
    Flatten a RunSummary into plain data (safe to push to XCom or log).
    """
    duration = None
    if summary.finished_at is not None:
        duration = round((summary.finished_at - summary.started_at).total_seconds(), 2)

    return {
        'started_at': summary.started_at.isoformat(),
        'finished_at': summary.finished_at.isoformat() if summary.finished_at else None,
        'duration_seconds': duration,
        'succeeded': summary.succeeded,
        'total_records': summary.total_records,
        'scopes': [
            {
                'scope': s.scope.label,
                'state': s.state,
                'records': s.total_records,
                'error': s.error,
                'failed_entities': [
                    {'table': e.table, 'error': e.error} for e in s.failed_entities
                ],
                'entities': {e.table: e.rows_synced for e in s.entities},
            }
            for s in summary.scopes
        ],
    }


def format_verification_report(states: List[Dict[str, Any]], max_age_hours: int = 24) -> str:
    """Human-readable report of sync states (for task logs)."""
    summary = get_sync_summary(states)
    stale = check_stale_syncs(states, max_age_hours)

    lines = [
        "=" * 60,
        "LEDGER SYNC VERIFICATION REPORT",
        f"Generated: {utcnow().isoformat()}",
        "=" * 60,
        "",
        "SYNC SUMMARY",
        f"  Total tables tracked: {summary.get('total_tables', 0)}",
        f"  Rows in last attempts: {summary.get('rows_last_run', 0):,}",
        f"  Oldest watermark: {summary.get('oldest_watermark') or 'N/A'}",
        f"  Newest watermark: {summary.get('newest_watermark') or 'N/A'}",
    ]

    if stale:
        lines.append("")
        lines.append(f"STALE TABLES (>{max_age_hours}h or failed):")
        lines.extend(f"  - {s['table']}: {s['reason']}" for s in stale)
    else:
        lines.append("")
        lines.append(f"No stale tables (all synced within {max_age_hours}h)")

    lines.append("=" * 60)
    return "\n".join(lines)
