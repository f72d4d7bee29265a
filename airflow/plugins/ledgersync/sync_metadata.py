"""
Sync Metadata Tracking for Incremental Loads.

Tracks the watermark of every synced table in a SyncLog table that lives in
the destination database next to the data it describes:

    [analytics].[SyncLog]
        EnvironmentName   (multi-tenant only, part of the key)
        TableName         (e.g., 'fact_GL')
        LastSyncDateTime  latest LastModifiedDateTime synced so far (UTC)
        RowsSynced        rows in the most recent attempt
        SyncStatus        'Success' | 'Failed'
        LastError         error text of the most recent failed attempt

One row per table (per environment); every attempt overwrites it. A failed
attempt keeps the stored LastSyncDateTime so the next run re-reads the same
window.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ledgersync.config import StoreConnection
from ledgersync.sql_templates import render_sql
from ledgersync.store import execute, fetch_all, fetch_one
from ledgersync.utils import EPOCH, ensure_utc, to_sql_datetime

logger = logging.getLogger(__name__)

TEMPLATE_DIR = 'sqlserver/sync_log'
DEFAULT_SCHEMA = 'analytics'

STATUS_SUCCESS = 'Success'
STATUS_FAILED = 'Failed'

# LastError is NVARCHAR(4000)
MAX_ERROR_LENGTH = 4000


def get_last_sync(
    connection: StoreConnection,
    table_name: str,
    environment_name: Optional[str] = None,
    schema: str = DEFAULT_SCHEMA,
) -> datetime:
    """
    Get the watermark for a table.

    Args:
        connection: Destination database
        table_name: Destination table name (e.g., 'fact_GL')
        environment_name: Scope discriminator (multi-tenant); None keys the
            row by table name alone
        schema: Schema holding SyncLog

    Returns:
        Aware UTC datetime, or EPOCH when the table was never synced

    Example:
        >>> last = get_last_sync(conn, 'fact_GL', 'Production')
        >>> if last > EPOCH:
        ...     url += f"?$filter=lastModifiedDateTime gt {format_watermark(last)}"
    """
    sql = render_sql(f'{TEMPLATE_DIR}/get_last_sync.sql.j2',
                     schema=schema,
                     multi_tenant=environment_name is not None)
    row = fetch_one(connection, sql, {
        'table_name': table_name,
        'environment_name': environment_name,
    })

    if not row or row.get('LastSyncDateTime') is None:
        return EPOCH
    return ensure_utc(row['LastSyncDateTime'])


def update_sync_log(
    connection: StoreConnection,
    table_name: str,
    rows_synced: int,
    status: str,
    error: Optional[str] = None,
    environment_name: Optional[str] = None,
    last_sync_value: Optional[datetime] = None,
    schema: str = DEFAULT_SCHEMA,
) -> None:
    """
    Record the outcome of one sync attempt (single MERGE statement).

    Args:
        rows_synced: Rows upserted by this attempt
        status: STATUS_SUCCESS or STATUS_FAILED
        error: Error text for failed attempts
        last_sync_value: New watermark; None keeps the stored one

    Example:
        >>> update_sync_log(conn, 'fact_GL', 1250, STATUS_SUCCESS,
        ...                 environment_name='Production',
        ...                 last_sync_value=datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc))
    """
    if error is not None and len(error) > MAX_ERROR_LENGTH:
        error = error[:MAX_ERROR_LENGTH]

    sql = render_sql(f'{TEMPLATE_DIR}/upsert_sync_log.sql.j2',
                     schema=schema,
                     multi_tenant=environment_name is not None)
    execute(connection, sql, {
        'table_name': table_name,
        'environment_name': environment_name,
        'last_sync': to_sql_datetime(last_sync_value),
        'rows_synced': rows_synced,
        'status': status,
        'error': error,
    })

    watermark = last_sync_value.isoformat() if last_sync_value else 'unchanged'
    logger.info(f"Updated sync log for {table_name}: {status}, {rows_synced} rows, "
                f"last_value={watermark}")


def get_sync_states(
    connection: StoreConnection,
    environment_name: Optional[str] = None,
    multi_tenant: bool = True,
    schema: str = DEFAULT_SCHEMA,
) -> List[Dict[str, Any]]:
    """
    List SyncLog rows of a destination database.

    Args:
        environment_name: Only rows of this environment (multi-tenant)
        multi_tenant: Whether the SyncLog table carries EnvironmentName

    Returns:
        One dict per row, LastSyncDateTime as aware UTC (or None)
    """
    sql = render_sql(f'{TEMPLATE_DIR}/get_sync_states.sql.j2',
                     schema=schema,
                     multi_tenant=multi_tenant,
                     filter_environment=multi_tenant and environment_name is not None)
    params = {'environment_name': environment_name} if multi_tenant and environment_name else None
    rows = fetch_all(connection, sql, params)

    for row in rows:
        if row.get('LastSyncDateTime') is not None:
            row['LastSyncDateTime'] = ensure_utc(row['LastSyncDateTime'])
    return rows


def reset_sync_state(
    connection: StoreConnection,
    table_name: str,
    environment_name: Optional[str] = None,
    schema: str = DEFAULT_SCHEMA,
) -> bool:
    """
    Delete a table's SyncLog row so the next run does a full fetch.

    Returns:
        True if a row was deleted
    """
    sql = render_sql(f'{TEMPLATE_DIR}/reset_sync_state.sql.j2',
                     schema=schema,
                     multi_tenant=environment_name is not None)
    deleted = execute(connection, sql, {
        'table_name': table_name,
        'environment_name': environment_name,
    })

    if not deleted:
        logger.info(f"No sync state found for {table_name}")
        return False

    logger.info(f"Reset sync state for {table_name}")
    return True
