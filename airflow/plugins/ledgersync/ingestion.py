"""
Entity sync: one entity kind for one scope.

Provides the unit of work the orchestrator repeats for every (scope, entity):
- Read the watermark from SyncLog
- Get a token and fetch every page modified since the watermark
- Upsert the batch (skipped when nothing changed)
- Record the outcome in SyncLog

Usage:
    from ledgersync.ingestion import sync_entity

    result = sync_entity(
        settings=settings,
        scope=scope,
        connection=resolve_destination(settings, scope),
        entity=GL_ENTRIES,
        token_cache=token_cache,
        fetcher=fetcher,
        loader=loader,
    )
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from ledgersync.api_client import PagedFetcher, build_api_root
from ledgersync.config import StoreConnection, SyncSettings
from ledgersync.entities.base import EntityConfig, LedgerRecord
from ledgersync.errors import ApiError, SyncError
from ledgersync.loader import BulkUpsertLoader
from ledgersync.sync_metadata import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    get_last_sync,
    update_sync_log,
)
from ledgersync.tenants import TenantEnvironment
from ledgersync.tokens import TokenCache
from ledgersync.utils import EPOCH, format_watermark

logger = logging.getLogger(__name__)

MODE_FULL = 'full'
MODE_INCREMENTAL = 'incremental'


@dataclass
class EntitySyncResult:
    """Outcome of one entity sync.

    rows_synced counts rows upserted (0 for failed attempts). watermark is the
    value written to SyncLog, None when the stored one was kept.
    """
    table: str
    status: str
    mode: str = MODE_INCREMENTAL
    records_fetched: int = 0
    rows_synced: int = 0
    watermark: Optional[datetime] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0
    exception: Optional[SyncError] = field(default=None, repr=False, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS


def max_last_modified(records: Sequence[LedgerRecord]) -> Optional[datetime]:
    """Latest LastModifiedDateTime in a batch (None if no record carries one)."""
    values = [r.last_modified for r in records if getattr(r, 'last_modified', None) is not None]
    return max(values) if values else None


def newer_than(records: Sequence[LedgerRecord], watermark: datetime) -> List[LedgerRecord]:
    """
    Records modified strictly after the watermark.

    The API $filter has second precision, the watermark does not. Records
    without a modification time are kept.
    """
    if watermark <= EPOCH:
        return list(records)
    return [r for r in records if r.last_modified is None or r.last_modified > watermark]


def sync_entity(
    settings: SyncSettings,
    scope: TenantEnvironment,
    connection: StoreConnection,
    entity: EntityConfig,
    token_cache: TokenCache,
    fetcher: PagedFetcher,
    loader: BulkUpsertLoader,
    full_refresh: bool = False,
) -> EntitySyncResult:
    """
    Sync a single entity kind of a scope into its destination table.

    Failures (AuthError, ApiError, StoreError) are logged, recorded in SyncLog
    as Failed with the error text and returned in the result; the stored
    watermark is left untouched. The caller decides whether the scope goes on.

    Args:
        settings: Engine settings (mode, schema, API location)
        scope: Scope being synced
        connection: Destination database of the scope
        entity: Entity kind to sync
        full_refresh: Ignore the stored watermark and fetch everything

    Returns:
        EntitySyncResult
    """
    table_name = entity.target_table
    environment_name = scope.environment_name if settings.is_multi_tenant else None
    schema = settings.destination_schema
    start_time = time.time()
    mode = MODE_FULL if full_refresh else MODE_INCREMENTAL

    logger.info(f"Starting sync for {table_name} ({scope.label})")

    try:
        if full_refresh:
            watermark = EPOCH
            logger.info("  Mode: FULL REFRESH (forced)")
        else:
            watermark = get_last_sync(connection, table_name, environment_name, schema=schema)
            if watermark <= EPOCH:
                mode = MODE_FULL
                logger.info("  Mode: INITIAL FULL (no sync state)")
            else:
                logger.info(f"  Mode: INCREMENTAL since {format_watermark(watermark)}")

        token = token_cache.get_token(scope.bc_tenant_id, scope.client_id)
        api_root = build_api_root(settings, scope.bc_tenant_id, scope.environment_name, scope.company_id)

        try:
            fetched = fetcher.fetch_all(token, api_root, entity.endpoint, entity.record_type, watermark)
        except ApiError as e:
            if e.status == 401:
                token_cache.invalidate(scope.client_id)
            raise

        logger.info(f"  Fetched {len(fetched)} records")

        records = newer_than(fetched, watermark)
        if len(records) < len(fetched):
            logger.info(f"  Skipped {len(fetched) - len(records)} record(s) already synced at the watermark")

        if not records:
            logger.info("  No new data to sync")
            update_sync_log(connection, table_name, 0, STATUS_SUCCESS,
                            environment_name=environment_name, schema=schema)
            return EntitySyncResult(
                table=table_name,
                status=STATUS_SUCCESS,
                mode=mode,
                records_fetched=len(fetched),
                duration_seconds=round(time.time() - start_time, 2),
            )

        rows_synced = loader.upsert(connection, scope, entity, records)
        new_watermark = max_last_modified(records)

        update_sync_log(connection, table_name, rows_synced, STATUS_SUCCESS,
                        environment_name=environment_name,
                        last_sync_value=new_watermark,
                        schema=schema)

    except SyncError as e:
        duration = round(time.time() - start_time, 2)
        logger.exception(f"Sync failed for {table_name} ({scope.label}): {e}")
        _record_failure(connection, table_name, str(e), environment_name, schema)
        return EntitySyncResult(
            table=table_name,
            status=STATUS_FAILED,
            mode=mode,
            error=str(e),
            duration_seconds=duration,
            exception=e,
        )

    duration = round(time.time() - start_time, 2)
    logger.info(f"  Sync complete: {rows_synced} rows into {schema}.{table_name} ({duration:.2f}s)")

    return EntitySyncResult(
        table=table_name,
        status=STATUS_SUCCESS,
        mode=mode,
        records_fetched=len(fetched),
        rows_synced=rows_synced,
        watermark=new_watermark,
        duration_seconds=duration,
    )


def _record_failure(
    connection: StoreConnection,
    table_name: str,
    error: str,
    environment_name: Optional[str],
    schema: str,
) -> None:
    """Write the Failed SyncLog row; a failure here must not hide the original error."""
    try:
        update_sync_log(connection, table_name, 0, STATUS_FAILED,
                        error=error,
                        environment_name=environment_name,
                        schema=schema)
    except SyncError as log_error:
        logger.error(f"Could not record failure for {table_name} in SyncLog: {log_error}")
