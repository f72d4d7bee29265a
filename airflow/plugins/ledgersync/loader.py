"""
Bulk upsert of fetched records into a destination table.

Each call stages the batch in a session temp table and applies a single
MERGE, all inside one transaction on one connection:

    SELECT TOP (0) ... INTO #stg_<table>   (shape copied from the destination)
    INSERT INTO #stg_<table> ...           (executemany)
    MERGE <schema>.<table> USING #stg_<table>
    DROP TABLE IF EXISTS #stg_<table>

Nothing reaches the destination table unless the merge commits.
"""
import logging
import time
from datetime import datetime
from typing import Any, List, Sequence, Tuple

import pandas as pd

from ledgersync.config import StoreConnection
from ledgersync.entities.base import EntityConfig, LedgerRecord
from ledgersync.sql_templates import render_sql
from ledgersync.store import run, store_cursor
from ledgersync.tenants import TenantEnvironment
from ledgersync.utils import to_sql_datetime

logger = logging.getLogger(__name__)

TEMPLATE_DIR = 'sqlserver/destination'


def build_frame(
    entity: EntityConfig,
    records: Sequence[LedgerRecord],
    scope: TenantEnvironment,
    multi_tenant: bool,
) -> pd.DataFrame:
    """
    Materialise a batch as a DataFrame in staging column order.

    Values are kept as Python objects (dtype=object) so Decimal, date and
    datetime values reach the driver unchanged. Rows sharing an identity key
    collapse to the one with the latest modification time.
    """
    df = pd.DataFrame([r.to_row() for r in records], columns=entity.columns, dtype=object)

    if multi_tenant:
        df['EnvironmentName'] = scope.environment_name
        df['CompanyId'] = scope.company_id

    before = len(df)
    df = (
        df.sort_values(entity.watermark_column, kind='mergesort', na_position='first')
          .drop_duplicates(subset=entity.key_columns(multi_tenant), keep='last')
          .sort_index()
          .reset_index(drop=True)
    )
    if len(df) < before:
        logger.warning(f"{entity.target_table}: collapsed {before - len(df)} duplicate key(s) in batch")

    return df.where(pd.notna(df), None)


def _sql_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_sql_datetime(value)
    return value


def frame_to_rows(df: pd.DataFrame) -> List[Tuple[Any, ...]]:
    """DataFrame -> list of driver-ready tuples (aware datetimes become naive UTC)."""
    return [tuple(_sql_value(v) for v in row) for row in df.itertuples(index=False, name=None)]


class BulkUpsertLoader:
    """
    Stages and merges batches into destination tables.

    Args:
        schema: Destination schema (e.g., 'analytics')
        multi_tenant: Whether tables carry the EnvironmentName/CompanyId
            discriminators
        chunk_size: Rows per executemany call while loading the staging table
    """

    def __init__(self, schema: str = 'analytics', multi_tenant: bool = True, chunk_size: int = 1000):
        self.schema = schema
        self.multi_tenant = multi_tenant
        self.chunk_size = chunk_size

    def upsert(
        self,
        connection: StoreConnection,
        scope: TenantEnvironment,
        entity: EntityConfig,
        records: Sequence[LedgerRecord],
    ) -> int:
        """
        Upsert a batch of records into the entity's destination table.

        Returns:
            Number of rows staged (after in-batch de-duplication); 0 for an
            empty batch, which never opens a connection

        Raises:
            StoreError: On connection, staging, load or merge failure (the
                transaction is rolled back)
        """
        if not records:
            return 0

        start_time = time.time()
        df = build_frame(entity, records, scope, self.multi_tenant)
        columns = list(df.columns)
        rows = frame_to_rows(df)

        staging_table = f"stg_{entity.target_table}"
        key_columns = entity.key_columns(self.multi_tenant)
        update_columns = [c for c in columns if c not in key_columns]

        create_sql = render_sql(f'{TEMPLATE_DIR}/create_staging.sql.j2',
                                schema=self.schema,
                                table=entity.target_table,
                                staging_table=staging_table,
                                columns=columns)
        load_sql = render_sql(f'{TEMPLATE_DIR}/load_staging.sql.j2',
                              staging_table=staging_table,
                              columns=columns,
                              placeholders=', '.join(['%s'] * len(columns)))
        merge_sql = render_sql(f'{TEMPLATE_DIR}/merge.sql.j2',
                               schema=self.schema,
                               table=entity.target_table,
                               staging_table=staging_table,
                               columns=columns,
                               key_columns=key_columns,
                               update_columns=update_columns)
        drop_sql = render_sql(f'{TEMPLATE_DIR}/drop_staging.sql.j2', staging_table=staging_table)

        with store_cursor(connection, as_dict=False) as cursor:
            run(cursor, create_sql)
            for offset in range(0, len(rows), self.chunk_size):
                cursor.executemany(load_sql, rows[offset:offset + self.chunk_size])
            run(cursor, merge_sql)
            merged = cursor.rowcount
            run(cursor, drop_sql)

        duration = time.time() - start_time
        logger.info(f"Upserted {len(rows)} rows into {self.schema}.{entity.target_table} "
                    f"(merge affected {merged}) in {duration:.2f}s")
        return len(rows)
