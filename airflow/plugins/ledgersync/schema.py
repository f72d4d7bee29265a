"""
Destination database setup.

Creates the destination schema, one table per entity kind and the SyncLog
table when they do not exist yet. Existing objects are never altered.
"""
import logging
from typing import List, Optional, Sequence

from ledgersync.config import StoreConnection
from ledgersync.entities import ALL_ENTITIES, EntityConfig
from ledgersync.sql_templates import render_sql
from ledgersync.store import run, store_cursor

logger = logging.getLogger(__name__)

TEMPLATE_DIR = 'sqlserver/setup'


def destination_ddl(
    schema: str,
    multi_tenant: bool,
    entities: Optional[Sequence[EntityConfig]] = None,
) -> List[str]:
    """
    Statements creating the destination objects, in execution order.

    Example:
        >>> for sql in destination_ddl('analytics', multi_tenant=True):
        ...     print(sql)
    """
    statements = [render_sql(f'{TEMPLATE_DIR}/create_schema.sql.j2', schema=schema)]
    for entity in entities or ALL_ENTITIES:
        statements.append(render_sql(
            f'{TEMPLATE_DIR}/create_table.sql.j2',
            schema=schema,
            table=entity.target_table,
            columns=entity.column_definitions(multi_tenant),
            key_columns=entity.key_columns(multi_tenant),
        ))
    statements.append(render_sql(f'{TEMPLATE_DIR}/create_sync_log.sql.j2',
                                 schema=schema,
                                 multi_tenant=multi_tenant))
    return statements


def ensure_destination(
    connection: StoreConnection,
    schema: str = 'analytics',
    multi_tenant: bool = True,
    entities: Optional[Sequence[EntityConfig]] = None,
) -> int:
    """
    Create missing destination objects in one transaction.

    Returns:
        Number of statements executed

    Raises:
        StoreError: If any statement fails (nothing is created)
    """
    statements = destination_ddl(schema, multi_tenant, entities)
    with store_cursor(connection, as_dict=False) as cursor:
        for sql in statements:
            run(cursor, sql)

    logger.info(f"Destination objects ensured in {connection.database}.{schema}")
    return len(statements)
