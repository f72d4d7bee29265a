"""
SQL Server Connection Utilities

Destination databases (one per tenant) and the control registry are reached
with pymssql. Every helper takes an explicit StoreConnection descriptor;
nothing here reads configuration.

A cursor context manager is the unit of work: one connection, one
transaction, commit on success, rollback on any error.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

import pymssql

from ledgersync.config import StoreConnection
from ledgersync.errors import StoreError

logger = logging.getLogger(__name__)

Params = Optional[Union[Sequence[Any], Mapping[str, Any]]]


def get_store_connection(descriptor: StoreConnection) -> pymssql.Connection:
    """
    Open a connection described by a StoreConnection.

    Raises:
        StoreError: If the server cannot be reached or login fails
    """
    try:
        return pymssql.connect(
            server=descriptor.server,
            port=descriptor.port,
            user=descriptor.user,
            password=descriptor.password,
            database=descriptor.database,
            login_timeout=descriptor.login_timeout,
            timeout=descriptor.timeout,
            autocommit=False,
        )
    except pymssql.Error as e:
        raise StoreError(
            f"Could not connect to {descriptor.server}/{descriptor.database}: {e}"
        ) from e


@contextmanager
def store_cursor(descriptor: StoreConnection, as_dict: bool = True) -> Iterator[Any]:
    """
    Context manager for one transactional unit of work.

    Args:
        descriptor: Connection to open
        as_dict: If True, rows are returned as dictionaries

    Yields:
        pymssql.Cursor

    Raises:
        StoreError: Wrapping any pymssql error raised inside the block
            (the transaction is rolled back first)

    Example:
        >>> with store_cursor(conn) as cursor:
        ...     cursor.execute("SELECT TOP 1 * FROM [analytics].[SyncLog]")
        ...     row = cursor.fetchone()
    """
    conn = get_store_connection(descriptor)
    cursor = None
    try:
        cursor = conn.cursor(as_dict=as_dict)
        yield cursor
        conn.commit()
    except pymssql.Error as e:
        _rollback_quietly(conn)
        raise StoreError(f"{descriptor.database}: {e}") from e
    except Exception:
        _rollback_quietly(conn)
        raise
    finally:
        if cursor is not None:
            cursor.close()
        conn.close()


def _rollback_quietly(conn: pymssql.Connection) -> None:
    """Roll back; a broken connection cannot be rolled back and that's fine."""
    try:
        conn.rollback()
    except pymssql.Error as e:
        logger.warning(f"Rollback failed (connection already broken?): {e}")


def run(cursor: Any, statement: str, params: Params = None) -> None:
    """Execute on an open cursor, passing params only when there are any."""
    if params:
        cursor.execute(statement, params)
    else:
        cursor.execute(statement)


def fetch_all(descriptor: StoreConnection, query: str, params: Params = None) -> List[Dict[str, Any]]:
    """Execute a query and return every row as a dict."""
    with store_cursor(descriptor) as cursor:
        run(cursor, query, params)
        return cursor.fetchall()


def fetch_one(descriptor: StoreConnection, query: str, params: Params = None) -> Optional[Dict[str, Any]]:
    """Execute a query and return the first row (or None)."""
    with store_cursor(descriptor) as cursor:
        run(cursor, query, params)
        return cursor.fetchone()


def execute(descriptor: StoreConnection, statement: str, params: Params = None) -> int:
    """
    Execute a write statement in its own transaction.

    Returns:
        Number of rows affected
    """
    with store_cursor(descriptor, as_dict=False) as cursor:
        run(cursor, statement, params)
        return cursor.rowcount
