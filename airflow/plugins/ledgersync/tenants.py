"""
Tenant directory: which scopes to sync and the per-run history.

Multi-tenant runs read active (tenant, environment, company) scopes from the
control registry and record one SyncHistory row per scope per run.
Single-tenant runs build their only scope from configuration and keep no
history.

Control registry tables (schema SYNC_CONTROL_SCHEMA, default dbo):
    Tenants             TenantId, DatabaseServer, DatabaseName, IsActive
    TenantEnvironments  EnvironmentId, TenantId, EnvironmentName, BCTenantId,
                        CompanyId, CompanyName, AzureADClientId, IsActive
    SyncHistory         TenantId, EnvironmentId, SyncStarted, SyncCompleted,
                        RecordsSynced, Status, ErrorMessage
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ledgersync.config import StoreConnection, SyncSettings
from ledgersync.errors import ConfigError
from ledgersync.sql_templates import render_sql
from ledgersync.store import execute, fetch_all
from ledgersync.utils import to_sql_datetime, utcnow

logger = logging.getLogger(__name__)

TEMPLATE_DIR = 'sqlserver/control'

STATUS_IN_PROGRESS = 'InProgress'


@dataclass(frozen=True)
class TenantEnvironment:
    """One synced scope: a source company and the database it lands in.

    tenant_id / environment_id are the control registry GUID keys (None in
    single-tenant mode).
    """
    tenant_id: Optional[str]
    environment_id: Optional[str]
    environment_name: str
    database_server: str
    database_name: str
    bc_tenant_id: str
    company_id: str
    company_name: str
    client_id: str

    @property
    def label(self) -> str:
        """Short name for log lines."""
        name = self.company_name or self.company_id
        return f"{self.environment_name}/{name}"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'TenantEnvironment':
        return cls(
            tenant_id=str(row['TenantId']),
            environment_id=str(row['EnvironmentId']),
            environment_name=row['EnvironmentName'],
            database_server=row['DatabaseServer'],
            database_name=row['DatabaseName'],
            bc_tenant_id=str(row['BCTenantId']),
            company_id=str(row['CompanyId']),
            company_name=row.get('CompanyName') or '',
            client_id=str(row['AzureADClientId']),
        )


def single_tenant_scope(settings: SyncSettings) -> TenantEnvironment:
    """
    The one scope of a single-tenant deployment, built from configuration.

    Raises:
        ConfigError: If the single-tenant settings are incomplete
    """
    if settings.destination_connection is None:
        raise ConfigError("SQL_CONNECTION_STRING is required in single-tenant mode")
    missing = [name for name, value in (('BC_TENANT_ID', settings.bc_tenant_id),
                                        ('BC_CLIENT_ID', settings.bc_client_id),
                                        ('BC_COMPANY_ID', settings.bc_company_id))
               if not value]
    if missing:
        raise ConfigError(f"Missing required settings: {', '.join(missing)}")

    return TenantEnvironment(
        tenant_id=None,
        environment_id=None,
        environment_name=settings.bc_environment_name,
        database_server=settings.destination_connection.server,
        database_name=settings.destination_connection.database,
        bc_tenant_id=settings.bc_tenant_id,
        company_id=settings.bc_company_id,
        company_name=settings.bc_company_name,
        client_id=settings.bc_client_id,
    )


def resolve_destination(settings: SyncSettings, scope: TenantEnvironment) -> StoreConnection:
    """
    Destination descriptor for a scope.

    Single-tenant scopes use the configured connection string as is;
    multi-tenant scopes combine the registry server/database with the shared
    SQL credentials.

    Raises:
        ConfigError: If the credentials needed for the scope are missing
    """
    if not settings.is_multi_tenant:
        if settings.destination_connection is None:
            raise ConfigError("SQL_CONNECTION_STRING is required in single-tenant mode")
        return settings.destination_connection
    return settings.destination_for(scope.database_server, scope.database_name)


class TenantDirectory:
    """
    Control registry access for multi-tenant runs.

    Scopes are read fresh on every call; nothing is cached across runs.
    """

    def __init__(self, settings: SyncSettings):
        if settings.control_connection is None:
            raise ConfigError("CONTROL_DB_CONNECTION_STRING is required in multi-tenant mode")
        self.settings = settings
        self.connection = settings.control_connection
        self.schema = settings.control_schema

    def get_active_scopes(self) -> List[TenantEnvironment]:
        """
        Scopes whose tenant and environment are both active.

        Raises:
            StoreError: If the control registry cannot be read
        """
        sql = render_sql(f'{TEMPLATE_DIR}/active_scopes.sql.j2', schema=self.schema)
        rows = fetch_all(self.connection, sql)
        scopes = [TenantEnvironment.from_row(row) for row in rows]
        logger.info(f"Found {len(scopes)} active tenant environment(s)")
        return scopes

    def log_sync_start(self, tenant_id: str, environment_id: str) -> datetime:
        """
        Open a SyncHistory row for the scope.

        Returns:
            The start instant (whole seconds, aware UTC); pass it back to
            log_sync_complete to close exactly this row
        """
        started_at = utcnow().replace(microsecond=0)
        sql = render_sql(f'{TEMPLATE_DIR}/sync_start.sql.j2', schema=self.schema)
        execute(self.connection, sql, {
            'tenant_id': tenant_id,
            'environment_id': environment_id,
            'started_at': to_sql_datetime(started_at),
            'status': STATUS_IN_PROGRESS,
        })
        return started_at

    def log_sync_complete(
        self,
        tenant_id: str,
        environment_id: str,
        total_records: int,
        status: str,
        error: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> int:
        """
        Close the most recent open SyncHistory row for the scope.

        Args:
            started_at: Start instant returned by log_sync_start; when given,
                only the row opened at that instant is closed

        Returns:
            Number of rows closed (0 when no open row matched)
        """
        sql = render_sql(f'{TEMPLATE_DIR}/sync_complete.sql.j2',
                         schema=self.schema,
                         match_started_at=started_at is not None)
        closed = execute(self.connection, sql, {
            'tenant_id': tenant_id,
            'environment_id': environment_id,
            'started_at': to_sql_datetime(started_at),
            'completed_at': to_sql_datetime(utcnow()),
            'records_synced': total_records,
            'status': status,
            'error': error,
        })
        if closed == 0:
            logger.warning(f"No open SyncHistory row for tenant {tenant_id}, "
                           f"environment {environment_id}")
        return closed
