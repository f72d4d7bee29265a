"""
Sync Configuration

All settings are read from the environment once, at startup, into a frozen
SyncSettings object. Components receive already-validated values and never
re-read os.environ.

Multi-tenant mode (default):
    BC_CLIENT_SECRET, CONTROL_DB_CONNECTION_STRING, SQL_USER, SQL_PASSWORD

Single-tenant mode (SYNC_TENANT_MODE=single):
    BC_CLIENT_SECRET, SQL_CONNECTION_STRING,
    BC_TENANT_ID, BC_CLIENT_ID, BC_COMPANY_ID (+ optional BC_ENVIRONMENT_NAME)
"""
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional

from ledgersync.errors import ConfigError

__all__ = [
    'TenantMode',
    'FailureStrategy',
    'StoreConnection',
    'SyncSettings',
    'parse_connection_string',
]


DEFAULT_API_BASE_URL = 'https://api.businesscentral.dynamics.com/v2.0'
DEFAULT_API_PATH = 'api/sestad/analytics/v1.0'
DEFAULT_AUTH_HOST = 'login.microsoftonline.com'
DEFAULT_TOKEN_SCOPE = 'https://api.businesscentral.dynamics.com/.default'
DEFAULT_MAX_PAGES = 10000


class TenantMode(Enum):
    """Where scopes come from and how sync state is keyed."""
    MULTI = "multi"
    SINGLE = "single"


class FailureStrategy(Enum):
    """
    What an entity failure does to the rest of its scope.

    FAIL_ISOLATED: Record the failure, keep syncing the remaining entities
    FAIL_FAST: Record the failure, abort the scope (mark it Failed)
    """
    FAIL_ISOLATED = "fail_isolated"
    FAIL_FAST = "fail_fast"


@dataclass(frozen=True)
class StoreConnection:
    """
    Immutable SQL Server connection descriptor.

    Built once per scope and passed to the loader / watermark functions.
    """
    server: str
    database: str
    user: str
    password: str
    port: int = 1433
    login_timeout: int = 30
    timeout: int = 300

    def __repr__(self) -> str:
        """Safe representation without password"""
        return (f"StoreConnection(server={self.server}, port={self.port}, "
                f"database={self.database}, user={self.user})")


# ADO.NET keyword aliases -> descriptor field
_CONNECTION_KEYS = {
    'server': 'server',
    'data source': 'server',
    'address': 'server',
    'addr': 'server',
    'database': 'database',
    'initial catalog': 'database',
    'user id': 'user',
    'uid': 'user',
    'user': 'user',
    'password': 'password',
    'pwd': 'password',
    'connect timeout': 'login_timeout',
    'connection timeout': 'login_timeout',
}


def parse_connection_string(value: str, default_port: int = 1433) -> StoreConnection:
    """
    Parse an ADO.NET style SQL Server connection string.

    Args:
        value: e.g. 'Server=tcp:host,1433;Database=db;User Id=u;Password=p;'
        default_port: Port used when the server part carries none

    Returns:
        StoreConnection descriptor

    Raises:
        ConfigError: If server, database, user or password is missing

    Example:
        >>> parse_connection_string('Server=sql1;Database=dw;User Id=sync;Password=x')
        StoreConnection(server=sql1, port=1433, database=dw, user=sync)
    """
    fields: Dict[str, str] = {}
    for part in value.split(';'):
        if '=' not in part:
            continue
        key, _, raw = part.partition('=')
        target = _CONNECTION_KEYS.get(key.strip().lower())
        if target:
            fields[target] = raw.strip()

    missing = [k for k in ('server', 'database', 'user', 'password') if not fields.get(k)]
    if missing:
        raise ConfigError(f"Connection string is missing: {', '.join(missing)}")

    server = fields['server']
    if server.lower().startswith('tcp:'):
        server = server[4:]

    port = default_port
    if ',' in server:
        server, _, port_text = server.partition(',')
        try:
            port = int(port_text)
        except ValueError:
            raise ConfigError(f"Invalid port in connection string: {port_text!r}")

    login_timeout = 30
    if fields.get('login_timeout'):
        try:
            login_timeout = int(fields['login_timeout'])
        except ValueError:
            raise ConfigError(f"Invalid connect timeout: {fields['login_timeout']!r}")

    return StoreConnection(
        server=server,
        database=fields['database'],
        user=fields['user'],
        password=fields['password'],
        port=port,
        login_timeout=login_timeout,
    )


@dataclass(frozen=True)
class SyncSettings:
    """
    Validated engine configuration.

    Attributes:
        tenant_mode: MULTI (control registry) or SINGLE (one configured scope)
        failure_strategy: FAIL_ISOLATED or FAIL_FAST
        client_secret: OAuth client secret shared by all application clients
        control_connection: Control registry descriptor (multi-tenant only)
        destination_connection: Destination descriptor (single-tenant only)
        sql_user / sql_password: Shared destination credentials (multi-tenant)
        bc_tenant_id / bc_client_id / bc_company_id / bc_environment_name /
        bc_company_name: Source identifiers (single-tenant only)
    """
    tenant_mode: TenantMode
    failure_strategy: FailureStrategy
    client_secret: str
    control_connection: Optional[StoreConnection] = None
    destination_connection: Optional[StoreConnection] = None
    sql_user: Optional[str] = None
    sql_password: Optional[str] = None
    sql_port: int = 1433
    bc_tenant_id: Optional[str] = None
    bc_client_id: Optional[str] = None
    bc_company_id: Optional[str] = None
    bc_environment_name: str = 'Production'
    bc_company_name: str = ''
    api_base_url: str = DEFAULT_API_BASE_URL
    api_path: str = DEFAULT_API_PATH
    auth_host: str = DEFAULT_AUTH_HOST
    token_scope: str = DEFAULT_TOKEN_SCOPE
    destination_schema: str = 'analytics'
    control_schema: str = 'dbo'
    http_timeout: int = 60
    max_pages: int = DEFAULT_MAX_PAGES
    batch_chunk_size: int = 1000

    def __repr__(self) -> str:
        """Safe representation without secrets"""
        return (f"SyncSettings(tenant_mode={self.tenant_mode.value}, "
                f"failure_strategy={self.failure_strategy.value}, "
                f"destination_schema={self.destination_schema})")

    @property
    def is_multi_tenant(self) -> bool:
        return self.tenant_mode == TenantMode.MULTI

    def destination_for(self, server: str, database: str) -> StoreConnection:
        """
        Build the destination descriptor for one scope row.

        Raises:
            ConfigError: If shared destination credentials are not configured
        """
        if not self.sql_user or not self.sql_password:
            raise ConfigError("SQL_USER and SQL_PASSWORD are required for per-scope destinations")
        return StoreConnection(
            server=server,
            database=database,
            user=self.sql_user,
            password=self.sql_password,
            port=self.sql_port,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'SyncSettings':
        """
        Load and validate settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            SyncSettings

        Raises:
            ConfigError: Listing every missing required variable, or naming
                the first invalid value
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            value = env.get(name)
            if value is None or not value.strip():
                return default
            return value.strip()

        def get_int(name: str, default: int) -> int:
            value = get(name)
            if value is None:
                return default
            try:
                parsed = int(value)
            except ValueError:
                raise ConfigError(f"{name} must be an integer, got {value!r}")
            if parsed <= 0:
                raise ConfigError(f"{name} must be positive, got {parsed}")
            return parsed

        mode_text = get('SYNC_TENANT_MODE', TenantMode.MULTI.value).lower()
        try:
            tenant_mode = TenantMode(mode_text)
        except ValueError:
            raise ConfigError(
                f"SYNC_TENANT_MODE must be one of "
                f"{', '.join(m.value for m in TenantMode)}, got {mode_text!r}"
            )

        default_strategy = (FailureStrategy.FAIL_ISOLATED if tenant_mode == TenantMode.MULTI
                            else FailureStrategy.FAIL_FAST)
        strategy_text = get('SYNC_FAILURE_STRATEGY', default_strategy.value).lower()
        try:
            failure_strategy = FailureStrategy(strategy_text)
        except ValueError:
            raise ConfigError(
                f"SYNC_FAILURE_STRATEGY must be one of "
                f"{', '.join(s.value for s in FailureStrategy)}, got {strategy_text!r}"
            )

        required: List[str] = ['BC_CLIENT_SECRET']
        if tenant_mode == TenantMode.MULTI:
            required += ['CONTROL_DB_CONNECTION_STRING', 'SQL_USER', 'SQL_PASSWORD']
        else:
            required += ['SQL_CONNECTION_STRING', 'BC_TENANT_ID', 'BC_CLIENT_ID', 'BC_COMPANY_ID']

        missing = [name for name in required if get(name) is None]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

        sql_port = get_int('SQL_PORT', 1433)

        control_connection = None
        destination_connection = None
        if tenant_mode == TenantMode.MULTI:
            control_connection = parse_connection_string(get('CONTROL_DB_CONNECTION_STRING'))
        else:
            destination_connection = parse_connection_string(
                get('SQL_CONNECTION_STRING'), default_port=sql_port
            )

        return cls(
            tenant_mode=tenant_mode,
            failure_strategy=failure_strategy,
            client_secret=get('BC_CLIENT_SECRET'),
            control_connection=control_connection,
            destination_connection=destination_connection,
            sql_user=get('SQL_USER'),
            sql_password=get('SQL_PASSWORD'),
            sql_port=sql_port,
            bc_tenant_id=get('BC_TENANT_ID'),
            bc_client_id=get('BC_CLIENT_ID'),
            bc_company_id=get('BC_COMPANY_ID'),
            bc_environment_name=get('BC_ENVIRONMENT_NAME', 'Production'),
            bc_company_name=get('BC_COMPANY_NAME', ''),
            api_base_url=get('BC_API_BASE_URL', DEFAULT_API_BASE_URL).rstrip('/'),
            api_path=get('BC_API_PATH', DEFAULT_API_PATH).strip('/'),
            auth_host=get('BC_AUTH_HOST', DEFAULT_AUTH_HOST),
            token_scope=get('BC_TOKEN_SCOPE', DEFAULT_TOKEN_SCOPE),
            destination_schema=get('SYNC_DESTINATION_SCHEMA', 'analytics'),
            control_schema=get('SYNC_CONTROL_SCHEMA', 'dbo'),
            http_timeout=get_int('SYNC_HTTP_TIMEOUT', 60),
            max_pages=get_int('SYNC_MAX_PAGES', DEFAULT_MAX_PAGES),
            batch_chunk_size=get_int('SYNC_BATCH_CHUNK_SIZE', 1000),
        )
