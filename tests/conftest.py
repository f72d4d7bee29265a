from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from ledgersync.config import FailureStrategy, StoreConnection, SyncSettings, TenantMode
from ledgersync.entities.base import EntityConfig
from ledgersync.errors import ApiError
from ledgersync.loader import build_frame
from ledgersync.tenants import TenantEnvironment
from ledgersync.utils import EPOCH, parse_api_datetime

TENANT_GUID = "11111111-1111-1111-1111-111111111111"
CLIENT_GUID = "22222222-2222-2222-2222-222222222222"
COMPANY_GUID = "33333333-3333-3333-3333-333333333333"
REGISTRY_TENANT_ID = "44444444-4444-4444-4444-444444444444"
PRODUCTION_ENV_ID = "55555555-5555-5555-5555-555555555555"
SANDBOX_ENV_ID = "66666666-6666-6666-6666-666666666666"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.%f0Z")


def account_payload(system_id: str, modified: datetime, **overrides) -> Dict[str, Any]:
    payload = {
        "systemId": system_id,
        "no": "1000",
        "name": "Cash",
        "accountType": "Posting",
        "accountCategory": "Assets",
        "accountSubcategory": "Cash",
        "accountSubcategoryEntryNo": 3,
        "incomeBalance": "Balance_Sheet",
        "indentation": 1,
        "blocked": False,
        "lastModifiedDateTime": iso(modified),
    }
    payload.update(overrides)
    return payload


def gl_entry_payload(system_id: str, modified: datetime, entry_no: int = 1, **overrides) -> Dict[str, Any]:
    payload = {
        "systemId": system_id,
        "entryNo": entry_no,
        "glAccountNo": "1000",
        "postingDate": "2025-01-15",
        "documentType": "Invoice",
        "documentNo": f"INV-{entry_no:05d}",
        "description": "Sale",
        "amount": "125.50",
        "debitAmount": "125.50",
        "creditAmount": "0",
        "dimensionSetId": 7,
        "lastModifiedDateTime": iso(modified),
    }
    payload.update(overrides)
    return payload


def dimension_payload(system_id: str, modified: datetime, **overrides) -> Dict[str, Any]:
    payload = {
        "systemId": system_id,
        "dimensionSetId": 7,
        "dimensionCode": "DEPT",
        "dimensionValueCode": "SALES",
        "dimensionValueName": "Sales",
        "lastModifiedDateTime": iso(modified),
    }
    payload.update(overrides)
    return payload


def budget_payload(system_id: str, modified: datetime, entry_no: int = 1, **overrides) -> Dict[str, Any]:
    payload = {
        "systemId": system_id,
        "entryNo": entry_no,
        "budgetName": "2025",
        "glAccountNo": "1000",
        "date": "2025-01-01",
        "amount": "1000",
        "description": "Budget",
        "dimensionSetId": 7,
        "lastModifiedDateTime": iso(modified),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def control_connection() -> StoreConnection:
    return StoreConnection(server="control.example.net", database="control", user="ctl", password="ctl-pass")


@pytest.fixture
def destination_connection() -> StoreConnection:
    return StoreConnection(server="sql1.example.net", database="tenant_a", user="sync", password="sync-pass")


@pytest.fixture
def multi_settings(control_connection) -> SyncSettings:
    return SyncSettings(
        tenant_mode=TenantMode.MULTI,
        failure_strategy=FailureStrategy.FAIL_ISOLATED,
        client_secret="client-secret",
        control_connection=control_connection,
        sql_user="sync",
        sql_password="sync-pass",
    )


@pytest.fixture
def single_settings(destination_connection) -> SyncSettings:
    return SyncSettings(
        tenant_mode=TenantMode.SINGLE,
        failure_strategy=FailureStrategy.FAIL_FAST,
        client_secret="client-secret",
        destination_connection=destination_connection,
        bc_tenant_id=TENANT_GUID,
        bc_client_id=CLIENT_GUID,
        bc_company_id=COMPANY_GUID,
        bc_environment_name="Production",
        bc_company_name="CRONUS",
    )


def make_scope(
    tenant_id: str = REGISTRY_TENANT_ID,
    environment_id: str = PRODUCTION_ENV_ID,
    environment_name: str = "Production",
    database_name: str = "tenant_a",
    company_name: str = "CRONUS",
) -> TenantEnvironment:
    return TenantEnvironment(
        tenant_id=tenant_id,
        environment_id=environment_id,
        environment_name=environment_name,
        database_server="sql1.example.net",
        database_name=database_name,
        bc_tenant_id=TENANT_GUID,
        company_id=COMPANY_GUID,
        company_name=company_name,
        client_id=CLIENT_GUID,
    )


@pytest.fixture
def scope() -> TenantEnvironment:
    return make_scope()


class MemorySyncLog:
    """SyncLog kept in a dict; same signatures as ledgersync.sync_metadata."""

    def __init__(self):
        self.rows: Dict[Tuple[Optional[str], str], Dict[str, Any]] = {}
        self.writes: List[Dict[str, Any]] = []

    def get_last_sync(self, connection, table_name, environment_name=None, schema="analytics"):
        row = self.rows.get((environment_name, table_name))
        if not row or row["LastSyncDateTime"] is None:
            return EPOCH
        return row["LastSyncDateTime"]

    def update_sync_log(self, connection, table_name, rows_synced, status, error=None,
                        environment_name=None, last_sync_value=None, schema="analytics"):
        key = (environment_name, table_name)
        previous = self.rows.get(key, {})
        self.rows[key] = {
            "LastSyncDateTime": last_sync_value if last_sync_value is not None else previous.get("LastSyncDateTime"),
            "RowsSynced": rows_synced,
            "SyncStatus": status,
            "LastError": error,
        }
        self.writes.append({"table": table_name, "environment": environment_name, **self.rows[key]})

    def row(self, table_name, environment_name="Production"):
        return self.rows[(environment_name, table_name)]


class MemoryLoader:
    """Destination tables kept in dicts keyed by the merge key."""

    def __init__(self, multi_tenant: bool = True, fail_on: Optional[str] = None, error: Exception = None):
        self.multi_tenant = multi_tenant
        self.fail_on = fail_on
        self.error = error
        self.tables: Dict[str, Dict[tuple, Dict[str, Any]]] = {}
        self.calls: List[str] = []
        self.inserted = 0
        self.updated = 0

    def upsert(self, connection, scope, entity: EntityConfig, records) -> int:
        self.calls.append(entity.target_table)
        if not records:
            return 0
        if entity.target_table == self.fail_on:
            raise self.error

        df = build_frame(entity, records, scope, self.multi_tenant)
        table = self.tables.setdefault(entity.target_table, {})
        keys = entity.key_columns(self.multi_tenant)
        for row in df.to_dict("records"):
            key = tuple(row[k] for k in keys)
            if key in table:
                self.updated += 1
            else:
                self.inserted += 1
            table[key] = row
        return len(df)


class MemoryFetcher:
    """Serves payloads per endpoint, filtered like the API's $filter."""

    def __init__(self, source: Optional[Dict[str, List[Dict[str, Any]]]] = None,
                 errors: Optional[Dict[str, Exception]] = None):
        self.source = source or {}
        self.errors = errors or {}
        self.calls: List[Tuple[str, datetime]] = []

    def fetch_all(self, token, api_root, endpoint, record_type, watermark=None):
        self.calls.append((endpoint, watermark))
        if endpoint in self.errors:
            raise self.errors[endpoint]
        payloads = self.source.get(endpoint, [])
        if watermark is not None and watermark > EPOCH:
            cutoff = watermark.replace(microsecond=0)
            payloads = [p for p in payloads if parse_api_datetime(p["lastModifiedDateTime"]) > cutoff]
        return [record_type.from_api(p) for p in payloads]


class StaticTokenCache:
    def __init__(self):
        self.requests: List[Tuple[str, str]] = []
        self.invalidated: List[str] = []

    def get_token(self, directory_tenant_id, client_id):
        self.requests.append((directory_tenant_id, client_id))
        return "test-token"

    def invalidate(self, client_id=None):
        self.invalidated.append(client_id)


class MemoryDirectory:
    def __init__(self, scopes: List[TenantEnvironment]):
        self.scopes = scopes
        self.started: List[Tuple[str, str]] = []
        self.completed: List[Dict[str, Any]] = []

    def get_active_scopes(self):
        return list(self.scopes)

    def log_sync_start(self, tenant_id, environment_id):
        self.started.append((tenant_id, environment_id))
        return utc(2025, 1, 15, 10, 0, 0)

    def log_sync_complete(self, tenant_id, environment_id, total_records, status, error=None, started_at=None):
        self.completed.append({
            "tenant_id": tenant_id,
            "environment_id": environment_id,
            "total_records": total_records,
            "status": status,
            "error": error,
            "started_at": started_at,
        })
        return 1


@pytest.fixture
def sync_log(monkeypatch) -> MemorySyncLog:
    log = MemorySyncLog()
    monkeypatch.setattr("ledgersync.ingestion.get_last_sync", log.get_last_sync)
    monkeypatch.setattr("ledgersync.ingestion.update_sync_log", log.update_sync_log)
    return log


@pytest.fixture
def api_error() -> ApiError:
    return ApiError("GET glEntries failed", status=500, body="Internal Server Error")
