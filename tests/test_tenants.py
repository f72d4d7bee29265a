from datetime import datetime
from unittest import mock
from uuid import UUID

import pytest
from freezegun import freeze_time

from conftest import (
    CLIENT_GUID,
    COMPANY_GUID,
    PRODUCTION_ENV_ID,
    REGISTRY_TENANT_ID,
    SANDBOX_ENV_ID,
    TENANT_GUID,
    make_scope,
    utc,
)
from ledgersync.errors import ConfigError
from ledgersync.tenants import (
    STATUS_IN_PROGRESS,
    TenantDirectory,
    TenantEnvironment,
    resolve_destination,
    single_tenant_scope,
)

REGISTRY_ROW = {
    "EnvironmentId": UUID(PRODUCTION_ENV_ID),
    "TenantId": UUID(REGISTRY_TENANT_ID),
    "DatabaseServer": "sql1.example.net",
    "DatabaseName": "tenant_a",
    "EnvironmentName": "Production",
    "BCTenantId": TENANT_GUID,
    "CompanyId": COMPANY_GUID,
    "CompanyName": None,
    "AzureADClientId": CLIENT_GUID,
}


@pytest.fixture
def store():
    with mock.patch("ledgersync.tenants.fetch_all") as fetch_all, \
            mock.patch("ledgersync.tenants.execute") as execute:
        execute.return_value = 1
        yield mock.Mock(fetch_all=fetch_all, execute=execute)


class TestTenantEnvironment:
    def test_from_row(self):
        scope = TenantEnvironment.from_row(REGISTRY_ROW)

        assert scope.tenant_id == REGISTRY_TENANT_ID
        assert scope.environment_id == PRODUCTION_ENV_ID
        assert scope.database_name == "tenant_a"
        assert scope.client_id == CLIENT_GUID
        assert scope.company_name == ""
        assert scope.label == f"Production/{COMPANY_GUID}"

    def test_is_immutable(self):
        scope = make_scope()
        with pytest.raises(AttributeError):
            scope.environment_name = "Sandbox"


class TestSingleTenantScope:
    def test_built_from_settings(self, single_settings):
        scope = single_tenant_scope(single_settings)

        assert scope.tenant_id is None
        assert scope.environment_id is None
        assert scope.environment_name == "Production"
        assert scope.client_id == CLIENT_GUID
        assert scope.company_id == COMPANY_GUID
        assert scope.database_name == "tenant_a"
        assert scope.label == "Production/CRONUS"

    def test_requires_destination(self, multi_settings):
        with pytest.raises(ConfigError, match="SQL_CONNECTION_STRING"):
            single_tenant_scope(multi_settings)


class TestResolveDestination:
    def test_multi_tenant_uses_registry_database(self, multi_settings):
        conn = resolve_destination(multi_settings, make_scope(database_name="tenant_b"))

        assert conn.database == "tenant_b"
        assert conn.server == "sql1.example.net"
        assert conn.user == "sync"

    def test_single_tenant_uses_connection_string(self, single_settings, destination_connection):
        scope = single_tenant_scope(single_settings)
        assert resolve_destination(single_settings, scope) == destination_connection


class TestTenantDirectory:
    def test_requires_control_connection(self, single_settings):
        with pytest.raises(ConfigError, match="CONTROL_DB_CONNECTION_STRING"):
            TenantDirectory(single_settings)

    def test_get_active_scopes(self, store, multi_settings, control_connection):
        store.fetch_all.return_value = [REGISTRY_ROW, {**REGISTRY_ROW, "EnvironmentId": UUID(SANDBOX_ENV_ID), "EnvironmentName": "Sandbox"}]

        scopes = TenantDirectory(multi_settings).get_active_scopes()

        assert [s.environment_name for s in scopes] == ["Production", "Sandbox"]
        conn, sql = store.fetch_all.call_args.args
        assert conn is control_connection
        assert "IsActive = 1" in sql

    def test_no_active_scopes(self, store, multi_settings):
        store.fetch_all.return_value = []
        assert TenantDirectory(multi_settings).get_active_scopes() == []

    @freeze_time("2025-01-15 10:00:00.654321")
    def test_log_sync_start_returns_whole_second_instant(self, store, multi_settings):
        started_at = TenantDirectory(multi_settings).log_sync_start(REGISTRY_TENANT_ID, PRODUCTION_ENV_ID)

        assert started_at == utc(2025, 1, 15, 10, 0, 0)
        sql, params = store.execute.call_args.args[1:]
        assert "INSERT INTO [dbo].[SyncHistory]" in sql
        assert params == {
            "tenant_id": REGISTRY_TENANT_ID,
            "environment_id": PRODUCTION_ENV_ID,
            "started_at": datetime(2025, 1, 15, 10, 0, 0),
            "status": STATUS_IN_PROGRESS,
        }

    @freeze_time("2025-01-15 10:05:00")
    def test_log_sync_complete_matches_start(self, store, multi_settings):
        closed = TenantDirectory(multi_settings).log_sync_complete(
            REGISTRY_TENANT_ID, PRODUCTION_ENV_ID, 137, "Success", started_at=utc(2025, 1, 15, 10, 0, 0)
        )

        assert closed == 1
        sql, params = store.execute.call_args.args[1:]
        assert "SyncStarted = %(started_at)s" in sql
        assert params["started_at"] == datetime(2025, 1, 15, 10, 0, 0)
        assert params["completed_at"] == datetime(2025, 1, 15, 10, 5, 0)
        assert params["records_synced"] == 137
        assert params["status"] == "Success"
        assert params["error"] is None

    def test_log_sync_complete_without_start_closes_latest_open(self, store, multi_settings):
        TenantDirectory(multi_settings).log_sync_complete(REGISTRY_TENANT_ID, PRODUCTION_ENV_ID, 0, "Failed", error="boom")

        sql, params = store.execute.call_args.args[1:]
        assert "SyncStarted = %(started_at)s" not in sql
        assert params["started_at"] is None
        assert params["error"] == "boom"

    def test_log_sync_complete_reports_unmatched(self, store, multi_settings):
        store.execute.return_value = 0
        assert TenantDirectory(multi_settings).log_sync_complete(REGISTRY_TENANT_ID, PRODUCTION_ENV_ID, 0, "Success") == 0
