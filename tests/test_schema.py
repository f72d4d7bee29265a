from unittest import mock

import pymssql
import pytest

from ledgersync.entities import ALL_ENTITIES, GL_ACCOUNTS
from ledgersync.errors import StoreError
from ledgersync.schema import destination_ddl, ensure_destination


@pytest.fixture
def fake_conn():
    conn = mock.MagicMock(name="connection")
    with mock.patch("ledgersync.store.pymssql.connect", return_value=conn):
        yield conn


class TestDestinationDdl:
    def test_statement_order(self):
        statements = destination_ddl("analytics", multi_tenant=True)

        assert len(statements) == len(ALL_ENTITIES) + 2
        assert "CREATE SCHEMA [analytics]" in statements[0]
        assert "CREATE TABLE [analytics].[dim_Account]" in statements[1]
        assert "CREATE TABLE [analytics].[fact_Budget]" in statements[-2]
        assert "CREATE TABLE [analytics].[SyncLog]" in statements[-1]

    def test_multi_tenant_table(self):
        sql = destination_ddl("analytics", multi_tenant=True, entities=[GL_ACCOUNTS])[1]

        assert "[SystemId] UNIQUEIDENTIFIER NOT NULL," in sql
        assert "[Name] NVARCHAR(250) NULL," in sql
        assert "[Blocked] BIT NULL," in sql
        assert "[LastModifiedDateTime] DATETIME2 NULL," in sql
        assert "[EnvironmentName] NVARCHAR(100) NOT NULL," in sql
        assert "[CompanyId] UNIQUEIDENTIFIER NOT NULL," in sql
        assert "CONSTRAINT [PK_dim_Account] PRIMARY KEY ([SystemId], [EnvironmentName], [CompanyId])" in sql

    def test_single_tenant_table(self):
        statements = destination_ddl("analytics", multi_tenant=False, entities=[GL_ACCOUNTS])

        assert "EnvironmentName" not in statements[1]
        assert "PRIMARY KEY ([SystemId])" in statements[1]
        assert "EnvironmentName" not in statements[-1]
        assert "PRIMARY KEY ([TableName])" in statements[-1]

    def test_multi_tenant_sync_log(self):
        sql = destination_ddl("analytics", multi_tenant=True, entities=[])[-1]

        assert "[EnvironmentName] NVARCHAR(100) NOT NULL," in sql
        assert "PRIMARY KEY ([EnvironmentName], [TableName])" in sql

    def test_rejects_unsafe_schema(self):
        with pytest.raises(ValueError):
            destination_ddl("analytics]; DROP TABLE x;--", multi_tenant=True)


class TestEnsureDestination:
    def test_runs_all_statements_in_one_transaction(self, fake_conn, destination_connection):
        count = ensure_destination(destination_connection, multi_tenant=True)

        assert count == len(ALL_ENTITIES) + 2
        assert fake_conn.cursor.return_value.execute.call_count == count
        fake_conn.commit.assert_called_once()

    def test_failure_rolls_back(self, fake_conn, destination_connection):
        fake_conn.cursor.return_value.execute.side_effect = pymssql.OperationalError("permission denied")

        with pytest.raises(StoreError, match="permission denied"):
            ensure_destination(destination_connection)

        fake_conn.rollback.assert_called_once()
        fake_conn.commit.assert_not_called()
