#!/usr/bin/env python3
"""
Destination Database Setup Script

Creates the analytics schema, the four destination tables and SyncLog in
every destination database the sync writes to. Safe to re-run: objects that
already exist are left untouched.

Run this once per new tenant database, before its first sync.

Usage (with the package installed, pip install -e .):
    # Multi-tenant: every active tenant database in the control registry
    export CONTROL_DB_CONNECTION_STRING="Server=...;Database=...;User Id=...;Password=..."
    export SQL_USER="sync_user" SQL_PASSWORD="..." BC_CLIENT_SECRET="..."
    python3 scripts/setup_destination.py

    # Single-tenant
    export SYNC_TENANT_MODE=single SQL_CONNECTION_STRING="..." ...
    python3 scripts/setup_destination.py
"""
import logging
import sys

from ledgersync.config import SyncSettings
from ledgersync.errors import SyncError
from ledgersync.schema import ensure_destination
from ledgersync.tenants import (
    TenantDirectory,
    resolve_destination,
    single_tenant_scope,
)


def setup_destinations() -> int:
    """Create destination objects for every scope. Returns the number of failures."""
    settings = SyncSettings.from_env()

    if settings.is_multi_tenant:
        scopes = TenantDirectory(settings).get_active_scopes()
    else:
        scopes = [single_tenant_scope(settings)]

    # Several environments can share one database
    connections = {}
    for scope in scopes:
        connection = resolve_destination(settings, scope)
        connections[(connection.server, connection.database)] = connection

    print(f"Mode: {settings.tenant_mode.value}")
    print(f"Schema: {settings.destination_schema}")
    print(f"Destination databases: {len(connections)}")
    print()

    failures = 0
    for connection in connections.values():
        print(f"Setting up {connection.server}/{connection.database}...")
        try:
            count = ensure_destination(
                connection,
                schema=settings.destination_schema,
                multi_tenant=settings.is_multi_tenant,
            )
            print(f"  ✅ {count} statements applied")
        except SyncError as e:
            failures += 1
            print(f"  ❌ {e}")

    return failures


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    try:
        failed = setup_destinations()
    except SyncError as e:
        print(f"Error: {e}")
        sys.exit(1)
    sys.exit(1 if failed else 0)
