"""
Ledger Sync: incremental replication of ledger records from the analytics
API into SQL Server.

Usage in DAGs:
    from ledgersync import run_sync, SyncSettings
    from ledgersync.verification import summarize_run
"""
from ledgersync.config import (
    FailureStrategy,
    StoreConnection,
    SyncSettings,
    TenantMode,
)
from ledgersync.errors import (
    ApiError,
    AuthError,
    ConfigError,
    StoreError,
    SyncError,
)
from ledgersync.orchestrator import (
    RunSummary,
    ScopeResult,
    SyncOrchestrator,
    run_sync,
)
