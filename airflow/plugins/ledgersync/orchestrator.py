"""
Sync orchestration across scopes.

A run walks every scope sequentially and, inside a scope, every selected
entity in order (dim_Account, fact_GL, dim_Dimension, fact_Budget). Each
scope moves NotStarted -> InProgress -> Completed | Failed exactly once per
run; nothing is retried within a run.

Failure strategies:
    FAIL_ISOLATED  an entity failure is recorded and the scope carries on;
                   the scope still completes with the partial total
    FAIL_FAST      the first entity failure aborts the scope, which is
                   marked Failed; the next scope still runs

Usage:
    from ledgersync.orchestrator import run_sync

    summary = run_sync()                                  # settings from env
    summary = run_sync(full_refresh=True, entities=['fact_GL'])
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

import requests

from ledgersync.api_client import PagedFetcher, create_session
from ledgersync.config import FailureStrategy, SyncSettings
from ledgersync.entities import EntityConfig, select_entities
from ledgersync.errors import SyncError
from ledgersync.ingestion import EntitySyncResult, sync_entity
from ledgersync.loader import BulkUpsertLoader
from ledgersync.sync_metadata import STATUS_FAILED, STATUS_SUCCESS
from ledgersync.tenants import (
    TenantDirectory,
    TenantEnvironment,
    resolve_destination,
    single_tenant_scope,
)
from ledgersync.tokens import TokenCache
from ledgersync.utils import utcnow

logger = logging.getLogger(__name__)

SCOPE_NOT_STARTED = 'NotStarted'
SCOPE_IN_PROGRESS = 'InProgress'
SCOPE_COMPLETED = 'Completed'
SCOPE_FAILED = 'Failed'


@dataclass
class ScopeResult:
    scope: TenantEnvironment
    state: str = SCOPE_NOT_STARTED
    entities: List[EntitySyncResult] = field(default_factory=list)
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def total_records(self) -> int:
        return sum(e.rows_synced for e in self.entities)

    @property
    def failed_entities(self) -> List[EntitySyncResult]:
        return [e for e in self.entities if not e.succeeded]

    @property
    def history_status(self) -> str:
        """Status written to SyncHistory."""
        return STATUS_SUCCESS if self.state == SCOPE_COMPLETED else STATUS_FAILED


@dataclass
class RunSummary:
    started_at: datetime
    finished_at: Optional[datetime] = None
    scopes: List[ScopeResult] = field(default_factory=list)

    @property
    def total_records(self) -> int:
        return sum(s.total_records for s in self.scopes)

    @property
    def failed_scopes(self) -> List[ScopeResult]:
        return [s for s in self.scopes if s.state == SCOPE_FAILED]

    @property
    def failed_entity_count(self) -> int:
        return sum(len(s.failed_entities) for s in self.scopes)

    @property
    def succeeded(self) -> bool:
        """True when every scope completed and every entity succeeded."""
        return not self.failed_scopes and self.failed_entity_count == 0


class SyncOrchestrator:
    """
    Runs the sync for every scope.

    All collaborators are created from settings unless injected. The token
    cache lives as long as the orchestrator and is shared by every scope.

    Args:
        settings: Validated engine settings
        token_cache: Shared TokenCache
        fetcher: PagedFetcher for the analytics API
        loader: BulkUpsertLoader for destination tables
        directory: TenantDirectory (multi-tenant mode only)
        session: requests.Session shared by token and API calls
    """

    def __init__(
        self,
        settings: SyncSettings,
        token_cache: Optional[TokenCache] = None,
        fetcher: Optional[PagedFetcher] = None,
        loader: Optional[BulkUpsertLoader] = None,
        directory: Optional[TenantDirectory] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings
        if session is None and (token_cache is None or fetcher is None):
            session = create_session()

        self.token_cache = token_cache or TokenCache(
            settings.client_secret,
            session=session,
            auth_host=settings.auth_host,
            scope=settings.token_scope,
            timeout=settings.http_timeout,
        )
        self.fetcher = fetcher or PagedFetcher(
            session=session,
            timeout=settings.http_timeout,
            max_pages=settings.max_pages,
        )
        self.loader = loader or BulkUpsertLoader(
            schema=settings.destination_schema,
            multi_tenant=settings.is_multi_tenant,
            chunk_size=settings.batch_chunk_size,
        )
        if directory is None and settings.is_multi_tenant:
            directory = TenantDirectory(settings)
        self.directory = directory

    @property
    def fail_fast(self) -> bool:
        return self.settings.failure_strategy == FailureStrategy.FAIL_FAST

    def get_scopes(self) -> List[TenantEnvironment]:
        if self.settings.is_multi_tenant:
            return self.directory.get_active_scopes()
        return [single_tenant_scope(self.settings)]

    def run(self, full_refresh: bool = False, entities: Optional[Iterable[str]] = None) -> RunSummary:
        """
        Sync every scope once.

        Args:
            full_refresh: Ignore stored watermarks
            entities: Destination tables to sync (None = all)

        Returns:
            RunSummary with per-scope, per-entity results

        Raises:
            ConfigError: If an entity name is unknown (before any scope runs)
            StoreError: If the control registry cannot be read
        """
        selected = select_entities(entities)
        summary = RunSummary(started_at=utcnow())

        scopes = self.get_scopes()
        logger.info(f"Sync run starting: {len(scopes)} scope(s), "
                    f"{len(selected)} entities, strategy={self.settings.failure_strategy.value}"
                    f"{', FULL REFRESH' if full_refresh else ''}")

        for scope in scopes:
            summary.scopes.append(self.sync_scope(scope, selected, full_refresh))

        summary.finished_at = utcnow()
        logger.info(f"Sync run finished: {summary.total_records} records, "
                    f"{len(summary.failed_scopes)} failed scope(s), "
                    f"{summary.failed_entity_count} failed entity sync(s)")
        return summary

    def sync_scope(
        self,
        scope: TenantEnvironment,
        entities: List[EntityConfig],
        full_refresh: bool = False,
    ) -> ScopeResult:
        """Sync one scope; never raises for sync failures."""
        result = ScopeResult(scope=scope, state=SCOPE_IN_PROGRESS)
        start_time = time.time()
        started_at = None
        history = self.settings.is_multi_tenant and self.directory is not None

        logger.info(f"Syncing scope {scope.label}")

        try:
            if history:
                started_at = self.directory.log_sync_start(scope.tenant_id, scope.environment_id)

            connection = resolve_destination(self.settings, scope)

            for entity in entities:
                entity_result = sync_entity(
                    settings=self.settings,
                    scope=scope,
                    connection=connection,
                    entity=entity,
                    token_cache=self.token_cache,
                    fetcher=self.fetcher,
                    loader=self.loader,
                    full_refresh=full_refresh,
                )
                result.entities.append(entity_result)
                if entity_result.exception is not None and self.fail_fast:
                    raise entity_result.exception

            result.state = SCOPE_COMPLETED

        except SyncError as e:
            result.state = SCOPE_FAILED
            result.error = str(e)
            logger.error(f"Scope {scope.label} failed after {result.total_records} records: {e}")
        except Exception as e:
            result.state = SCOPE_FAILED
            result.error = f"{type(e).__name__}: {e}"
            logger.exception(f"Scope {scope.label} failed with an unexpected error")

        result.duration_seconds = round(time.time() - start_time, 2)

        if started_at is not None:
            self._complete_history(scope, result, started_at)

        logger.info(f"Scope {scope.label} {result.state.lower()}: {result.total_records} records "
                    f"in {result.duration_seconds:.2f}s")
        return result

    def _complete_history(self, scope: TenantEnvironment, result: ScopeResult, started_at: datetime) -> None:
        try:
            self.directory.log_sync_complete(
                scope.tenant_id,
                scope.environment_id,
                result.total_records,
                result.history_status,
                error=result.error,
                started_at=started_at,
            )
        except SyncError as e:
            logger.error(f"Could not close SyncHistory row for {scope.label}: {e}")


def run_sync(
    settings: Optional[SyncSettings] = None,
    full_refresh: bool = False,
    entities: Optional[Iterable[str]] = None,
) -> RunSummary:
    """
    Load settings (from the environment unless given) and run one sync.

    Raises:
        ConfigError: If settings are missing/invalid or an entity is unknown
    """
    settings = settings or SyncSettings.from_env()
    logger.info(f"Loaded {settings!r}")
    return SyncOrchestrator(settings).run(full_refresh=full_refresh, entities=entities)
