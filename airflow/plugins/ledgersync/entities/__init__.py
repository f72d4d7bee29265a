"""
Synced entity configurations.

The four record kinds replicated from the analytics API, in the order a
scope syncs them:
- ledger.py: GL accounts (dim_Account), GL entries (fact_GL)
- dimensions.py: Dimension set entries (dim_Dimension)
- budget.py: GL budget entries (fact_Budget)
"""
from typing import Iterable, List, Optional

from ledgersync.entities.base import (
    EntityConfig,
    LedgerRecord,
    TableClass,
    SCOPE_COLUMNS,
)
from ledgersync.entities.ledger import LEDGER_ENTITIES, GLAccount, GLEntry
from ledgersync.entities.dimensions import DIMENSION_ENTITIES, DimensionSetEntry
from ledgersync.entities.budget import BUDGET_ENTITIES, GLBudgetEntry
from ledgersync.errors import ConfigError

# Sync order within a scope
ALL_ENTITIES: List[EntityConfig] = LEDGER_ENTITIES + DIMENSION_ENTITIES + BUDGET_ENTITIES

GL_ACCOUNTS, GL_ENTRIES = LEDGER_ENTITIES
DIMENSION_SET_ENTRIES, = DIMENSION_ENTITIES
GL_BUDGET_ENTRIES, = BUDGET_ENTITIES


def get_entity(target_table: str) -> EntityConfig:
    """
    Look up an entity by destination table name (case-insensitive).

    Raises:
        ConfigError: If no entity syncs into that table
    """
    for entity in ALL_ENTITIES:
        if entity.target_table.lower() == target_table.lower():
            return entity
    known = ', '.join(e.target_table for e in ALL_ENTITIES)
    raise ConfigError(f"Unknown entity table '{target_table}'. Known tables: {known}")


def select_entities(target_tables: Optional[Iterable[str]] = None) -> List[EntityConfig]:
    """
    Entities to sync, in sync order.

    Args:
        target_tables: Restrict to these destination tables (None = all)
    """
    if not target_tables:
        return list(ALL_ENTITIES)
    wanted = {get_entity(name).target_table for name in target_tables}
    return [e for e in ALL_ENTITIES if e.target_table in wanted]


__all__ = [
    'EntityConfig',
    'LedgerRecord',
    'TableClass',
    'SCOPE_COLUMNS',
    'GLAccount',
    'GLEntry',
    'DimensionSetEntry',
    'GLBudgetEntry',
    'ALL_ENTITIES',
    'GL_ACCOUNTS',
    'GL_ENTRIES',
    'DIMENSION_SET_ENTRIES',
    'GL_BUDGET_ENTRIES',
    'get_entity',
    'select_entities',
]
