"""
Budget entity configurations.
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from ledgersync.entities.base import EntityConfig, LedgerRecord, TableClass, source_field


@dataclass
class GLBudgetEntry(LedgerRecord):
    system_id: str = source_field('systemId', 'SystemId', 'guid')
    entry_no: int = source_field('entryNo', 'EntryNo', 'int')
    budget_name: str = source_field('budgetName', 'BudgetName')
    gl_account_no: str = source_field('glAccountNo', 'GLAccountNo')
    budget_date: Optional[date] = source_field('date', 'Date', 'date')
    amount: Decimal = source_field('amount', 'Amount', 'decimal')
    description: str = source_field('description', 'Description')
    dimension_set_id: int = source_field('dimensionSetId', 'DimensionSetId', 'int')
    last_modified: Optional[datetime] = source_field('lastModifiedDateTime', 'LastModifiedDateTime', 'datetime')


BUDGET_ENTITIES = [
    EntityConfig(
        name='GLBudgetEntry',
        endpoint='glBudgetEntries',
        target_table='fact_Budget',
        record_type=GLBudgetEntry,
        table_class=TableClass.FACT,
        description='G/L budget entries by budget name, account and date'
    ),
]
