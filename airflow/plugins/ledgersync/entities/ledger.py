"""
General ledger entity configurations.

Chart of accounts and posted G/L entries from the analytics API.
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from ledgersync.entities.base import EntityConfig, LedgerRecord, TableClass, source_field


@dataclass
class GLAccount(LedgerRecord):
    system_id: str = source_field('systemId', 'SystemId', 'guid')
    no: str = source_field('no', 'No')
    name: str = source_field('name', 'Name')
    account_type: str = source_field('accountType', 'AccountType')
    account_category: str = source_field('accountCategory', 'AccountCategory')
    account_subcategory: str = source_field('accountSubcategory', 'AccountSubcategory')
    account_subcategory_entry_no: int = source_field('accountSubcategoryEntryNo', 'AccountSubcategoryEntryNo', 'int')
    income_balance: str = source_field('incomeBalance', 'IncomeBalance')
    indentation: int = source_field('indentation', 'Indentation', 'int')
    blocked: bool = source_field('blocked', 'Blocked', 'bool')
    last_modified: Optional[datetime] = source_field('lastModifiedDateTime', 'LastModifiedDateTime', 'datetime')


@dataclass
class GLEntry(LedgerRecord):
    system_id: str = source_field('systemId', 'SystemId', 'guid')
    entry_no: int = source_field('entryNo', 'EntryNo', 'int')
    gl_account_no: str = source_field('glAccountNo', 'GLAccountNo')
    posting_date: Optional[date] = source_field('postingDate', 'PostingDate', 'date')
    document_type: str = source_field('documentType', 'DocumentType')
    document_no: str = source_field('documentNo', 'DocumentNo')
    description: str = source_field('description', 'Description')
    amount: Decimal = source_field('amount', 'Amount', 'decimal')
    debit_amount: Decimal = source_field('debitAmount', 'DebitAmount', 'decimal')
    credit_amount: Decimal = source_field('creditAmount', 'CreditAmount', 'decimal')
    dimension_set_id: int = source_field('dimensionSetId', 'DimensionSetId', 'int')
    last_modified: Optional[datetime] = source_field('lastModifiedDateTime', 'LastModifiedDateTime', 'datetime')


LEDGER_ENTITIES = [
    EntityConfig(
        name='GLAccount',
        endpoint='glAccounts',
        target_table='dim_Account',
        record_type=GLAccount,
        table_class=TableClass.DIMENSION,
        description='Chart of accounts with category, indentation and blocked flag'
    ),
    EntityConfig(
        name='GLEntry',
        endpoint='glEntries',
        target_table='fact_GL',
        record_type=GLEntry,
        table_class=TableClass.FACT,
        description='Posted general ledger entries (amount, debit/credit, dimension set)'
    ),
]
