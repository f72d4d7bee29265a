"""
Base entity configuration for the ledger sync engine.

Provides:
- TableClass: Enum classifying destination tables (dimension / fact)
- source_field: dataclass field helper mapping API keys to SQL columns
- LedgerRecord: base class for typed records parsed from API payloads
- EntityConfig: dataclass describing one synced entity kind
"""
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from ledgersync.errors import ApiError
from ledgersync.utils import parse_api_datetime

R = TypeVar('R', bound='LedgerRecord')

# Scope discriminators carried by shared multi-tenant destination tables
SCOPE_COLUMNS = ['EnvironmentName', 'CompanyId']


class TableClass(Enum):
    """Destination table role in the analytics model.

    DIMENSION: Small, frequently updated reference data (accounts, dimensions)
    FACT: Large append-mostly transactional data (GL entries, budget entries)
    """
    DIMENSION = "dimension"
    FACT = "fact"


def source_field(source: str, column: str, kind: str = 'str', default: Any = None):
    """
    Declare a record attribute fed from an API key and stored in a SQL column.

    Args:
        source: Key in the API payload (matched case-insensitively)
        column: Destination column name
        kind: One of 'guid', 'str', 'int', 'decimal', 'bool', 'date', 'datetime'
        default: Value used when the key is absent
    """
    return field(default=default, metadata={'source': source, 'column': column, 'kind': kind})


def _convert(kind: str, value: Any, key: str) -> Any:
    if value is None:
        return None
    try:
        if kind in ('str', 'guid'):
            return str(value)
        if kind == 'int':
            return int(value)
        if kind == 'decimal':
            return Decimal(str(value))
        if kind == 'bool':
            if isinstance(value, str):
                return value.strip().lower() in ('true', '1', 'yes')
            return bool(value)
        if kind == 'date':
            if isinstance(value, date):
                return value
            return date.fromisoformat(str(value)[:10])
        if kind == 'datetime':
            if isinstance(value, datetime):
                return value
            return parse_api_datetime(str(value))
    except (ValueError, TypeError, InvalidOperation) as e:
        raise ApiError(f"Invalid value for '{key}' ({kind}): {value!r}") from e
    raise ValueError(f"Unknown field kind: {kind}")


_DEFAULTS = {'str': '', 'int': 0, 'decimal': Decimal('0'), 'bool': False}

# Destination column types by field kind
SQL_TYPES = {
    'guid': 'UNIQUEIDENTIFIER',
    'str': 'NVARCHAR(250)',
    'int': 'INT',
    'decimal': 'DECIMAL(38, 20)',
    'bool': 'BIT',
    'date': 'DATE',
    'datetime': 'DATETIME2',
}

SCOPE_COLUMN_TYPES = [('EnvironmentName', 'NVARCHAR(100)'), ('CompanyId', 'UNIQUEIDENTIFIER')]


@dataclass
class LedgerRecord:
    """
    Base class for records returned by the analytics API.

    Subclasses declare their attributes with source_field(). Every record has
    system_id (identity) and last_modified (watermark field).
    """

    @classmethod
    def from_api(cls: Type[R], payload: Mapping[str, Any]) -> R:
        """
        Build a record from one element of an OData 'value' array.

        Raises:
            ApiError: If the element is not an object, systemId is missing or a
                value cannot be converted
        """
        if not isinstance(payload, Mapping):
            raise ApiError(f"{cls.__name__} record is not an object: {payload!r}"[:500])

        lowered = {str(k).lower(): v for k, v in payload.items()}
        values = {}
        for f in fields(cls):
            meta = f.metadata
            key = meta['source']
            raw = lowered.get(key.lower())
            if raw is None:
                if meta['kind'] == 'guid':
                    raise ApiError(f"{cls.__name__} record without '{key}': {dict(payload)!r}"[:500])
                values[f.name] = _DEFAULTS.get(meta['kind'])
                continue
            values[f.name] = _convert(meta['kind'], raw, key)
        return cls(**values)

    @classmethod
    def columns(cls) -> List[str]:
        """Destination column names, in declaration order."""
        return [f.metadata['column'] for f in fields(cls)]

    @classmethod
    def column_types(cls) -> List[Tuple[str, str]]:
        """(column, SQL Server type) pairs, in declaration order."""
        return [(f.metadata['column'], SQL_TYPES[f.metadata['kind']]) for f in fields(cls)]

    def to_row(self) -> Dict[str, Any]:
        """Column name -> value, ready for staging."""
        return {f.metadata['column']: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class EntityConfig:
    """Configuration for one synced entity kind.

    Attributes:
        name: Record kind (e.g., 'GLAccount')
        endpoint: API entity set under the company (e.g., 'glAccounts')
        target_table: Destination table (e.g., 'dim_Account'); also the
            SyncLog TableName
        record_type: LedgerRecord subclass the payload is parsed into
        table_class: DIMENSION or FACT
        identity_column: Natural key column (SystemId for every kind)
        watermark_column: Modification timestamp column
        description: Human-readable description

    Example:
        EntityConfig(
            name='GLAccount',
            endpoint='glAccounts',
            target_table='dim_Account',
            record_type=GLAccount,
            table_class=TableClass.DIMENSION,
            description='Chart of accounts'
        )
    """
    name: str
    endpoint: str
    target_table: str
    record_type: Type[LedgerRecord]
    table_class: TableClass = TableClass.FACT
    identity_column: str = 'SystemId'
    watermark_column: str = 'LastModifiedDateTime'
    description: Optional[str] = None

    @property
    def columns(self) -> List[str]:
        """Destination columns owned by the record kind."""
        return self.record_type.columns()

    def staging_columns(self, multi_tenant: bool) -> List[str]:
        """Columns of the staging table (record columns + scope discriminators)."""
        if multi_tenant:
            return self.columns + SCOPE_COLUMNS
        return list(self.columns)

    def key_columns(self, multi_tenant: bool) -> List[str]:
        """Columns a staged row is matched on during merge."""
        if multi_tenant:
            return [self.identity_column] + SCOPE_COLUMNS
        return [self.identity_column]

    def column_definitions(self, multi_tenant: bool) -> List[Tuple[str, str]]:
        """(column, SQL type) pairs of the destination table."""
        if multi_tenant:
            return self.record_type.column_types() + SCOPE_COLUMN_TYPES
        return self.record_type.column_types()

