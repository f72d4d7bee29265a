"""
Dimension entity configurations.

Dimension set entries resolve a DimensionSetId (carried by G/L and budget
entries) into its dimension code/value pairs.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ledgersync.entities.base import EntityConfig, LedgerRecord, TableClass, source_field


@dataclass
class DimensionSetEntry(LedgerRecord):
    system_id: str = source_field('systemId', 'SystemId', 'guid')
    dimension_set_id: int = source_field('dimensionSetId', 'DimensionSetId', 'int')
    dimension_code: str = source_field('dimensionCode', 'DimensionCode')
    dimension_value_code: str = source_field('dimensionValueCode', 'DimensionValueCode')
    dimension_value_name: str = source_field('dimensionValueName', 'DimensionValueName')
    last_modified: Optional[datetime] = source_field('lastModifiedDateTime', 'LastModifiedDateTime', 'datetime')


DIMENSION_ENTITIES = [
    EntityConfig(
        name='DimensionSetEntry',
        endpoint='dimensionSetEntries',
        target_table='dim_Dimension',
        record_type=DimensionSetEntry,
        table_class=TableClass.DIMENSION,
        description='Dimension set id -> dimension code/value pairs'
    ),
]
