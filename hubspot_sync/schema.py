"""
Property catalogue to warehouse column mapping
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

PRIMARY_KEY = 'id'

# Raw HubSpot record (property name -> string value) and typed warehouse row
Record = Dict[str, Optional[str]]
Value = Union[str, float, bool, None]
Row = Dict[str, Value]

DECLARED_TYPES = ('string', 'number', 'datetime', 'date', 'bool')

HUBSPOT_TO_WAREHOUSE = {
    'string': 'STRING',
    'number': 'FLOAT',
    'datetime': 'TIMESTAMP',
    'date': 'DATE',
    'bool': 'BOOLEAN',
}

_INVALID_CHARS = re.compile(r'[^a-z0-9_]')


@dataclass(frozen=True)
class PropertyDefinition:
    name: str
    declared_type: str = 'other'

    @classmethod
    def from_api(cls, data: dict) -> 'PropertyDefinition':
        """Build from a /crm/v3/properties result; unknown types become 'other'"""
        declared = data.get('type')
        return cls(name=data['name'], declared_type=declared if declared in DECLARED_TYPES else 'other')


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    warehouse_type: str
    nullable: bool = True
    source_name: str = ''

    def ddl(self) -> str:
        """Column definition for CREATE TABLE / ADD COLUMN"""
        null_clause = '' if self.nullable else ' NOT NULL'
        return f'{quote_identifier(self.name)} {self.warehouse_type}{null_clause}'


def sanitize_name(name: str) -> str:
    """Warehouse-safe column name; sanitize_name(sanitize_name(x)) == sanitize_name(x)"""
    cleaned = _INVALID_CHARS.sub('_', name.lower())
    if not cleaned or not ('a' <= cleaned[0] <= 'z'):
        cleaned = 'p_' + cleaned
    return cleaned


def map_type(declared_type: str) -> str:
    return HUBSPOT_TO_WAREHOUSE.get(declared_type, 'STRING')


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def id_column() -> ColumnSpec:
    return ColumnSpec(name=PRIMARY_KEY, warehouse_type='STRING', nullable=False, source_name=PRIMARY_KEY)


def build_column_specs(properties: Iterable[PropertyDefinition]) -> List[ColumnSpec]:
    """Map the property catalogue to column specs, `id` always first

    Two source names that sanitize to the same column keep the first one.
    """
    specs = [id_column()]
    seen = {PRIMARY_KEY}
    for prop in properties:
        column = sanitize_name(prop.name)
        if column in seen:
            if column != PRIMARY_KEY:
                print(f"  ⚠️  Property '{prop.name}' collides with column '{column}', skipping")
            continue
        seen.add(column)
        specs.append(ColumnSpec(
            name=column,
            warehouse_type=map_type(prop.declared_type),
            nullable=True,
            source_name=prop.name,
        ))
    return specs


def source_to_column(specs: Iterable[ColumnSpec]) -> Dict[str, ColumnSpec]:
    """Lookup from HubSpot property name to its column spec"""
    return {spec.source_name: spec for spec in specs if spec.source_name}
