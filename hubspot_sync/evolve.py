"""
Forward-only schema evolution: create missing tables, add missing columns
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from hubspot_sync.errors import SchemaConflictError
from hubspot_sync.schema import ColumnSpec

# Snowflake INFORMATION_SCHEMA data types grouped by the type we declare
TYPE_FAMILIES = {
    'STRING': {'TEXT', 'STRING', 'VARCHAR', 'CHAR', 'CHARACTER'},
    'FLOAT': {'FLOAT', 'FLOAT4', 'FLOAT8', 'DOUBLE', 'DOUBLE PRECISION', 'REAL', 'NUMBER', 'DECIMAL', 'NUMERIC'},
    'TIMESTAMP': {'TIMESTAMP', 'TIMESTAMP_NTZ', 'TIMESTAMP_LTZ', 'TIMESTAMP_TZ', 'DATETIME'},
    'DATE': {'DATE'},
    'BOOLEAN': {'BOOLEAN'},
}


@dataclass
class TableSchema:
    name: str
    columns: Dict[str, str]
    created: bool = False
    added: List[str] = field(default_factory=list)


def type_family(data_type: str) -> str:
    """Normalize a reported type like 'VARCHAR(16777216)' to its family"""
    base = data_type.split('(')[0].strip().upper()
    for family, members in TYPE_FAMILIES.items():
        if base in members:
            return family
    return base


def ensure_table(warehouse, table: str, specs: Sequence[ColumnSpec]) -> TableSchema:
    """Make `table` hold at least `specs`; never drops or retypes a column

    Raises SchemaConflictError when a requested column already exists with a
    different type family.
    """
    existing = warehouse.table_columns(table)

    if not existing:
        warehouse.create_table(table, specs)
        print(f"✓ Created table {table} with {len(specs)} columns")
        return TableSchema(
            name=table,
            columns={spec.name: spec.warehouse_type for spec in specs},
            created=True,
        )

    conflicts = []
    missing: List[ColumnSpec] = []
    for spec in specs:
        current = existing.get(spec.name)
        if current is None:
            missing.append(spec)
        elif type_family(current) != spec.warehouse_type:
            conflicts.append(f"{spec.name} ({current} in warehouse, {spec.warehouse_type} requested)")

    if conflicts:
        raise SchemaConflictError(
            f"Column type conflict in {table}: {', '.join(conflicts)}. "
            f"Retyping is a manual operation."
        )

    columns = dict(existing)
    if missing:
        warehouse.add_columns(table, missing)
        print(f"✓ Added {len(missing)} new column(s) to {table}: {', '.join(s.name for s in missing[:10])}"
              + (' ...' if len(missing) > 10 else ''))
        for spec in missing:
            columns[spec.name] = spec.warehouse_type

    return TableSchema(name=table, columns=columns, added=[s.name for s in missing])
