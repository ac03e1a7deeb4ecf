"""
Raw HubSpot records to typed warehouse rows
"""

import re
from typing import Iterable, List, Sequence

from hubspot_sync.schema import PRIMARY_KEY, ColumnSpec, Record, Row, Value, source_to_column

# Per-subscription opt-out flags (hs_email_optout_123456) are typed
# inconsistently across portals; always load them as text.
OPTOUT_PATTERN = re.compile(r'^hs_email_optout_\d+$')

_NON_NUMERIC = re.compile(r'[^0-9.\-]')


def to_float(value) -> Value:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = _NON_NUMERIC.sub('', str(value))
    try:
        return float(cleaned)
    except ValueError:
        return None


def to_bool(value) -> Value:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == 'true':
            return True
        if lowered == 'false':
            return False
    return None


def coerce_value(source_name: str, value, warehouse_type: str) -> Value:
    """Null-normalize and coerce one property value for its column type"""
    if value is None or value == '':
        return None
    if OPTOUT_PATTERN.match(source_name):
        return str(value).lower() if isinstance(value, bool) else str(value)
    if warehouse_type == 'FLOAT':
        return to_float(value)
    if warehouse_type == 'BOOLEAN':
        return to_bool(value)
    return value


def transform_record(record: Record, columns_by_source) -> Row:
    row: Row = {PRIMARY_KEY: str(record[PRIMARY_KEY])}
    for key, value in record.items():
        if key == PRIMARY_KEY:
            continue
        spec = columns_by_source.get(key)
        if spec is None:
            continue
        row[spec.name] = coerce_value(key, value, spec.warehouse_type)
    return row


def transform_records(records: Iterable[Record], specs: Sequence[ColumnSpec]) -> List[Row]:
    """Typed rows keyed by sanitized column name; unmapped fields are dropped"""
    columns_by_source = source_to_column(specs)
    return [transform_record(record, columns_by_source) for record in records]
