"""Shared fixtures: a Config, an in-memory warehouse and a fake HubSpot API."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

import pytest

from hubspot_sync.config import Config
from hubspot_sync.errors import MergeError
from hubspot_sync.schema import PRIMARY_KEY, PropertyDefinition
from hubspot_sync.warehouse import InsertResult, MergeCounts, RowError


BASE_ENV = {
    'HUBSPOT_API_KEY': 'pat-test-token',
    'SNOWFLAKE_ACCOUNT': 'acme-xy12345',
    'SNOWFLAKE_USER': 'loader',
    'SNOWFLAKE_PASSWORD': 'secret',
    'SNOWFLAKE_WAREHOUSE': 'COMPUTE_WH',
}


# ---------------------------------------------------------------------------
# In-memory warehouse
# ---------------------------------------------------------------------------

class FakeWarehouse:
    """Implements the SnowflakeWarehouse surface used by evolve/load/reconcile.

    `reject` returns a reason string for rows the "engine" should refuse.
    """

    def __init__(self, config: Config, reject: Optional[Callable[[dict], Optional[str]]] = None):
        self.config = config
        self.tables: Dict[str, dict] = {}
        self.reject = reject or (lambda row: None)
        self.calls: List[tuple] = []

    def _table(self, name: str) -> dict:
        return self.tables[name.upper()]

    def initialize(self):
        self.calls.append(('initialize',))

    def table_columns(self, table):
        if table.upper() not in self.tables:
            return {}
        return dict(self._table(table)['columns'])

    def create_table(self, table, specs):
        self.calls.append(('create_table', table))
        self.tables[table.upper()] = {
            'columns': {s.name: s.warehouse_type for s in specs},
            'rows': [],
        }

    def add_columns(self, table, specs):
        self.calls.append(('add_columns', table, [s.name for s in specs]))
        for s in specs:
            assert s.name not in self._table(table)['columns']
            self._table(table)['columns'][s.name] = s.warehouse_type

    def truncate(self, table):
        self.calls.append(('truncate', table))
        if table.upper() in self.tables:
            self._table(table)['rows'] = []

    def insert_batch(self, table, columns, rows):
        self.calls.append(('insert_batch', table, len(rows)))
        result = InsertResult()
        for row in rows:
            reason = self.reject(row)
            if reason:
                result.errors.append(RowError(row.get(PRIMARY_KEY), reason))
                continue
            self._table(table)['rows'].append({c: row.get(c) for c in columns})
            result.inserted += 1
        return result

    def merge(self, master, staging, columns):
        self.calls.append(('merge', master, staging))
        staged = {}
        for row in self._table(staging)['rows']:
            if row[PRIMARY_KEY] in staged:
                raise MergeError(f"Duplicate row detected during MERGE for id {row[PRIMARY_KEY]}")
            staged[row[PRIMARY_KEY]] = row
        target = self._table(master)['rows']
        by_id = {row[PRIMARY_KEY]: row for row in target}
        inserted = updated = 0
        for row_id, row in staged.items():
            if row_id in by_id:
                by_id[row_id].update({c: row.get(c) for c in columns if c != PRIMARY_KEY})
                updated += 1
            else:
                target.append({c: row.get(c) for c in columns})
                inserted += 1
        return MergeCounts(inserted=inserted, updated=updated)

    def replace_key_table(self, table, ids):
        self.calls.append(('replace_key_table', table, len(ids)))
        self.tables[table.upper()] = {
            'columns': {PRIMARY_KEY: 'STRING'},
            'rows': [{PRIMARY_KEY: i} for i in ids],
        }

    def delete_absent_keys(self, master, key_table):
        keys = {r[PRIMARY_KEY] for r in self._table(key_table)['rows']}
        return self._delete_where(master, lambda row: row[PRIMARY_KEY] not in keys)

    def delete_listed_keys(self, master, key_table):
        keys = {r[PRIMARY_KEY] for r in self._table(key_table)['rows']}
        return self._delete_where(master, lambda row: row[PRIMARY_KEY] in keys)

    def _delete_where(self, master, predicate):
        rows = self._table(master)['rows']
        kept = [r for r in rows if not predicate(r)]
        self._table(master)['rows'] = kept
        return len(rows) - len(kept)

    def rows(self, table) -> List[dict]:
        return list(self._table(table)['rows'])


# ---------------------------------------------------------------------------
# Fake HubSpot API
# ---------------------------------------------------------------------------

class FakeHubSpot:
    """Serves properties and contacts the way the CRM v3 API pages them.

    `hidden` maps a search call number (0-based) to ids that call leaves out,
    mimicking offset paging shifting under concurrent edits. `report_total`
    can override the `total` a search reports for its filters.
    """

    def __init__(self, properties: List[PropertyDefinition], contacts: List[dict], page_size: int = 2,
                 archived_ids: Optional[List[str]] = None):
        self.properties = properties
        self.contacts = contacts
        self.page_size = page_size
        self.archived_ids = archived_ids or []
        self.search_calls: List[dict] = []
        self.batch_reads: List[dict] = []
        self.hidden: Dict[int, Set[str]] = {}
        self.report_total: Optional[Callable[[List[dict]], Optional[int]]] = None

    def fetch_properties(self, entity):
        return list(self.properties)

    def search_pages(self, entity, properties, filters):
        call = len(self.search_calls)
        self.search_calls.append({'properties': list(properties), 'filters': filters, 'pages': 0})
        hidden = self.hidden.get(call, set())
        matches = [c for c in self.contacts
                   if all(self._passes(c, f) for f in filters) and c['id'] not in hidden]
        total = len(matches)
        if self.report_total is not None:
            total = self.report_total(filters) or total
        for start in range(0, max(len(matches), 1), self.page_size):
            self.search_calls[call]['pages'] += 1
            page = matches[start:start + self.page_size]
            data = {'total': total, 'results': [self._result(c, properties) for c in page]}
            if start + self.page_size < len(matches):
                data['paging'] = {'next': {'after': str(start + self.page_size)}}
            yield data

    def read_batch(self, entity, ids, properties):
        self.batch_reads.append({'ids': list(ids), 'properties': list(properties)})
        by_id = {c['id']: c for c in self.contacts}
        return [self._result(by_id[i], properties) for i in ids if i in by_id]

    @staticmethod
    def _result(contact, properties):
        return {'id': contact['id'],
                'properties': {k: v for k, v in contact['properties'].items() if k in properties}}

    @staticmethod
    def _passes(contact, f):
        value = contact['properties'].get(f['propertyName'])
        if value is None:
            return False
        value, bound = int(value), int(f['value'])
        if f['operator'] == 'GT':
            return value > bound
        if f['operator'] == 'GTE':
            return value >= bound
        if f['operator'] == 'LT':
            return value < bound
        raise AssertionError(f"unexpected operator {f['operator']}")

    def list_object_ids(self, entity, archived=False):
        if archived:
            return list(self.archived_ids)
        return [c['id'] for c in self.contacts]

    def count_modified_since(self, entity, modified_property, since_ms):
        return len([c for c in self.contacts if self._passes(
            c, {'propertyName': modified_property, 'operator': 'GT', 'value': str(since_ms)})])


def ms(dt: datetime) -> str:
    return str(int(dt.timestamp() * 1000))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> Config:
    return Config.from_env(dict(BASE_ENV))


@pytest.fixture
def warehouse(config) -> FakeWarehouse:
    return FakeWarehouse(config)


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def contact_properties() -> List[PropertyDefinition]:
    return [
        PropertyDefinition('email', 'string'),
        PropertyDefinition('firstname', 'string'),
        PropertyDefinition('num_employees', 'number'),
        PropertyDefinition('hs_is_unworked', 'bool'),
        PropertyDefinition('lastmodifieddate', 'datetime'),
        PropertyDefinition('hs_email_optout_1234', 'bool'),
    ]


@pytest.fixture
def make_warehouse(config):
    def _make(reject=None) -> FakeWarehouse:
        return FakeWarehouse(config, reject=reject)
    return _make


@pytest.fixture
def make_hubspot():
    def _make(properties, contacts, page_size=2, archived_ids=None) -> FakeHubSpot:
        return FakeHubSpot(properties, contacts, page_size=page_size, archived_ids=archived_ids)
    return _make


@pytest.fixture
def contact():
    """Build a HubSpot search result for a contact modified at `modified`."""
    def _make(contact_id: str, modified: datetime, **props) -> dict:
        properties = {'lastmodifieddate': ms(modified)}
        properties.update(props)
        return {'id': contact_id, 'properties': properties}
    return _make
