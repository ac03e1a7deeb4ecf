"""Unit tests for the Snowflake warehouse SQL layer (mocked connection)."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from snowflake.connector.errors import ProgrammingError

from hubspot_sync.errors import MergeError
from hubspot_sync.schema import ColumnSpec, id_column
from hubspot_sync.warehouse import SnowflakeWarehouse


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _warehouse(config):
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value = cursor
    return SnowflakeWarehouse(conn, config), conn, cursor


def _sql(cursor) -> str:
    return ' '.join(cursor.execute.call_args.args[0].split())


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

class TestDdl:
    def test_table_columns_queries_information_schema(self, config):
        wh, _, cursor = _warehouse(config)
        cursor.fetchall.return_value = [('id', 'TEXT'), ('email', 'TEXT')]
        assert wh.table_columns('contacts') == {'id': 'TEXT', 'email': 'TEXT'}
        assert 'HUBSPOT_DATA.INFORMATION_SCHEMA.COLUMNS' in _sql(cursor)
        assert cursor.execute.call_args.args[1] == ('PUBLIC', 'CONTACTS')

    def test_table_columns_empty_when_missing(self, config):
        wh, _, cursor = _warehouse(config)
        cursor.fetchall.return_value = []
        assert wh.table_columns('CONTACTS') == {}

    def test_create_table(self, config):
        wh, _, cursor = _warehouse(config)
        wh.create_table('CONTACTS', [id_column(), ColumnSpec('email', 'STRING')])
        assert _sql(cursor) == (
            'CREATE TABLE IF NOT EXISTS HUBSPOT_DATA.PUBLIC.CONTACTS ( "id" STRING NOT NULL, "email" STRING )'
        )

    def test_add_columns(self, config):
        wh, _, cursor = _warehouse(config)
        wh.add_columns('CONTACTS', [ColumnSpec('score', 'FLOAT'), ColumnSpec('select', 'STRING')])
        assert _sql(cursor) == 'ALTER TABLE HUBSPOT_DATA.PUBLIC.CONTACTS ADD COLUMN "score" FLOAT, "select" STRING'


# ---------------------------------------------------------------------------
# insert_batch
# ---------------------------------------------------------------------------

class TestInsertBatch:
    def test_whole_batch_in_one_statement(self, config):
        wh, _, cursor = _warehouse(config)
        rows = [{'id': '1', 'email': 'a'}, {'id': '2'}]
        result = wh.insert_batch('CONTACTS_STAGING', ['id', 'email'], rows)

        assert result.inserted == 2 and result.errors == []
        sql, params = cursor.executemany.call_args.args
        assert sql == 'INSERT INTO HUBSPOT_DATA.PUBLIC.CONTACTS_STAGING ("id", "email") VALUES (%s, %s)'
        assert params == [('1', 'a'), ('2', None)]

    def test_rejected_batch_isolates_bad_rows(self, config):
        wh, _, cursor = _warehouse(config)
        cursor.executemany.side_effect = ProgrammingError(msg='Numeric value is not recognized')

        def execute(sql, params):
            if params[0] == '3':
                raise ProgrammingError(msg="Numeric value 'abc' is not recognized")
        cursor.execute.side_effect = execute

        rows = [{'id': str(i), 'score': 'abc' if i == 3 else float(i)} for i in range(1, 6)]
        result = wh.insert_batch('CONTACTS_STAGING', ['id', 'score'], rows)

        assert result.inserted == 4
        assert len(result.errors) == 1
        assert result.errors[0].row_id == '3'
        assert "'abc'" in result.errors[0].reason
        assert cursor.execute.call_count == 5

    def test_empty_batch(self, config):
        wh, conn, _ = _warehouse(config)
        assert wh.insert_batch('CONTACTS_STAGING', ['id'], []).inserted == 0
        conn.cursor.assert_not_called()


# ---------------------------------------------------------------------------
# merge
# ---------------------------------------------------------------------------

class TestMerge:
    def test_merge_statement_and_counts(self, config):
        wh, conn, cursor = _warehouse(config)
        cursor.fetchone.return_value = (3, 5)
        cursor.description = [('number of rows inserted',), ('number of rows updated',)]

        counts = wh.merge('CONTACTS', 'CONTACTS_STAGING', ['id', 'email', 'score'])

        sql = _sql(cursor)
        assert sql.startswith('MERGE INTO HUBSPOT_DATA.PUBLIC.CONTACTS AS target')
        assert 'USING HUBSPOT_DATA.PUBLIC.CONTACTS_STAGING AS source' in sql
        assert 'QUALIFY' not in sql
        assert 'ON target."id" = source."id"' in sql
        assert 'WHEN MATCHED THEN UPDATE SET "email" = source."email", "score" = source."score"' in sql
        assert '"id" = source."id",' not in sql
        assert 'WHEN NOT MATCHED THEN INSERT ("id", "email", "score")' in sql
        assert (counts.inserted, counts.updated, counts.upserted) == (3, 5, 8)
        conn.commit.assert_called_once()

    def test_key_only_merge_has_no_update_clause(self, config):
        wh, _, cursor = _warehouse(config)
        cursor.fetchone.return_value = (1,)
        cursor.description = [('number of rows inserted',)]
        counts = wh.merge('CONTACTS', 'CONTACTS_STAGING', ['id'])
        assert 'WHEN MATCHED' not in _sql(cursor)
        assert counts.inserted == 1

    def test_failure_raises_merge_error(self, config):
        wh, conn, cursor = _warehouse(config)
        cursor.execute.side_effect = ProgrammingError(msg='boom')
        with pytest.raises(MergeError):
            wh.merge('CONTACTS', 'CONTACTS_STAGING', ['id', 'email'])
        conn.commit.assert_not_called()


# ---------------------------------------------------------------------------
# reconciliation helpers
# ---------------------------------------------------------------------------

class TestKeyTableAndDeletes:
    def test_replace_key_table_batches_inserts(self, config):
        wh, _, cursor = _warehouse(config)
        ids = [str(i) for i in range(12001)]
        wh.replace_key_table('CONTACTS_RECONCILE_IDS', ids)

        create_sql = ' '.join(cursor.execute.call_args_list[0].args[0].split())
        assert create_sql == 'CREATE OR REPLACE TEMPORARY TABLE HUBSPOT_DATA.PUBLIC.CONTACTS_RECONCILE_IDS ("id" STRING)'
        sizes = [len(c.args[1]) for c in cursor.executemany.call_args_list]
        assert sizes == [5000, 5000, 2001]

    def test_delete_absent_keys_is_anti_join(self, config):
        wh, conn, cursor = _warehouse(config)
        cursor.rowcount = 1
        deleted = wh.delete_absent_keys('CONTACTS', 'CONTACTS_RECONCILE_IDS')
        sql = _sql(cursor)
        assert sql.startswith('DELETE FROM HUBSPOT_DATA.PUBLIC.CONTACTS AS t WHERE NOT EXISTS')
        assert 'k."id" = t."id"' in sql
        assert deleted == 1
        conn.commit.assert_called_once()

    def test_delete_listed_keys(self, config):
        wh, _, cursor = _warehouse(config)
        cursor.rowcount = 4
        assert wh.delete_listed_keys('CONTACTS', 'CONTACTS_RECONCILE_IDS') == 4
        assert 'USING HUBSPOT_DATA.PUBLIC.CONTACTS_RECONCILE_IDS AS k' in _sql(cursor)

    def test_delete_failure_raises_merge_error(self, config):
        wh, _, cursor = _warehouse(config)
        cursor.execute.side_effect = ProgrammingError(msg='boom')
        with pytest.raises(MergeError):
            wh.delete_absent_keys('CONTACTS', 'CONTACTS_RECONCILE_IDS')
