"""
Snowflake access - DDL, batched staging inserts, MERGE and anti-join DELETE

Dynamic (property) columns are always double-quoted lowercase identifiers.
Table names come from Config and are unquoted, so Snowflake stores them
upper-cased.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import snowflake.connector
from snowflake.connector.errors import DatabaseError

from hubspot_sync.config import Config
from hubspot_sync.errors import MergeError
from hubspot_sync.schema import PRIMARY_KEY, ColumnSpec, Row, quote_identifier


KEY_BATCH_SIZE = 5000


@dataclass(frozen=True)
class RowError:
    row_id: Optional[str]
    reason: str


@dataclass
class InsertResult:
    """Outcome of one staging batch: full success, partial, or all rows rejected"""
    inserted: int = 0
    errors: List[RowError] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.errors)

    def extend(self, other: 'InsertResult') -> None:
        self.inserted += other.inserted
        self.errors.extend(other.errors)


@dataclass(frozen=True)
class MergeCounts:
    inserted: int = 0
    updated: int = 0

    @property
    def upserted(self) -> int:
        return self.inserted + self.updated


def get_snowflake_connection(config: Config):
    """Create Snowflake connection"""
    return snowflake.connector.connect(
        user=config.snowflake_user,
        password=config.snowflake_password,
        account=config.snowflake_account,
        warehouse=config.snowflake_warehouse,
        database=config.snowflake_database,
        schema=config.snowflake_schema,
    )


class SnowflakeWarehouse:
    def __init__(self, conn, config: Config):
        self.conn = conn
        self.config = config

    @classmethod
    def connect(cls, config: Config) -> 'SnowflakeWarehouse':
        return cls(get_snowflake_connection(config), config)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> 'SnowflakeWarehouse':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def execute(self, sql: str, params: Optional[Sequence] = None) -> int:
        """Run one statement, return the engine-reported row count"""
        cursor = self.conn.cursor()
        try:
            cursor.execute(sql, params)
            return cursor.rowcount or 0
        finally:
            cursor.close()

    def fetchone(self, sql: str, params: Optional[Sequence] = None) -> Optional[tuple]:
        cursor = self.conn.cursor()
        try:
            cursor.execute(sql, params)
            return cursor.fetchone()
        finally:
            cursor.close()

    def initialize(self) -> None:
        """Create database and schema if they don't exist"""
        self.execute(f"CREATE DATABASE IF NOT EXISTS {self.config.snowflake_database}")
        self.execute(f"CREATE SCHEMA IF NOT EXISTS {self.config.snowflake_database}.{self.config.snowflake_schema}")

    def table_columns(self, table: str) -> Dict[str, str]:
        """Column name -> Snowflake data type; empty when the table does not exist"""
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                f"""
                SELECT COLUMN_NAME, DATA_TYPE
                FROM {self.config.snowflake_database}.INFORMATION_SCHEMA.COLUMNS
                WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
                ORDER BY ORDINAL_POSITION
                """,
                (self.config.snowflake_schema.upper(), table.upper()),
            )
            return {name: data_type for name, data_type in cursor.fetchall()}
        finally:
            cursor.close()

    def create_table(self, table: str, specs: Sequence[ColumnSpec]) -> None:
        columns = ',\n    '.join(spec.ddl() for spec in specs)
        self.execute(f"CREATE TABLE IF NOT EXISTS {self.config.qualified(table)} (\n    {columns}\n)")

    def add_columns(self, table: str, specs: Sequence[ColumnSpec]) -> None:
        # Snowflake accepts several columns in one ADD COLUMN, applied atomically
        columns = ', '.join(spec.ddl() for spec in specs)
        self.execute(f"ALTER TABLE {self.config.qualified(table)} ADD COLUMN {columns}")

    def truncate(self, table: str) -> None:
        self.execute(f"TRUNCATE TABLE IF EXISTS {self.config.qualified(table)}")

    def insert_batch(self, table: str, columns: Sequence[str], rows: Sequence[Row]) -> InsertResult:
        """Insert one batch; on rejection retry row by row to isolate bad rows"""
        if not rows:
            return InsertResult()

        column_list = ', '.join(quote_identifier(c) for c in columns)
        placeholders = ', '.join(['%s'] * len(columns))
        insert_sql = f"INSERT INTO {self.config.qualified(table)} ({column_list}) VALUES ({placeholders})"
        batch_params = [tuple(row.get(c) for c in columns) for row in rows]

        cursor = self.conn.cursor()
        try:
            try:
                cursor.executemany(insert_sql, batch_params)
                return InsertResult(inserted=len(rows))
            except DatabaseError as e:
                print(f"  ⚠️  Batch of {len(rows)} rows rejected ({e.msg or e}), retrying row by row...")

            result = InsertResult()
            for row, params in zip(rows, batch_params):
                try:
                    cursor.execute(insert_sql, params)
                    result.inserted += 1
                except DatabaseError as e:
                    result.errors.append(RowError(row_id=row.get(PRIMARY_KEY), reason=str(e.msg or e)))
            return result
        finally:
            cursor.close()

    def merge(self, master: str, staging: str, columns: Sequence[str]) -> MergeCounts:
        """Upsert staging into master by id as one MERGE statement

        Staging must hold one row per id; Snowflake rejects a MERGE whose
        source matches a target row more than once.
        """
        key = quote_identifier(PRIMARY_KEY)
        quoted = [quote_identifier(c) for c in columns]
        non_key = [q for c, q in zip(columns, quoted) if c != PRIMARY_KEY]

        matched_clause = ''
        if non_key:
            assignments = ',\n                '.join(f'{q} = source.{q}' for q in non_key)
            matched_clause = f"WHEN MATCHED THEN UPDATE SET\n                {assignments}"

        merge_sql = f"""
            MERGE INTO {self.config.qualified(master)} AS target
            USING {self.config.qualified(staging)} AS source
            ON target.{key} = source.{key}
            {matched_clause}
            WHEN NOT MATCHED THEN INSERT ({', '.join(quoted)})
            VALUES ({', '.join(f'source.{q}' for q in quoted)})
        """

        cursor = self.conn.cursor()
        try:
            cursor.execute(merge_sql)
            counts = _merge_counts(cursor)
            self.conn.commit()
            return counts
        except DatabaseError as e:
            raise MergeError(f"MERGE into {master} failed: {e}") from e
        finally:
            cursor.close()

    def replace_key_table(self, table: str, ids: Sequence[str]) -> None:
        """(Re)create a temporary single-column id table and fill it"""
        qualified = self.config.qualified(table)
        cursor = self.conn.cursor()
        try:
            cursor.execute(f"CREATE OR REPLACE TEMPORARY TABLE {qualified} ({quote_identifier(PRIMARY_KEY)} STRING)")
            insert_sql = f"INSERT INTO {qualified} ({quote_identifier(PRIMARY_KEY)}) VALUES (%s)"
            for i in range(0, len(ids), KEY_BATCH_SIZE):
                cursor.executemany(insert_sql, [(row_id,) for row_id in ids[i:i + KEY_BATCH_SIZE]])
        finally:
            cursor.close()

    def delete_absent_keys(self, master: str, key_table: str) -> int:
        """Anti-join delete: master rows whose id is not in key_table"""
        key = quote_identifier(PRIMARY_KEY)
        return self._delete(master, f"""
            DELETE FROM {self.config.qualified(master)} AS t
            WHERE NOT EXISTS (
                SELECT 1 FROM {self.config.qualified(key_table)} AS k WHERE k.{key} = t.{key}
            )
        """)

    def delete_listed_keys(self, master: str, key_table: str) -> int:
        """Delete master rows whose id is in key_table"""
        key = quote_identifier(PRIMARY_KEY)
        return self._delete(master, f"""
            DELETE FROM {self.config.qualified(master)} AS t
            USING {self.config.qualified(key_table)} AS k
            WHERE k.{key} = t.{key}
        """)

    def _delete(self, master: str, delete_sql: str) -> int:
        cursor = self.conn.cursor()
        try:
            cursor.execute(delete_sql)
            deleted = cursor.rowcount or 0
            self.conn.commit()
            return deleted
        except DatabaseError as e:
            raise MergeError(f"DELETE from {master} failed: {e}") from e
        finally:
            cursor.close()


def _merge_counts(cursor) -> MergeCounts:
    """Read Snowflake's 'number of rows inserted/updated' result row"""
    row = cursor.fetchone()
    if not row:
        return MergeCounts(inserted=cursor.rowcount or 0)
    names = [d[0].lower() for d in (cursor.description or [])]
    values = dict(zip(names, row))
    return MergeCounts(
        inserted=int(values.get('number of rows inserted', 0) or 0),
        updated=int(values.get('number of rows updated', 0) or 0),
    )
