"""
Per-entity sync watermark stored in SYNC_METADATA
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from hubspot_sync.warehouse import SnowflakeWarehouse


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Best-effort UTC datetime from a stored watermark value

    SYNC_METADATA stores TIMESTAMP_NTZ, so naive datetimes are treated as
    UTC. Strings may be ISO-8601 (with or without 'Z') or epoch millis.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        v = str(value).strip()
        if v.isdigit():
            return datetime.fromtimestamp(int(v) / 1000.0, tz=timezone.utc)
        try:
            dt = datetime.fromisoformat(v.replace('Z', '+00:00'))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_utc_ntz(dt: datetime) -> datetime:
    """Convert a datetime to a timezone-naive UTC datetime for TIMESTAMP_NTZ storage."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def epoch_millis(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


class SyncStateTracker:
    def __init__(
        self,
        warehouse: SnowflakeWarehouse,
        table: str,
        lookback_days: int = 30,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.warehouse = warehouse
        self.table = warehouse.config.qualified(table)
        self.lookback = timedelta(days=lookback_days)
        self.clock = clock

    def ensure(self) -> None:
        self.warehouse.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                ENTITY VARCHAR(50) PRIMARY KEY,
                LAST_SYNC_TIMESTAMP TIMESTAMP_NTZ,
                RECORDS_SYNCED INTEGER,
                UPDATED_AT TIMESTAMP_NTZ DEFAULT CURRENT_TIMESTAMP()
            )
        """)

    def stored(self, entity: str) -> Optional[datetime]:
        """The persisted watermark, or None if absent or unparseable"""
        result = self.warehouse.fetchone(
            f"SELECT LAST_SYNC_TIMESTAMP FROM {self.table} WHERE ENTITY = %s",
            (entity,),
        )
        if not result:
            return None
        return parse_timestamp(result[0])

    def get_last(self, entity: str) -> datetime:
        """Last successful sync time, defaulting to now minus the lookback window"""
        last = self.stored(entity)
        if last is None:
            return self.clock() - self.lookback
        return last

    def save(self, entity: str, timestamp: datetime, records_synced: int = 0) -> None:
        """Upsert the watermark as a single MERGE keyed by entity"""
        self.warehouse.execute(f"""
            MERGE INTO {self.table} AS target
            USING (SELECT
                %s AS ENTITY,
                %s::TIMESTAMP_NTZ AS LAST_SYNC_TIMESTAMP,
                %s AS RECORDS_SYNCED
            ) AS source
            ON target.ENTITY = source.ENTITY
            WHEN MATCHED THEN UPDATE SET
                LAST_SYNC_TIMESTAMP = source.LAST_SYNC_TIMESTAMP,
                RECORDS_SYNCED = source.RECORDS_SYNCED,
                UPDATED_AT = CURRENT_TIMESTAMP()
            WHEN NOT MATCHED THEN INSERT (
                ENTITY, LAST_SYNC_TIMESTAMP, RECORDS_SYNCED, UPDATED_AT
            ) VALUES (
                source.ENTITY, source.LAST_SYNC_TIMESTAMP, source.RECORDS_SYNCED, CURRENT_TIMESTAMP()
            )
        """, (entity, as_utc_ntz(timestamp), records_synced))
        self.warehouse.conn.commit()
