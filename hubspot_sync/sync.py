"""
Incremental sync pipeline

catalogue -> column specs -> watermark -> extract -> transform -> evolve/load -> watermark

The watermark written at the end is the time captured before the first
HubSpot request, and it is written only after the load succeeded, so a
failed run simply redoes the same window next time.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from hubspot_sync.config import Config
from hubspot_sync.extract import extract_records
from hubspot_sync.hubspot import HubSpotClient
from hubspot_sync.load import LoadResult, StageAndMergeLoader
from hubspot_sync.schema import build_column_specs
from hubspot_sync.sync_state import SyncStateTracker, utc_now
from hubspot_sync.transform import transform_records


@dataclass
class SyncSummary:
    entity: str
    since: datetime
    watermark: datetime
    fetched: int
    columns: int
    load: LoadResult

    def lines(self):
        if self.load.no_changes:
            yield f"✓ No changes for {self.entity} since {self.since.isoformat()} ({self.columns} columns in schema)"
            return
        yield f"✓ Fetched {self.fetched} {self.entity}"
        yield f"✓ Upserted {self.load.upserted} ({self.load.inserted} inserted, {self.load.updated} updated)"
        if self.load.errors:
            yield f"⚠️  {len(self.load.errors)} row(s) rejected"
        yield f"✓ {self.columns} columns in schema"
        yield f"✓ Watermark advanced to {self.watermark.isoformat()}"


def print_section(title: str, char: str = '=') -> None:
    print("\n" + char * 70)
    print(title)
    print(char * 70)


def run_sync(
    config: Config,
    client: HubSpotClient,
    warehouse,
    clock: Callable[[], datetime] = utc_now,
    tracker: Optional[SyncStateTracker] = None,
) -> SyncSummary:
    entity = config.entity
    started_at = clock()

    warehouse.initialize()
    tracker = tracker or SyncStateTracker(warehouse, config.sync_table, config.lookback_days, clock)
    tracker.ensure()

    print_section(f"SYNCING {entity.upper()}")

    print("Fetching property catalogue from HubSpot...")
    properties = client.fetch_properties(entity)
    specs = build_column_specs(properties)
    print(f"✓ {len(properties)} properties -> {len(specs)} columns")

    since = tracker.get_last(entity)
    print(f"Last sync timestamp: {since.isoformat()}")
    print(f"  (This will fetch {entity} modified after this time)")

    print(f"Fetching {entity} from HubSpot...")
    records = extract_records(
        client,
        entity,
        properties,
        since,
        modified_property=config.modified_date_property,
        properties_per_request=config.properties_per_request,
        until=started_at,
        window_ms=config.search_window_ms,
        min_window_ms=config.search_window_min_ms,
    )
    print(f"✓ Fetched {len(records)} {entity} to sync")

    rows = transform_records(records, specs)

    loader = StageAndMergeLoader(warehouse, config.master_table, config.staging_table, config.load_batch_size)
    result = loader.load(rows, specs)

    tracker.save(entity, started_at, result.upserted)

    return SyncSummary(
        entity=entity,
        since=since,
        watermark=started_at,
        fetched=len(records),
        columns=len(specs),
        load=result,
    )
