"""
Stage-and-merge loader

Rows are written to a staging table in bounded batches, then applied to the
master table with one MERGE. Rejected rows are reported, not fatal; the
MERGE is all-or-nothing.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from hubspot_sync.evolve import ensure_table
from hubspot_sync.schema import PRIMARY_KEY, ColumnSpec, Row
from hubspot_sync.warehouse import InsertResult, RowError

MAX_ERRORS_SHOWN = 3


@dataclass
class LoadResult:
    staged: int = 0
    inserted: int = 0
    updated: int = 0
    errors: List[RowError] = field(default_factory=list)
    no_changes: bool = False

    @property
    def upserted(self) -> int:
        return self.inserted + self.updated


def dedupe_rows(rows: Sequence[Row]) -> List[Row]:
    """One row per id, the last occurrence winning"""
    by_id: Dict[str, Row] = {}
    for row in rows:
        by_id[row[PRIMARY_KEY]] = row
    return list(by_id.values())


class StageAndMergeLoader:
    def __init__(self, warehouse, master_table: str, staging_table: str, batch_size: int = 500):
        self.warehouse = warehouse
        self.master_table = master_table
        self.staging_table = staging_table
        self.batch_size = batch_size

    def load(self, rows: Sequence[Row], specs: Sequence[ColumnSpec]) -> LoadResult:
        if not rows:
            print("No new or updated records to load")
            return LoadResult(no_changes=True)

        ensure_table(self.warehouse, self.master_table, specs)
        ensure_table(self.warehouse, self.staging_table, specs)
        columns = [spec.name for spec in specs]

        print(f"Truncating staging table {self.staging_table}...")
        self.warehouse.truncate(self.staging_table)
        try:
            staged = self.stage(dedupe_rows(rows), columns)
            if staged.errors:
                print(f"⚠️  {len(staged.errors)} row(s) rejected by the warehouse and excluded from the merge")
            if not staged.inserted:
                print("⚠️  Nothing staged, skipping merge")
                return LoadResult(errors=staged.errors)

            print(f"Merging {staged.inserted} staged records into {self.master_table}...")
            counts = self.warehouse.merge(self.master_table, self.staging_table, columns)
            print(f"✓ Merged {counts.upserted} records ({counts.inserted} inserted, {counts.updated} updated)")
            return LoadResult(
                staged=staged.inserted,
                inserted=counts.inserted,
                updated=counts.updated,
                errors=staged.errors,
            )
        finally:
            self.warehouse.truncate(self.staging_table)

    def stage(self, rows: Sequence[Row], columns: Sequence[str]) -> InsertResult:
        """Insert rows into staging batch by batch, collecting row-level errors"""
        total = InsertResult()
        batch_count = (len(rows) + self.batch_size - 1) // self.batch_size
        print(f"Inserting {len(rows)} records into staging table in {batch_count} batch(es)...")

        for number, start in enumerate(range(0, len(rows), self.batch_size), start=1):
            batch = rows[start:start + self.batch_size]
            result = self.warehouse.insert_batch(self.staging_table, columns, batch)
            if result.partial:
                print(f"  ⚠️  Batch {number} had {len(result.errors)} row-level error(s); first few:")
                for error in result.errors[:MAX_ERRORS_SHOWN]:
                    print(f"     id={error.row_id}: {error.reason[:200]}")
            total.extend(result)

        return total
