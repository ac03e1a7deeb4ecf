"""
Deletion reconciliation - remove master rows for contacts gone from HubSpot

Two strategies:
    live      fetch every live id and anti-join delete everything else
              (authoritative, O(total contacts))
    archived  fetch only archived ids and delete exactly those
              (cheaper, relies on HubSpot reporting every archive)
"""

from hubspot_sync.hubspot import HubSpotClient

STRATEGIES = ('live', 'archived')


class DeletionReconciler:
    def __init__(self, client: HubSpotClient, warehouse, entity: str, master_table: str):
        self.client = client
        self.warehouse = warehouse
        self.entity = entity
        self.master_table = master_table
        self.key_table = f'{master_table}_RECONCILE_IDS'

    def reconcile(self, strategy: str = 'live') -> int:
        """Delete stale master rows; returns the engine-reported deleted count"""
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown reconciliation strategy: {strategy}")
        if not self.warehouse.table_columns(self.master_table):
            print(f"⚠️  {self.master_table} does not exist yet, nothing to reconcile")
            return 0
        if strategy == 'archived':
            return self._delete_archived()
        return self._delete_missing()

    def _delete_missing(self) -> int:
        print(f"Fetching live HubSpot {self.entity} IDs...")
        live_ids = self.client.list_object_ids(self.entity)
        print(f"✓ Retrieved {len(live_ids)} live {self.entity} IDs")

        if not live_ids:
            print("⚠️  No live IDs found, skipping delete")
            return 0

        print("Creating temporary table with live IDs...")
        self.warehouse.replace_key_table(self.key_table, sorted(set(live_ids)))

        print(f"Deleting removed {self.entity} from {self.master_table}...")
        deleted = self.warehouse.delete_absent_keys(self.master_table, self.key_table)
        print(f"✓ Deleted {deleted} {self.entity}")
        return deleted

    def _delete_archived(self) -> int:
        print(f"Fetching archived HubSpot {self.entity} IDs...")
        archived_ids = self.client.list_object_ids(self.entity, archived=True)
        print(f"✓ Retrieved {len(archived_ids)} archived {self.entity} IDs")

        if not archived_ids:
            print("✓ No archived records, nothing to delete")
            return 0

        self.warehouse.replace_key_table(self.key_table, sorted(set(archived_ids)))
        deleted = self.warehouse.delete_listed_keys(self.master_table, self.key_table)
        print(f"✓ Deleted {deleted} archived {self.entity}")
        return deleted
