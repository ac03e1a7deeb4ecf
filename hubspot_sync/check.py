"""
Lightweight change detection

Counts records modified since the stored watermark without touching the
master table, so a scheduler can skip a full sync when nothing changed.
"""

import json
import os
from dataclasses import asdict, dataclass
from typing import Optional

from hubspot_sync.config import Config
from hubspot_sync.hubspot import HubSpotClient
from hubspot_sync.sync_state import SyncStateTracker, epoch_millis, utc_now


@dataclass
class ChangeReport:
    entity: str
    since: str
    changed: int
    checked_at: str

    @property
    def has_changes(self) -> bool:
        return self.changed > 0

    def to_json(self) -> str:
        return json.dumps(dict(asdict(self), has_changes=self.has_changes))


def check_changes(config: Config, client: HubSpotClient, tracker: SyncStateTracker) -> ChangeReport:
    stored = tracker.stored(config.entity)
    if stored is None:
        # Never synced: report a change so the first sync always runs
        print(f"  No last sync timestamp for {config.entity}, assuming changes exist")
        return ChangeReport(config.entity, 'never', 1, utc_now().isoformat())

    changed = client.count_modified_since(config.entity, config.modified_date_property, epoch_millis(stored))
    return ChangeReport(config.entity, stored.isoformat(), changed, utc_now().isoformat())


def write_github_output(report: ChangeReport, path: Optional[str] = None) -> bool:
    """Append step outputs for GitHub Actions when $GITHUB_OUTPUT is set"""
    path = path or os.environ.get('GITHUB_OUTPUT')
    if not path:
        return False
    with open(path, 'a') as f:
        f.write(f"has_changes={str(report.has_changes).lower()}\n")
        f.write(f"changed={report.changed}\n")
    return True
