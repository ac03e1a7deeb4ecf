"""
Command line entry points: sync, cleanup, check
"""

import sys
import traceback
from datetime import datetime

import click

from hubspot_sync.check import check_changes, write_github_output
from hubspot_sync.config import Config
from hubspot_sync.errors import ConfigError
from hubspot_sync.hubspot import HubSpotClient
from hubspot_sync.reconcile import STRATEGIES, DeletionReconciler
from hubspot_sync.sync import print_section, run_sync
from hubspot_sync.sync_state import SyncStateTracker
from hubspot_sync.warehouse import SnowflakeWarehouse


def load_config() -> Config:
    try:
        return Config.from_env()
    except ConfigError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(2)


def fail(label: str, error: Exception) -> None:
    click.echo(f"\n❌ {label} failed: {error}", err=True)
    traceback.print_exc()
    sys.exit(1)


@click.group()
def cli():
    """HubSpot to Snowflake incremental sync"""


@cli.command()
def sync():
    """Incrementally upsert changed contacts into Snowflake."""
    config = load_config()
    print("=" * 70)
    print("HUBSPOT TO SNOWFLAKE SYNC")
    print("=" * 70)
    print(f"Started at: {datetime.now()}")
    print(f"Target: {config.qualified(config.master_table)}")

    try:
        print("\nConnecting to Snowflake...")
        with SnowflakeWarehouse.connect(config) as warehouse:
            print("✓ Connected successfully")
            summary = run_sync(config, HubSpotClient(config), warehouse)
    except Exception as e:
        fail('Sync', e)

    print_section("SUMMARY")
    for line in summary.lines():
        print(line)
    print(f"Completed at: {datetime.now()}")


@cli.command()
@click.option(
    '--strategy',
    type=click.Choice(STRATEGIES),
    default='live',
    show_default=True,
    help="live: delete every row whose id HubSpot no longer lists; archived: delete ids HubSpot reports archived",
)
def cleanup(strategy):
    """Delete contacts removed or archived in HubSpot."""
    config = load_config()
    print("=" * 70)
    print(f"HUBSPOT DELETION CLEANUP ({strategy})")
    print("=" * 70)

    try:
        with SnowflakeWarehouse.connect(config) as warehouse:
            reconciler = DeletionReconciler(HubSpotClient(config), warehouse, config.entity, config.master_table)
            deleted = reconciler.reconcile(strategy)
    except Exception as e:
        fail('Cleanup', e)

    print_section("SUMMARY")
    print(f"✓ Deleted {deleted} {config.entity} from {config.qualified(config.master_table)}")


@cli.command()
def check():
    """Report whether any contacts changed since the last sync."""
    config = load_config()
    print("=" * 70)
    print("CHECKING FOR HUBSPOT CHANGES")
    print("=" * 70)

    try:
        with SnowflakeWarehouse.connect(config) as warehouse:
            tracker = SyncStateTracker(warehouse, config.sync_table, config.lookback_days)
            tracker.ensure()
            report = check_changes(config, HubSpotClient(config), tracker)
    except Exception as e:
        fail('Change check', e)

    print(f"  {config.entity.capitalize()} last synced: {report.since}")
    print(f"  {config.entity.capitalize()} changed: {report.changed}")
    if report.has_changes:
        print("✅ CHANGES DETECTED - Sync needed")
    else:
        print("⏭️  NO CHANGES - Sync can be skipped")
    write_github_output(report)
    print(f"\nJSON Output: {report.to_json()}")


def main():
    cli()


if __name__ == '__main__':
    main()
