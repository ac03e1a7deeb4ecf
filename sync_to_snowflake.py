#!/usr/bin/env python3
"""
Incremental HubSpot contacts -> Snowflake sync

Equivalent to `hubspot-sync sync`; kept so schedulers can run the script directly.
"""

from hubspot_sync.cli import cli

if __name__ == '__main__':
    cli(['sync'])
