#!/usr/bin/env python3
"""
Remove contacts deleted in HubSpot from Snowflake

Equivalent to `hubspot-sync cleanup`; pass --strategy archived to delete
only the ids HubSpot reports as archived.
"""

import sys

from hubspot_sync.cli import cli

if __name__ == '__main__':
    cli(['cleanup'] + sys.argv[1:])
