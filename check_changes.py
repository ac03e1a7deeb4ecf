#!/usr/bin/env python3
"""
Lightweight change detection for scheduled runs

Equivalent to `hubspot-sync check`. Writes has_changes/changed to
$GITHUB_OUTPUT so a workflow can skip the sync step when nothing changed.
"""

from hubspot_sync.cli import cli

if __name__ == '__main__':
    cli(['check'])
