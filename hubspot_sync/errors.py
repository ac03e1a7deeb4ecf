"""
Error types raised by the sync pipeline

Anything derived from SyncError is fatal for the current run. Row-level
insert failures are not exceptions; they come back as RowError entries
inside an InsertResult (see hubspot_sync.warehouse).
"""

from typing import Optional


class SyncError(Exception):
    """Base class for fatal sync errors"""


class ConfigError(SyncError):
    """Missing or invalid environment configuration"""


class SourceApiError(SyncError):
    """HubSpot request failed (auth, bad request, transport or exhausted retries)"""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class SchemaConflictError(SyncError):
    """A column already exists in the warehouse with a different type"""


class MergeError(SyncError):
    """MERGE or DELETE against the master table failed"""
