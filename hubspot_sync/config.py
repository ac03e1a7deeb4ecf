"""
Configuration from environment variables

Everything the pipeline needs is collected once into a Config and passed
explicitly to each component, so nothing talks to HubSpot or Snowflake at
import time.
"""

import os
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from hubspot_sync.errors import ConfigError

HUBSPOT_API_URL = 'https://api.hubapi.com'

# Search windows start at 6 hours and halve while a window exceeds the
# 10,000-result search cap
DEFAULT_SEARCH_WINDOW_MS = 6 * 60 * 60 * 1000

# Unquoted Snowflake identifiers (database, schema, fixed table names)
_IDENTIFIER_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_$]*$')

REQUIRED_VARS = (
    'HUBSPOT_API_KEY',
    'SNOWFLAKE_ACCOUNT',
    'SNOWFLAKE_USER',
    'SNOWFLAKE_PASSWORD',
    'SNOWFLAKE_WAREHOUSE',
)


@dataclass(frozen=True)
class Config:
    hubspot_api_key: str
    snowflake_account: str
    snowflake_user: str
    snowflake_password: str
    snowflake_warehouse: str
    snowflake_database: str = 'HUBSPOT_DATA'
    snowflake_schema: str = 'PUBLIC'
    master_table: str = 'CONTACTS'
    staging_table: str = 'CONTACTS_STAGING'
    sync_table: str = 'SYNC_METADATA'
    entity: str = 'contacts'
    hubspot_api_url: str = HUBSPOT_API_URL
    properties_per_request: int = 100
    load_batch_size: int = 500
    lookback_days: int = 30
    max_retries: int = 5
    timeout_seconds: int = 30
    search_window_ms: int = DEFAULT_SEARCH_WINDOW_MS
    search_window_min_ms: int = 1000

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        """Build a Config from the process environment (after loading .env)

        Raises ConfigError listing every missing required variable at once.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        missing_vars = [var for var in REQUIRED_VARS if not environ.get(var)]
        if missing_vars:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing_vars)}")

        master_table = environ.get('SNOWFLAKE_TABLE') or 'CONTACTS'
        values: Dict[str, object] = {
            'hubspot_api_key': environ['HUBSPOT_API_KEY'],
            'snowflake_account': environ['SNOWFLAKE_ACCOUNT'],
            'snowflake_user': environ['SNOWFLAKE_USER'],
            'snowflake_password': environ['SNOWFLAKE_PASSWORD'],
            'snowflake_warehouse': environ['SNOWFLAKE_WAREHOUSE'],
            'snowflake_database': environ.get('SNOWFLAKE_DATABASE') or 'HUBSPOT_DATA',
            'snowflake_schema': environ.get('SNOWFLAKE_SCHEMA') or 'PUBLIC',
            'master_table': master_table,
            'staging_table': environ.get('SNOWFLAKE_STAGING_TABLE') or f'{master_table}_STAGING',
            'sync_table': environ.get('SNOWFLAKE_SYNC_TABLE') or 'SYNC_METADATA',
            'entity': environ.get('HUBSPOT_ENTITY') or 'contacts',
            'hubspot_api_url': (environ.get('HUBSPOT_API_URL') or HUBSPOT_API_URL).rstrip('/'),
            'properties_per_request': _int_option(environ, 'HUBSPOT_PROPERTIES_PER_REQUEST', 100, minimum=0),
            'load_batch_size': _int_option(environ, 'LOAD_BATCH_SIZE', 500, minimum=1),
            'lookback_days': _int_option(environ, 'SYNC_LOOKBACK_DAYS', 30, minimum=1),
            'max_retries': _int_option(environ, 'HUBSPOT_MAX_RETRIES', 5, minimum=1),
            'timeout_seconds': _int_option(environ, 'HUBSPOT_TIMEOUT_SECONDS', 30, minimum=1),
            'search_window_ms': _int_option(environ, 'HUBSPOT_SEARCH_WINDOW_MS', DEFAULT_SEARCH_WINDOW_MS, minimum=1),
            'search_window_min_ms': _int_option(environ, 'HUBSPOT_SEARCH_WINDOW_MIN_MS', 1000, minimum=1),
        }

        for key in ('snowflake_database', 'snowflake_schema', 'master_table', 'staging_table', 'sync_table'):
            if not _IDENTIFIER_RE.match(str(values[key])):
                raise ConfigError(f"Invalid Snowflake identifier for {key}: {values[key]!r}")
        if values['master_table'].upper() == values['staging_table'].upper():
            raise ConfigError("Staging table must differ from the master table")

        return cls(**values)

    def qualified(self, table: str) -> str:
        """Fully qualified DATABASE.SCHEMA.TABLE name"""
        return f'{self.snowflake_database}.{self.snowflake_schema}.{table}'

    @property
    def modified_date_property(self) -> str:
        # Contacts use 'lastmodifieddate', every other object 'hs_lastmodifieddate'
        return 'lastmodifieddate' if self.entity == 'contacts' else 'hs_lastmodifieddate'


def _int_option(environ: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value
