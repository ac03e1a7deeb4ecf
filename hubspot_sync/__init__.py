"""
HubSpot to Snowflake incremental sync with self-expanding schema
"""

__version__ = '1.0.0'
