"""
SQL Query Module for the TeamPulse backend.

Provides parameterized SQL for the metrics source read side. Store-specific
upserts live next to the service that owns the table; the full DDL with every
ON CONFLICT target is in schema.sql.

Example usage:
    from teampulse.sql import get_samples_window_query

    rows = await conn.fetch(get_samples_window_query(), team_id, start, end)
"""

from teampulse.sql.metric_queries import (
    ACTIVITY_COUNT_COLUMNS,
    get_activity_window_query,
    get_sample_day_count_query,
    get_sample_insert_query,
    get_samples_window_query,
)

__all__ = [
    "ACTIVITY_COUNT_COLUMNS",
    "get_activity_window_query",
    "get_sample_day_count_query",
    "get_sample_insert_query",
    "get_samples_window_query",
]
