"""
Metric source queries.

Parameterized SQL for the read side of the metrics source: daily team samples
(the weekly diagnosis input) and hourly activity counts (the crisis scan input).

Tables:
    metric_sample: (team_id, sample_date, metrics JSONB), one row per team per day
    activity_hourly: (team_id, hour_start, message_count, negative_reactions,
        abandoned_threads, meeting_cancellations, meeting_invites,
        meeting_declines, sentiment_score, calendar_purges)

All queries use asyncpg positional placeholders ($1, $2, ...).
"""

from typing import List


# =============================================================================
# Daily Samples
# =============================================================================


def get_samples_window_query() -> str:
    """
    Select a team's daily samples in a half-open date window.

    Parameters:
        $1: team_id
        $2: window start (inclusive)
        $3: window end (exclusive)

    Returns:
        str: Query returning (sample_date, metrics) ordered by date.
    """
    return """
        SELECT sample_date, metrics
        FROM metric_sample
        WHERE team_id = $1
          AND sample_date >= $2
          AND sample_date < $3
        ORDER BY sample_date ASC
    """


def get_sample_day_count_query() -> str:
    """
    Count distinct sample days a team has up to (excluding) a date.

    Parameters:
        $1: team_id
        $2: as-of date (exclusive)
    """
    return """
        SELECT COUNT(DISTINCT sample_date) AS day_count,
               MIN(sample_date) AS first_date
        FROM metric_sample
        WHERE team_id = $1
          AND sample_date < $2
    """


def get_sample_insert_query() -> str:
    """
    Append one daily sample.

    Samples are append-only: a second write for the same (team, day) is ignored.

    Parameters:
        $1: team_id
        $2: sample_date
        $3: metrics JSONB
    """
    return """
        INSERT INTO metric_sample (team_id, sample_date, metrics, created_at)
        VALUES ($1, $2, $3::jsonb, NOW())
        ON CONFLICT (team_id, sample_date) DO NOTHING
    """


# =============================================================================
# Hourly Activity (Crisis Scan)
# =============================================================================

# Columns summed over a window; rates are derived in the crisis service
ACTIVITY_COUNT_COLUMNS: List[str] = [
    "message_count",
    "negative_reactions",
    "abandoned_threads",
    "meeting_cancellations",
    "meeting_invites",
    "meeting_declines",
    "calendar_purges",
]


def get_activity_window_query() -> str:
    """
    Aggregate hourly activity for a team between two timestamps.

    Parameters:
        $1: team_id
        $2: window start (inclusive)
        $3: window end (exclusive)

    Returns:
        str: Query returning summed counts, the mean sentiment and the number of
            hours with data.
    """
    sums = ",\n               ".join(
        f"COALESCE(SUM({column}), 0) AS {column}" for column in ACTIVITY_COUNT_COLUMNS
    )
    return f"""
        SELECT {sums},
               AVG(sentiment_score) AS sentiment_score,
               COUNT(*) AS hours_observed
        FROM activity_hourly
        WHERE team_id = $1
          AND hour_start >= $2
          AND hour_start < $3
    """
