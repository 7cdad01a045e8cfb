"""
Metrics Source Service.

Read interface over per-team daily aggregates and hourly activity counts. The
ingestion pipeline that fills these tables is an external collaborator; this
module only appends validated samples and reads windows back.

Key Features:
- Sample rows -> pandas DataFrame (one column per metric, numeric coercion)
- Trailing N-day averages per metric (current-week and experiment snapshots)
- Daily series per metric (retention-strain trend slopes)
- Distinct sample-day counts (baseline calibration progress)
- Hourly activity window sums (crisis scan)

Window Convention:
    Every window is addressed by its last included day (`as_of`). A 7-day
    window ending 2026-03-08 covers 2026-03-02 .. 2026-03-08.

Dependencies:
- pandas: sample frames and numeric coercion
- teampulse/core/database.py: get_db_pool
- teampulse/sql/metric_queries.py: query builders
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from teampulse.core.database import from_json, get_db_pool, to_json
from teampulse.models.schemas import MetricSample
from teampulse.sql.metric_queries import (
    ACTIVITY_COUNT_COLUMNS,
    get_activity_window_query,
    get_sample_day_count_query,
    get_sample_insert_query,
    get_samples_window_query,
)


logger = logging.getLogger(__name__)

TRAILING_WINDOW_DAYS: int = 7

TREND_WINDOW_DAYS: int = 21


# =============================================================================
# Frame Helpers (pure)
# =============================================================================


def samples_to_frame(rows: Iterable[Any]) -> pd.DataFrame:
    """
    Convert sample rows into a date-indexed DataFrame.

    Args:
        rows: Records with `sample_date` and `metrics` (JSONB or dict).

    Returns:
        DataFrame indexed by sample_date, one float column per metric key.
        Non-numeric values become NaN. Empty input yields an empty frame.
    """
    records = []
    for row in rows:
        metrics = from_json(row["metrics"], default={}) or {}
        records.append({"sample_date": row["sample_date"], **metrics})

    if not records:
        return pd.DataFrame()

    frame = pd.DataFrame.from_records(records)
    frame = frame.drop_duplicates(subset="sample_date", keep="first")
    frame = frame.set_index("sample_date").sort_index()

    for column in frame.columns:
        frame[column] = pd.to_numeric(frame[column], errors="coerce")

    return frame


def frame_averages(
    frame: pd.DataFrame,
    metrics: Iterable[str]
) -> Dict[str, Optional[float]]:
    """
    Mean of each metric over the frame, ignoring missing values.

    Returns:
        Metric key -> mean, or None when the metric has no observations.
    """
    averages: Dict[str, Optional[float]] = {}
    for metric in metrics:
        if frame.empty or metric not in frame.columns:
            averages[metric] = None
            continue
        values = frame[metric].dropna()
        averages[metric] = float(values.mean()) if len(values) > 0 else None
    return averages


def frame_series(frame: pd.DataFrame, metric: str) -> List[float]:
    """Chronological non-missing values of one metric."""
    if frame.empty or metric not in frame.columns:
        return []
    return [float(v) for v in frame[metric].dropna().tolist()]


# =============================================================================
# Daily Samples
# =============================================================================


async def fetch_sample_frame(team_id: str, as_of: date, days: int) -> pd.DataFrame:
    """
    Load the `days`-day window ending on `as_of` (inclusive) as a DataFrame.

    Args:
        team_id: Team identifier.
        as_of: Last day included in the window.
        days: Window length in days.
    """
    window_start = as_of - timedelta(days=days - 1)
    window_end = as_of + timedelta(days=1)

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(get_samples_window_query(), team_id, window_start, window_end)

    return samples_to_frame(rows)


async def get_trailing_averages(
    team_id: str,
    as_of: date,
    metrics: Iterable[str],
    days: int = TRAILING_WINDOW_DAYS
) -> Dict[str, Optional[float]]:
    """
    Trailing average of each metric over the window ending on `as_of`.

    Used for the weekly "current" values and for experiment snapshots.
    """
    frame = await fetch_sample_frame(team_id, as_of, days)
    return frame_averages(frame, metrics)


async def get_daily_series(
    team_id: str,
    as_of: date,
    metrics: Iterable[str],
    days: int = TREND_WINDOW_DAYS
) -> Dict[str, List[float]]:
    """Chronological daily values of each metric over the window ending on `as_of`."""
    frame = await fetch_sample_frame(team_id, as_of, days)
    return {metric: frame_series(frame, metric) for metric in metrics}


async def get_sample_day_count(team_id: str, as_of: date) -> int:
    """Distinct sample days observed up to and including `as_of`."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            get_sample_day_count_query(),
            team_id,
            as_of + timedelta(days=1)
        )
    if row is None or row["day_count"] is None:
        return 0
    return int(row["day_count"])


async def record_samples(samples: List[MetricSample]) -> int:
    """
    Append daily samples; duplicates for an existing (team, day) are ignored.

    Args:
        samples: Validated samples.

    Returns:
        Number of samples submitted.
    """
    if not samples:
        return 0

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        await conn.executemany(
            get_sample_insert_query(),
            [
                (sample.team_id, sample.sample_date, to_json(sample.metrics))
                for sample in samples
            ]
        )

    logger.info(f"Recorded {len(samples)} metric samples")
    return len(samples)


# =============================================================================
# Hourly Activity (Crisis Scan)
# =============================================================================


async def fetch_activity_window(
    team_id: str,
    window_start: datetime,
    window_end: datetime
) -> Optional[Dict[str, float]]:
    """
    Sum hourly activity counts for a team between two timestamps.

    Returns:
        Dict of summed counts plus `sentiment_score` (mean, may be None) and
        `hours_observed`; None when no hourly rows exist in the window.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(get_activity_window_query(), team_id, window_start, window_end)

    if row is None or not row["hours_observed"]:
        return None

    activity: Dict[str, float] = {
        column: float(row[column] or 0) for column in ACTIVITY_COUNT_COLUMNS
    }
    activity["sentiment_score"] = (
        float(row["sentiment_score"]) if row["sentiment_score"] is not None else None
    )
    activity["hours_observed"] = int(row["hours_observed"])
    return activity


__all__ = [
    "TRAILING_WINDOW_DAYS",
    "TREND_WINDOW_DAYS",
    "samples_to_frame",
    "frame_averages",
    "frame_series",
    "fetch_sample_frame",
    "get_trailing_averages",
    "get_daily_series",
    "get_sample_day_count",
    "record_samples",
    "fetch_activity_window",
]
