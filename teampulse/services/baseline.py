"""
Baseline Engine Service.

Builds and stores per-team statistical baselines from daily metric samples. The
baseline is the comparison point for every deviation assessment and weekly risk
score, so it must not silently follow the drift it is meant to expose.

Key Features:
- Per-metric distribution summary: mean, population std, median, p25/p75, min, max
- Calibration: usable from 7 distinct sample days, complete at 30
- Confidence: 50% calibration progress + 50% connected data sources
- Versioned storage with a single current version per team
- Explicit recalculation onto a longer window (default 90 days)

Calibration Lifecycle:
    day < 7        no baseline; assessments short-circuit with baseline_established=False
    7 <= day < 30  status=calibrating; refreshed from the 30-day window on each diagnosis
    day >= 30      status=established; frozen until recalculate_baseline() is called

Confidence Mapping:
    score = round(100 * (0.5 * min(days / 30, 1) + 0.5 * min(sources / required, 1)))
    Low < 40 <= Medium < 75 <= High

Dependencies:
- numpy: distribution statistics
- teampulse/services/metrics_source.py: sample frames and day counts
- teampulse/services/team_directory.py: connected source counts
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from teampulse.core.config import get_settings
from teampulse.core.database import from_json, get_db_pool, to_json
from teampulse.models.enums import BaselineConfidence, BaselineStatus
from teampulse.models.schemas import Baseline, MetricStats
from teampulse.services.metrics_source import fetch_sample_frame, get_sample_day_count
from teampulse.services.team_directory import get_team_profile


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Calibration day is reported on a 0-30 scale regardless of the window used
CALIBRATION_DAYS: int = 30

CONFIDENCE_MEDIUM_MIN: int = 40

CONFIDENCE_HIGH_MIN: int = 75


class InsufficientBaselineDataError(ValueError):
    """Raised when an explicit recalculation has fewer sample days than required."""


# =============================================================================
# Statistics (pure)
# =============================================================================


def compute_metric_stats(values: Iterable[float]) -> Optional[MetricStats]:
    """
    Summarize one metric's daily values.

    Args:
        values: Daily values; NaN entries are ignored.

    Returns:
        MetricStats with population std (ddof=0) and linearly interpolated
        quartiles, or None when no finite values remain.

    Example:
        >>> stats = compute_metric_stats([10, 20, 30, 40])
        >>> stats.median, stats.p25, stats.p75
        (25.0, 17.5, 32.5)
    """
    values_array = np.asarray(list(values), dtype=np.float64)
    values_array = values_array[np.isfinite(values_array)]

    if values_array.size == 0:
        return None

    return MetricStats(
        mean=float(np.mean(values_array)),
        std_dev=float(np.std(values_array)),
        median=float(np.median(values_array)),
        p25=float(np.percentile(values_array, 25)),
        p75=float(np.percentile(values_array, 75)),
        min=float(np.min(values_array)),
        max=float(np.max(values_array)),
        sample_count=int(values_array.size),
    )


def compute_baseline_confidence(
    days_elapsed: int,
    connected_sources: int,
    required_sources: int
) -> Tuple[BaselineConfidence, int]:
    """
    Combine calibration progress and source coverage into a confidence level.

    Args:
        days_elapsed: Distinct sample days observed.
        connected_sources: Telemetry sources connected for the team.
        required_sources: Sources needed for full coverage.

    Returns:
        Tuple of (level, score 0-100).
    """
    days_factor = min(max(days_elapsed, 0) / CALIBRATION_DAYS, 1.0)
    if required_sources > 0:
        source_factor = min(max(connected_sources, 0) / required_sources, 1.0)
    else:
        source_factor = 1.0

    score = int(round(100 * (0.5 * days_factor + 0.5 * source_factor)))

    if score >= CONFIDENCE_HIGH_MIN:
        return BaselineConfidence.HIGH, score
    if score >= CONFIDENCE_MEDIUM_MIN:
        return BaselineConfidence.MEDIUM, score
    return BaselineConfidence.LOW, score


def calculate_delta_pct(current: Optional[float], baseline: Optional[float]) -> Optional[float]:
    """
    Percent change of `current` against `baseline`.

    Returns None when either value is missing or the baseline is zero.

    Example:
        >>> round(calculate_delta_pct(25.0, 15.0), 1)
        66.7
    """
    if current is None or baseline is None or baseline == 0:
        return None
    return (current - baseline) / abs(baseline) * 100


def is_outside_band(value: Optional[float], stats: Optional[MetricStats]) -> bool:
    """True when `value` falls outside the baseline interquartile band."""
    if value is None or stats is None:
        return False
    return value < stats.p25 or value > stats.p75


def build_baseline(
    team_id: str,
    frame: pd.DataFrame,
    window_start: date,
    window_end: date,
    days_elapsed: int,
    connected_sources: int,
    required_sources: int,
    min_days: int,
    version: int = 1,
    established: Optional[bool] = None
) -> Optional[Baseline]:
    """
    Build a baseline from a sample frame.

    Args:
        team_id: Team identifier.
        frame: Date-indexed sample frame (see metrics_source.samples_to_frame).
        window_start: First day of the window.
        window_end: Last day of the window.
        days_elapsed: Total distinct sample days the team has (calibration progress).
        connected_sources: Connected telemetry sources.
        required_sources: Sources needed for full confidence.
        min_days: Minimum distinct days in the frame.
        version: Version number to assign.
        established: Force the status; derived from days_elapsed when None.

    Returns:
        Baseline, or None when the frame has fewer than `min_days` days.
    """
    sample_days = 0 if frame.empty else int(frame.dropna(how="all").shape[0])
    if sample_days < min_days:
        return None

    metrics: Dict[str, MetricStats] = {}
    for column in frame.columns:
        stats = compute_metric_stats(frame[column].tolist())
        if stats is not None:
            metrics[str(column)] = stats

    confidence, confidence_score = compute_baseline_confidence(
        days_elapsed, connected_sources, required_sources
    )

    if established is None:
        established = days_elapsed >= CALIBRATION_DAYS

    return Baseline(
        team_id=team_id,
        version=version,
        window_start=window_start,
        window_end=window_end,
        window_days=(window_end - window_start).days + 1,
        metrics=metrics,
        confidence=confidence,
        confidence_score=confidence_score,
        calibration_day=min(days_elapsed, CALIBRATION_DAYS),
        status=BaselineStatus.ESTABLISHED if established else BaselineStatus.CALIBRATING,
        sample_count=sample_days,
        is_current=True,
    )


# =============================================================================
# Persistence
# =============================================================================

_BASELINE_COLUMNS = """
    team_id, version, window_start, window_end, window_days, metrics,
    confidence, confidence_score, calibration_day, status, sample_count,
    is_current, created_at
"""


def _row_to_baseline(row: Any) -> Baseline:
    metrics = from_json(row["metrics"], default={}) or {}
    return Baseline(
        team_id=row["team_id"],
        version=row["version"],
        window_start=row["window_start"],
        window_end=row["window_end"],
        window_days=row["window_days"],
        metrics={key: MetricStats(**value) for key, value in metrics.items()},
        confidence=row["confidence"],
        confidence_score=row["confidence_score"],
        calibration_day=row["calibration_day"],
        status=row["status"],
        sample_count=row["sample_count"],
        is_current=row["is_current"],
        created_at=row["created_at"],
    )


async def _upsert_baseline(conn: Any, baseline: Baseline) -> None:
    await conn.execute(
        """
        INSERT INTO team_baseline (
            team_id, version, window_start, window_end, window_days, metrics,
            confidence, confidence_score, calibration_day, status,
            sample_count, is_current, created_at, updated_at
        ) VALUES (
            $1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9, $10, $11, TRUE, NOW(), NOW()
        )
        ON CONFLICT (team_id, version) DO UPDATE SET
            window_start = EXCLUDED.window_start,
            window_end = EXCLUDED.window_end,
            window_days = EXCLUDED.window_days,
            metrics = EXCLUDED.metrics,
            confidence = EXCLUDED.confidence,
            confidence_score = EXCLUDED.confidence_score,
            calibration_day = EXCLUDED.calibration_day,
            status = EXCLUDED.status,
            sample_count = EXCLUDED.sample_count,
            is_current = TRUE,
            updated_at = NOW()
        """,
        baseline.team_id,
        baseline.version,
        baseline.window_start,
        baseline.window_end,
        baseline.window_days,
        to_json({key: stats.model_dump() for key, stats in baseline.metrics.items()}),
        baseline.confidence.value,
        baseline.confidence_score,
        baseline.calibration_day,
        baseline.status.value,
        baseline.sample_count,
    )


async def get_current_baseline(team_id: str) -> Optional[Baseline]:
    """Current baseline version of a team, or None before calibration."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"""
            SELECT {_BASELINE_COLUMNS}
            FROM team_baseline
            WHERE team_id = $1 AND is_current = TRUE
            """,
            team_id
        )
    return _row_to_baseline(row) if row else None


async def list_baseline_versions(team_id: str) -> List[Baseline]:
    """All baseline versions of a team, newest first."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            f"""
            SELECT {_BASELINE_COLUMNS}
            FROM team_baseline
            WHERE team_id = $1
            ORDER BY version DESC
            """,
            team_id
        )
    return [_row_to_baseline(row) for row in rows]


# =============================================================================
# Operations
# =============================================================================


async def ensure_baseline(team_id: str, as_of: date) -> Optional[Baseline]:
    """
    Return the team's usable baseline as of a date.

    An established baseline is returned unchanged. While calibrating, the
    baseline is rebuilt from the default window ending on `as_of` and stored
    under the same version. Returns None while fewer than the minimum number of
    sample days exist.
    """
    settings = get_settings()
    current = await get_current_baseline(team_id)

    if current is not None and current.status == BaselineStatus.ESTABLISHED:
        return current

    days_elapsed = await get_sample_day_count(team_id, as_of)
    if days_elapsed < settings.baseline_min_days:
        logger.info(
            f"Baseline for team {team_id} not yet usable: "
            f"{days_elapsed}/{settings.baseline_min_days} days"
        )
        return current

    window_days = settings.baseline_window_days
    frame = await fetch_sample_frame(team_id, as_of, window_days)

    profile = await get_team_profile(team_id)
    connected_sources = profile.connected_sources if profile else 0

    baseline = build_baseline(
        team_id=team_id,
        frame=frame,
        window_start=as_of - timedelta(days=window_days - 1),
        window_end=as_of,
        days_elapsed=days_elapsed,
        connected_sources=connected_sources,
        required_sources=settings.required_data_sources,
        min_days=settings.baseline_min_days,
        version=current.version if current else 1,
    )

    if baseline is None:
        return current

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        await _upsert_baseline(conn, baseline)

    logger.info(
        f"Baseline v{baseline.version} for team {team_id}: {baseline.status.value}, "
        f"day {baseline.calibration_day}, confidence {baseline.confidence.value}"
    )
    return baseline


async def recalculate_baseline(
    team_id: str,
    as_of: date,
    window_days: Optional[int] = None
) -> Baseline:
    """
    Explicitly rebuild a team's baseline onto a (longer) rolling window.

    Writes a new version and retires the previous one; the previous version is
    kept so assessments made against it stay explainable.

    Args:
        team_id: Team identifier.
        as_of: Last day of the new window.
        window_days: Window length; defaults to baseline_recalc_window_days.

    Returns:
        The new current Baseline.

    Raises:
        InsufficientBaselineDataError: Fewer than baseline_min_days in the window.
    """
    settings = get_settings()
    window_days = window_days or settings.baseline_recalc_window_days

    days_elapsed = await get_sample_day_count(team_id, as_of)
    frame = await fetch_sample_frame(team_id, as_of, window_days)

    profile = await get_team_profile(team_id)
    connected_sources = profile.connected_sources if profile else 0

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            latest_version = await conn.fetchval(
                "SELECT COALESCE(MAX(version), 0) FROM team_baseline WHERE team_id = $1",
                team_id
            )

            baseline = build_baseline(
                team_id=team_id,
                frame=frame,
                window_start=as_of - timedelta(days=window_days - 1),
                window_end=as_of,
                days_elapsed=days_elapsed,
                connected_sources=connected_sources,
                required_sources=settings.required_data_sources,
                min_days=settings.baseline_min_days,
                version=int(latest_version or 0) + 1,
                established=True,
            )
            if baseline is None:
                raise InsufficientBaselineDataError(
                    f"Team {team_id} has fewer than {settings.baseline_min_days} "
                    f"sample days in the last {window_days} days"
                )

            await conn.execute(
                "UPDATE team_baseline SET is_current = FALSE, updated_at = NOW() "
                "WHERE team_id = $1 AND is_current = TRUE",
                team_id
            )
            await _upsert_baseline(conn, baseline)

    logger.info(
        f"Recalculated baseline for team {team_id}: v{baseline.version} "
        f"over {window_days} days ({baseline.sample_count} sample days)"
    )
    return baseline


__all__ = [
    "CALIBRATION_DAYS",
    "InsufficientBaselineDataError",
    "compute_metric_stats",
    "compute_baseline_confidence",
    "calculate_delta_pct",
    "is_outside_band",
    "build_baseline",
    "get_current_baseline",
    "list_baseline_versions",
    "ensure_baseline",
    "recalculate_baseline",
]
