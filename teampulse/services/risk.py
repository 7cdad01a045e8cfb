"""
Weekly Risk Scoring Service.

Computes three weighted-linear risk composites per team and week.

Composites:
    Overload  = 0.35 * dev(after-hours) + 0.30 * dev(meeting load)
              + 0.20 * dev(back-to-back meetings) + 0.15 * dev(focus time, inverted)
    Execution = 0.30 * dev(response time) + 0.25 * dev(participation, inverted)
              + 0.25 * dev(meeting fragmentation) + 0.20 * dev(focus time, inverted)
    Retention strain = 0.40 * slope(after-hours) + 0.30 * slope(meeting load)
              + 0.30 * slope(response time), over the trailing 3 weeks

Per-metric deviation = (current - baseline) / baseline, clamped to [-1, +1]
and inverted for higher-is-better metrics. Slopes are least-squares slopes of
the daily series normalized by the series mean. Only positive (adverse)
contributions count; score = round(sum * 100).

Bands:
    green  < 35
    yellow < 65
    red    >= 65

Dependencies:
- numpy: regression slopes
- teampulse/services/metrics_source.py: trailing averages, daily series
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from teampulse.core.database import from_json, get_db_pool, to_json
from teampulse.models.enums import (
    BaselineConfidence,
    BaselineStatus,
    Confidence,
    MetricKey,
    RiskBand,
    RiskType,
)
from teampulse.models.schemas import Baseline, RiskDriver, RiskScore
from teampulse.services.deviation import round_half_up
from teampulse.services.metrics_source import (
    TREND_WINDOW_DAYS,
    get_daily_series,
    get_trailing_averages,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================


BAND_YELLOW_MIN: int = 35

BAND_RED_MIN: int = 65

DRIVER_MIN_DEVIATION: float = 0.1

STRONG_TREND_SLOPE: float = 0.3

EXPLANATION_DRIVER_COUNT: int = 2

# (metric, weight, higher_is_better)
OVERLOAD_WEIGHTS: List[Tuple[str, float, bool]] = [
    (MetricKey.AFTER_HOURS_RATE.value, 0.35, False),
    (MetricKey.MEETING_HOURS.value, 0.30, False),
    (MetricKey.BACK_TO_BACK_MEETINGS.value, 0.20, False),
    (MetricKey.FOCUS_TIME_RATIO.value, 0.15, True),
]

EXECUTION_WEIGHTS: List[Tuple[str, float, bool]] = [
    (MetricKey.RESPONSE_TIME_HOURS.value, 0.30, False),
    (MetricKey.UNIQUE_CONTACTS.value, 0.25, True),
    (MetricKey.MEETING_FRAGMENTATION.value, 0.25, False),
    (MetricKey.FOCUS_TIME_RATIO.value, 0.20, True),
]

# (metric, weight)
RETENTION_WEIGHTS: List[Tuple[str, float]] = [
    (MetricKey.AFTER_HOURS_RATE.value, 0.40),
    (MetricKey.MEETING_HOURS.value, 0.30),
    (MetricKey.RESPONSE_TIME_HOURS.value, 0.30),
]

METRIC_NAMES: Dict[str, str] = {
    MetricKey.AFTER_HOURS_RATE.value: "After-hours activity",
    MetricKey.MEETING_HOURS.value: "Meeting load",
    MetricKey.BACK_TO_BACK_MEETINGS.value: "Back-to-back meetings",
    MetricKey.FOCUS_TIME_RATIO.value: "Focus time",
    MetricKey.RESPONSE_TIME_HOURS.value: "Response time",
    MetricKey.UNIQUE_CONTACTS.value: "Participation",
    MetricKey.MEETING_FRAGMENTATION.value: "Meeting fragmentation",
}

GREEN_EXPLANATIONS: Dict[RiskType, str] = {
    RiskType.OVERLOAD: "Work intensity is within normal range.",
    RiskType.EXECUTION: "Coordination patterns are efficient.",
    RiskType.RETENTION_STRAIN: "Pressure patterns are stable.",
}


# =============================================================================
# Pure Helpers
# =============================================================================


def calculate_deviation(
    current: Optional[float],
    baseline_mean: Optional[float],
    higher_is_better: bool = False
) -> float:
    """
    Relative deviation from baseline, adverse-positive, clamped to [-1, +1].

    Returns 0.0 when either value is missing or the baseline mean is 0.

    Example:
        >>> calculate_deviation(16.0, 10.0)
        0.6
        >>> calculate_deviation(0.3, 0.5, higher_is_better=True)
        0.4
    """
    if current is None or baseline_mean is None or baseline_mean == 0:
        return 0.0

    deviation = (current - baseline_mean) / baseline_mean
    if higher_is_better:
        deviation = -deviation

    return float(max(-1.0, min(1.0, deviation)))


def calculate_trend_slope(values: List[float]) -> float:
    """
    Least-squares slope of a daily series normalized by the series mean.

    Returns 0.0 for fewer than two points or a zero mean. Clamped to [-1, +1].
    """
    series = np.asarray([v for v in values if v is not None], dtype=float)
    if series.size < 2:
        return 0.0

    mean = float(np.mean(series))
    if mean == 0:
        return 0.0

    x = np.arange(series.size, dtype=float)
    slope = float(np.polyfit(x, series, 1)[0])

    return float(max(-1.0, min(1.0, slope / mean)))


def get_risk_band(score: int) -> RiskBand:
    """Map a 0-100 score to its band."""
    if score < BAND_YELLOW_MIN:
        return RiskBand.GREEN
    if score < BAND_RED_MIN:
        return RiskBand.YELLOW
    return RiskBand.RED


def determine_risk_confidence(baseline: Optional[Baseline]) -> Confidence:
    """
    Confidence of a risk score from its baseline.

    high: established baseline with High confidence; medium: any other
    baseline; low: no baseline.
    """
    if baseline is None:
        return Confidence.LOW
    if (
        baseline.status == BaselineStatus.ESTABLISHED
        and baseline.confidence == BaselineConfidence.HIGH
    ):
        return Confidence.HIGH
    return Confidence.MEDIUM


def describe_deviation(metric: str, deviation: float, higher_is_better: bool) -> str:
    """Driver sentence for a point deviation, e.g. 'Meeting load is 40% higher than baseline'."""
    name = METRIC_NAMES.get(metric, metric)
    pct = round_half_up(abs(deviation) * 100)
    increased = deviation > 0 if not higher_is_better else deviation < 0
    return f"{name} is {pct}% {'higher' if increased else 'lower'} than baseline"


def describe_trend(metric: str, slope: float) -> str:
    """Driver sentence for a trend slope."""
    name = METRIC_NAMES.get(metric, metric)
    strength = "strongly" if abs(slope) > STRONG_TREND_SLOPE else "gradually"
    direction = "increasing" if slope > 0 else "decreasing"
    return f"{name} has been {strength} {direction} over the past 3 weeks"


def _compose_risk(
    team_id: str,
    week_start: date,
    risk_type: RiskType,
    contributions: List[Tuple[str, float, float, str]],
    confidence: Confidence
) -> RiskScore:
    """
    Aggregate (metric, weight, deviation, text) contributions into a RiskScore.
    """
    total = sum(weight * max(deviation, 0.0) for _, weight, deviation, _ in contributions)
    score = min(round_half_up(total * 100), 100)
    band = get_risk_band(score)

    ranked = sorted(
        [c for c in contributions if c[2] > DRIVER_MIN_DEVIATION],
        key=lambda c: c[2] * c[1],
        reverse=True
    )
    drivers = [
        RiskDriver(
            metric=metric,
            contribution_weight=weight,
            deviation=round(deviation, 4),
            explanation=text,
        )
        for metric, weight, deviation, text in ranked
    ]

    if band == RiskBand.GREEN or not drivers:
        explanation = GREEN_EXPLANATIONS[risk_type]
    else:
        explanation = ". ".join(d.explanation for d in drivers[:EXPLANATION_DRIVER_COUNT]) + "."

    return RiskScore(
        team_id=team_id,
        week_start=week_start,
        risk_type=risk_type,
        score=score,
        band=band,
        confidence=confidence,
        drivers=drivers,
        explanation=explanation,
    )


def _point_contributions(
    weights: List[Tuple[str, float, bool]],
    current: Dict[str, Optional[float]],
    baseline: Optional[Baseline]
) -> List[Tuple[str, float, float, str]]:
    contributions = []
    for metric, weight, higher_is_better in weights:
        baseline_mean = baseline.mean_of(metric) if baseline else None
        deviation = calculate_deviation(current.get(metric), baseline_mean, higher_is_better)
        contributions.append(
            (metric, weight, deviation, describe_deviation(metric, deviation, higher_is_better))
        )
    return contributions


# =============================================================================
# Composites
# =============================================================================


def compute_overload_risk(
    team_id: str,
    week_start: date,
    current: Dict[str, Optional[float]],
    baseline: Optional[Baseline]
) -> RiskScore:
    """Overload composite from current-week averages against the baseline."""
    return _compose_risk(
        team_id,
        week_start,
        RiskType.OVERLOAD,
        _point_contributions(OVERLOAD_WEIGHTS, current, baseline),
        determine_risk_confidence(baseline),
    )


def compute_execution_risk(
    team_id: str,
    week_start: date,
    current: Dict[str, Optional[float]],
    baseline: Optional[Baseline]
) -> RiskScore:
    """Execution composite from current-week averages against the baseline."""
    return _compose_risk(
        team_id,
        week_start,
        RiskType.EXECUTION,
        _point_contributions(EXECUTION_WEIGHTS, current, baseline),
        determine_risk_confidence(baseline),
    )


def compute_retention_strain_risk(
    team_id: str,
    week_start: date,
    series: Dict[str, List[float]],
    baseline: Optional[Baseline]
) -> RiskScore:
    """
    Retention-strain composite from 3-week trend slopes.

    Uses a sustained trend rather than one week's point deviation, so a single
    noisy week does not move the score.
    """
    contributions = []
    for metric, weight in RETENTION_WEIGHTS:
        slope = calculate_trend_slope(series.get(metric, []))
        contributions.append((metric, weight, slope, describe_trend(metric, slope)))

    return _compose_risk(
        team_id,
        week_start,
        RiskType.RETENTION_STRAIN,
        contributions,
        determine_risk_confidence(baseline),
    )


def risk_metrics() -> List[str]:
    """Metric keys read by the point-deviation composites."""
    metrics: List[str] = []
    for metric, _, _ in OVERLOAD_WEIGHTS + EXECUTION_WEIGHTS:
        if metric not in metrics:
            metrics.append(metric)
    return metrics


async def compute_weekly_risks(
    team_id: str,
    week_start: date,
    as_of: date,
    baseline: Optional[Baseline],
    current: Optional[Dict[str, Optional[float]]] = None
) -> List[RiskScore]:
    """
    Compute all three composites for a team and week.

    Args:
        team_id: Team identifier.
        week_start: Monday of the diagnosed week.
        as_of: Last day of the observed data (the day before week_start).
        baseline: Current team baseline, or None.
        current: Pre-fetched trailing averages; fetched when omitted.

    Returns:
        [overload, execution, retention_strain] risk scores.
    """
    if current is None:
        current = await get_trailing_averages(team_id, as_of, risk_metrics())

    series = await get_daily_series(
        team_id,
        as_of,
        [metric for metric, _ in RETENTION_WEIGHTS],
        days=TREND_WINDOW_DAYS
    )

    return [
        compute_overload_risk(team_id, week_start, current, baseline),
        compute_execution_risk(team_id, week_start, current, baseline),
        compute_retention_strain_risk(team_id, week_start, series, baseline),
    ]


# =============================================================================
# Storage
# =============================================================================


RISK_UPSERT_SQL = """
    INSERT INTO risk_score (
        team_id, week_start, risk_type, score, band,
        confidence, drivers, explanation, updated_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, NOW())
    ON CONFLICT (team_id, week_start, risk_type) DO UPDATE SET
        score = EXCLUDED.score,
        band = EXCLUDED.band,
        confidence = EXCLUDED.confidence,
        drivers = EXCLUDED.drivers,
        explanation = EXCLUDED.explanation,
        updated_at = NOW()
"""


def _row_to_risk(row: Any) -> RiskScore:
    drivers = from_json(row["drivers"], default=[]) or []
    return RiskScore(
        team_id=row["team_id"],
        week_start=row["week_start"],
        risk_type=row["risk_type"],
        score=row["score"],
        band=row["band"],
        confidence=row["confidence"],
        drivers=[RiskDriver(**d) for d in drivers],
        explanation=row["explanation"],
    )


async def persist_risk_scores(scores: List[RiskScore]) -> int:
    """
    Upsert risk scores on (team_id, week_start, risk_type).

    Returns:
        Number of rows written.
    """
    if not scores:
        return 0

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            for risk in scores:
                await conn.execute(
                    RISK_UPSERT_SQL,
                    risk.team_id,
                    risk.week_start,
                    risk.risk_type.value,
                    risk.score,
                    risk.band.value,
                    risk.confidence.value,
                    to_json([d.model_dump(mode="json") for d in risk.drivers]),
                    risk.explanation
                )

    return len(scores)


async def get_risk_scores(team_id: str, week_start: Optional[date] = None) -> List[RiskScore]:
    """
    Risk scores of one week; the latest scored week when week_start is omitted.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        if week_start is None:
            week_start = await conn.fetchval(
                "SELECT MAX(week_start) FROM risk_score WHERE team_id = $1",
                team_id
            )
            if week_start is None:
                return []

        rows = await conn.fetch(
            """
            SELECT team_id, week_start, risk_type, score, band,
                   confidence, drivers, explanation
            FROM risk_score
            WHERE team_id = $1 AND week_start = $2
            ORDER BY risk_type
            """,
            team_id,
            week_start
        )
    return [_row_to_risk(row) for row in rows]


async def get_risk_history(team_id: str, risk_type: RiskType, weeks: int = 12) -> List[RiskScore]:
    """Most recent `weeks` scores of one risk type, newest first."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT team_id, week_start, risk_type, score, band,
                   confidence, drivers, explanation
            FROM risk_score
            WHERE team_id = $1 AND risk_type = $2
            ORDER BY week_start DESC
            LIMIT $3
            """,
            team_id,
            RiskType(risk_type).value,
            weeks
        )
    return [_row_to_risk(row) for row in rows]


__all__ = [
    "BAND_YELLOW_MIN",
    "BAND_RED_MIN",
    "OVERLOAD_WEIGHTS",
    "EXECUTION_WEIGHTS",
    "RETENTION_WEIGHTS",
    "calculate_deviation",
    "calculate_trend_slope",
    "get_risk_band",
    "determine_risk_confidence",
    "describe_deviation",
    "describe_trend",
    "compute_overload_risk",
    "compute_execution_risk",
    "compute_retention_strain_risk",
    "risk_metrics",
    "compute_weekly_risks",
    "persist_risk_scores",
    "get_risk_scores",
    "get_risk_history",
]
