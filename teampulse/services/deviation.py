"""
Deviation & State Classifier Service.

One parametrized algorithm that turns current signal values and a baseline into
a per-signal deviation table, a composite score, an indicator-specific state
label, ranked top drivers and a one-line explanation. Every indicator (drift,
coordination load, bandwidth tax, silence risk, capacity) is an IndicatorConfig
passed to classify(); none of them carries its own scoring code.

Per Signal:
    percent_change = (current - baseline) / |baseline| * 100
    deviating      = baseline > 0 and |percent_change| > threshold_pct
    direction      = negative  if deviating and adverse per polarity
                     positive  if deviating and favorable
                     neutral   otherwise

Scoring Variants:
    negative_ratio: round(negative_count / configured_signals * 100)
    points:         sum over negative signals of the highest tier whose bound
                    |percent_change| strictly exceeds, capped at 100

State:
    The basis (negative count or score) is matched against ascending
    (lower_bound, label) bands; the highest band whose bound is <= basis wins.

Threshold Convention:
    Strictly greater-than for every threshold and every point tier.

Insufficient Data:
    Without a baseline the assessment is the lowest state with score 0 and
    baseline_established=False, so callers never read "no data" as healthy.
"""

import math
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Tuple

from teampulse.models.enums import IndicatorType, ScoringVariant, SignalDirection, StateBasis
from teampulse.models.schemas import Baseline, DeviationAssessment, SignalDeviation, TopDriver
from teampulse.services.baseline import calculate_delta_pct, is_outside_band


BASELINE_PENDING_EXPLANATION: str = "Baseline being established"

NO_SIGNAL_EXPLANATION: str = "Not enough current data to assess this indicator."

DEFAULT_TOP_K: int = 3


# =============================================================================
# Configuration Types
# =============================================================================


@dataclass(frozen=True)
class SignalRule:
    """
    Configuration of one signal within an indicator.

    Attributes:
        metric: Metric key read from current values and the baseline.
        label: Human-readable name used in drivers and explanations.
        threshold_pct: |percent change| that must be exceeded to deviate.
        higher_is_worse: Polarity; True when an increase is adverse.
        point_tiers: (bound_pct, points) pairs for the points variant, highest
            bound first.
    """
    metric: str
    label: str
    threshold_pct: float
    higher_is_worse: bool = True
    point_tiers: Tuple[Tuple[float, int], ...] = ()


@dataclass(frozen=True)
class IndicatorConfig:
    """
    Strategy configuration of the shared classifier.

    Attributes:
        indicator: Indicator produced by this configuration.
        signals: Signal rules (polarity table + thresholds).
        scoring: Score formula variant.
        state_basis: Whether states map from the negative count or the score.
        state_bands: Ascending (lower_bound, label) pairs; the first bound must be 0.
        top_k: Number of drivers reported.
        summary_template: Explanation when at least one signal is negative.
            Fields: count, plural, label, change, state, score.
        stable_summary: Explanation when no signal is negative.
    """
    indicator: IndicatorType
    signals: Tuple[SignalRule, ...]
    scoring: ScoringVariant
    state_basis: StateBasis
    state_bands: Tuple[Tuple[int, str], ...]
    top_k: int = DEFAULT_TOP_K
    summary_template: str = "{count} signal{plural} showing negative drift, led by {label} ({change})."
    stable_summary: str = "No significant drift detected."

    @property
    def lowest_state(self) -> str:
        return self.state_bands[0][1]


# =============================================================================
# Helpers
# =============================================================================


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores (round() is banker's rounding)."""
    return int(math.floor(value + 0.5))


def format_change(percent_change: float) -> str:
    """
    Format a percent change for display.

    Example:
        >>> format_change(66.67)
        '+67%'
        >>> format_change(-37.5)
        '-38%'
    """
    rounded = round_half_up(abs(percent_change))
    sign = "+" if percent_change >= 0 else "-"
    return f"{sign}{rounded}%"


def award_points(rule: SignalRule, percent_change: float) -> int:
    """Points of the highest tier whose bound |percent_change| strictly exceeds."""
    magnitude = abs(percent_change)
    for bound, points in rule.point_tiers:
        if magnitude > bound:
            return points
    return 0


# =============================================================================
# Core Algorithm
# =============================================================================


def evaluate_signal(
    rule: SignalRule,
    current: Optional[float],
    baseline: Optional[float]
) -> SignalDeviation:
    """
    Compare one signal against its baseline.

    Args:
        rule: Signal configuration.
        current: Current value (e.g. 7-day average), None when missing.
        baseline: Baseline mean, None when the metric was never observed.

    Returns:
        SignalDeviation with percent change, deviating flag, direction and points.

    Example:
        >>> rule = SignalRule("meeting_hours", "Meeting load", 20.0, higher_is_worse=True)
        >>> result = evaluate_signal(rule, 25.0, 15.0)
        >>> round(result.percent_change, 1), result.deviating, result.direction.value
        (66.7, True, 'negative')
    """
    percent_change = calculate_delta_pct(current, baseline)

    if percent_change is None or baseline is None or baseline <= 0:
        return SignalDeviation(
            signal=rule.metric,
            label=rule.label,
            value=current,
            baseline=baseline,
            percent_change=percent_change,
            deviating=False,
            direction=SignalDirection.NEUTRAL,
        )

    deviating = abs(percent_change) > rule.threshold_pct
    adverse = percent_change > 0 if rule.higher_is_worse else percent_change < 0

    if not deviating:
        direction = SignalDirection.NEUTRAL
    elif adverse:
        direction = SignalDirection.NEGATIVE
    else:
        direction = SignalDirection.POSITIVE

    points = 0
    if direction == SignalDirection.NEGATIVE and rule.point_tiers:
        points = award_points(rule, percent_change)

    return SignalDeviation(
        signal=rule.metric,
        label=rule.label,
        value=current,
        baseline=baseline,
        percent_change=percent_change,
        deviating=deviating,
        direction=direction,
        points=points,
    )


def compute_score(config: IndicatorConfig, signals: List[SignalDeviation]) -> int:
    """Composite 0-100 score according to the configured variant."""
    if config.scoring == ScoringVariant.NEGATIVE_RATIO:
        total = len(config.signals)
        if total == 0:
            return 0
        negative = sum(1 for s in signals if s.direction == SignalDirection.NEGATIVE)
        return min(round_half_up(negative / total * 100), 100)

    return min(sum(s.points for s in signals), 100)


def resolve_state(config: IndicatorConfig, negative_count: int, score: int) -> str:
    """Map the configured basis onto the indicator's state bands."""
    basis = negative_count if config.state_basis == StateBasis.NEGATIVE_COUNT else score

    state = config.lowest_state
    for lower_bound, label in config.state_bands:
        if basis >= lower_bound:
            state = label
    return state


def rank_top_drivers(config: IndicatorConfig, signals: List[SignalDeviation]) -> List[TopDriver]:
    """
    Rank negative signals by contribution.

    Contribution is the awarded points for the points variant and the
    |percent change| otherwise; ties are broken by |percent change|.
    """
    negatives = [
        s for s in signals
        if s.direction == SignalDirection.NEGATIVE and s.percent_change is not None
    ]

    def contribution(signal: SignalDeviation) -> float:
        if config.scoring == ScoringVariant.POINTS:
            return float(signal.points)
        return abs(signal.percent_change)

    ranked = sorted(
        negatives,
        key=lambda s: (contribution(s), abs(s.percent_change)),
        reverse=True
    )

    return [
        TopDriver(
            signal=s.signal,
            label=s.label,
            change=format_change(s.percent_change),
            percent_change=round(s.percent_change, 1),
            contribution=round(contribution(s), 1),
        )
        for s in ranked[:config.top_k]
    ]


def build_explanation(
    config: IndicatorConfig,
    negative_count: int,
    state: str,
    score: int,
    top_drivers: List[TopDriver]
) -> str:
    """One-line templated explanation naming the top driver."""
    if negative_count == 0 or not top_drivers:
        return config.stable_summary

    lead = top_drivers[0]
    return config.summary_template.format(
        count=negative_count,
        plural="" if negative_count == 1 else "s",
        label=lead.label,
        change=lead.change,
        state=state,
        score=score,
    )


def classify(
    config: IndicatorConfig,
    team_id: str,
    current: Dict[str, Optional[float]],
    baseline: Optional[Baseline],
    period_start: date,
    period_end: date
) -> DeviationAssessment:
    """
    Produce a full deviation assessment for one indicator.

    Args:
        config: Indicator strategy configuration.
        team_id: Team identifier.
        current: Metric key -> current value for the period.
        baseline: Team baseline, or None before calibration.
        period_start: First day of the assessed period.
        period_end: Last day of the assessed period.

    Returns:
        DeviationAssessment; the conservative default when no baseline exists.
    """
    if baseline is None:
        return DeviationAssessment(
            team_id=team_id,
            indicator=config.indicator,
            period_start=period_start,
            period_end=period_end,
            signals=[],
            score=0,
            state=config.lowest_state,
            top_drivers=[],
            explanation=BASELINE_PENDING_EXPLANATION,
            confidence=None,
            baseline_established=False,
        )

    signals = [
        evaluate_signal(rule, current.get(rule.metric), baseline.mean_of(rule.metric))
        for rule in config.signals
    ]
    for signal in signals:
        signal.outside_band = is_outside_band(signal.value, baseline.metrics.get(signal.signal))

    if all(s.percent_change is None for s in signals):
        return DeviationAssessment(
            team_id=team_id,
            indicator=config.indicator,
            period_start=period_start,
            period_end=period_end,
            signals=signals,
            score=0,
            state=config.lowest_state,
            top_drivers=[],
            explanation=NO_SIGNAL_EXPLANATION,
            confidence=baseline.confidence,
            baseline_established=True,
        )

    negative_count = sum(1 for s in signals if s.direction == SignalDirection.NEGATIVE)
    score = compute_score(config, signals)
    state = resolve_state(config, negative_count, score)
    top_drivers = rank_top_drivers(config, signals)

    return DeviationAssessment(
        team_id=team_id,
        indicator=config.indicator,
        period_start=period_start,
        period_end=period_end,
        signals=signals,
        score=score,
        state=state,
        top_drivers=top_drivers,
        explanation=build_explanation(config, negative_count, state, score, top_drivers),
        confidence=baseline.confidence,
        baseline_established=True,
        negative_count=negative_count,
    )


__all__ = [
    "BASELINE_PENDING_EXPLANATION",
    "NO_SIGNAL_EXPLANATION",
    "SignalRule",
    "IndicatorConfig",
    "round_half_up",
    "format_change",
    "award_points",
    "evaluate_signal",
    "compute_score",
    "resolve_state",
    "rank_top_drivers",
    "build_explanation",
    "classify",
]
