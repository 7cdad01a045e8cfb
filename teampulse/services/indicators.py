"""
Indicator Catalogue Service.

Configurations of the shared deviation classifier for every team indicator,
plus storage of assessments and the drift timeline.

Indicators:
- drift (Behavioral Drift Index): six signals, negative-ratio scoring, state
  from the negative signal count
- coordination_load: meeting/sync load vs. focus time, points scoring
- bandwidth_tax: after-hours, fragmentation and interruption pressure, points
- silence_risk: shrinking voice and participation, points
- capacity: penalty points against remaining capacity (capacity = 100 - score)

All point tiers are relative to the team's own baseline (percent change), so
every indicator reads the same baseline and differs only by configuration.

Usage:
    from teampulse.services.indicators import assess_all_indicators, persist_assessment

    assessments = assess_all_indicators(team_id, current, baseline, start, end)
    for assessment in assessments:
        await persist_assessment(assessment)

Dependencies:
- teampulse/services/deviation.py: classify, IndicatorConfig, SignalRule
- teampulse/core/database.py: get_db_pool, to_json, from_json
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from teampulse.core.database import from_json, get_db_pool, to_json
from teampulse.models.enums import (
    IndicatorType,
    MetricKey,
    ScoringVariant,
    StateBasis,
    TimelineEventType,
)
from teampulse.models.schemas import (
    Baseline,
    DeviationAssessment,
    DriftTimelineEvent,
    SignalDeviation,
    TopDriver,
)
from teampulse.services.deviation import IndicatorConfig, SignalRule, classify


logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT: int = 12


# =============================================================================
# Indicator Configurations
# =============================================================================


DRIFT_CONFIG = IndicatorConfig(
    indicator=IndicatorType.DRIFT,
    signals=(
        SignalRule(MetricKey.MEETING_HOURS.value, "Meeting load", 20.0, higher_is_worse=True),
        SignalRule(MetricKey.AFTER_HOURS_RATE.value, "After-hours activity", 30.0, higher_is_worse=True),
        SignalRule(MetricKey.RESPONSE_TIME_HOURS.value, "Response time", 25.0, higher_is_worse=True),
        SignalRule(MetricKey.ASYNC_PARTICIPATION.value, "Async participation", 20.0, higher_is_worse=False),
        SignalRule(MetricKey.FOCUS_TIME_RATIO.value, "Focus time", 20.0, higher_is_worse=False),
        SignalRule(MetricKey.UNIQUE_CONTACTS.value, "Collaboration breadth", 25.0, higher_is_worse=False),
    ),
    scoring=ScoringVariant.NEGATIVE_RATIO,
    state_basis=StateBasis.NEGATIVE_COUNT,
    state_bands=(
        (0, "Stable"),
        (2, "Early Drift"),
        (3, "Developing Drift"),
        (5, "Critical Drift"),
    ),
    summary_template="{count} signal{plural} showing negative drift, led by {label} ({change}).",
    stable_summary=(
        "No significant drift detected. Team working patterns remain stable "
        "compared to baseline."
    ),
)

COORDINATION_LOAD_CONFIG = IndicatorConfig(
    indicator=IndicatorType.COORDINATION_LOAD,
    signals=(
        SignalRule(
            MetricKey.MEETING_HOURS.value, "Meeting time", 10.0,
            higher_is_worse=True, point_tiers=((50.0, 30), (25.0, 20), (10.0, 10)),
        ),
        SignalRule(
            MetricKey.BACK_TO_BACK_MEETINGS.value, "Back-to-back meetings", 10.0,
            higher_is_worse=True, point_tiers=((50.0, 25), (25.0, 15), (10.0, 8)),
        ),
        SignalRule(
            MetricKey.CROSS_TEAM_MEETINGS.value, "Cross-team sync", 10.0,
            higher_is_worse=True, point_tiers=((50.0, 25), (25.0, 15), (10.0, 8)),
        ),
        SignalRule(
            MetricKey.FOCUS_TIME_RATIO.value, "Available focus time", 10.0,
            higher_is_worse=False, point_tiers=((40.0, 20), (20.0, 12), (10.0, 6)),
        ),
    ),
    scoring=ScoringVariant.POINTS,
    state_basis=StateBasis.SCORE,
    state_bands=(
        (0, "Execution-dominant"),
        (30, "Balanced"),
        (50, "Coordination-heavy"),
        (75, "Coordination overload"),
    ),
    summary_template="{state}: {label} is driving coordination load ({change} vs baseline).",
    stable_summary="Coordination load is in line with the team's baseline.",
)

BANDWIDTH_TAX_CONFIG = IndicatorConfig(
    indicator=IndicatorType.BANDWIDTH_TAX,
    signals=(
        SignalRule(
            MetricKey.AFTER_HOURS_RATE.value, "After-hours activity", 15.0,
            higher_is_worse=True, point_tiers=((60.0, 30), (30.0, 20), (15.0, 10)),
        ),
        SignalRule(
            MetricKey.FOCUS_BLOCK_MINUTES.value, "Focus block length", 10.0,
            higher_is_worse=False, point_tiers=((40.0, 30), (20.0, 20), (10.0, 10)),
        ),
        SignalRule(
            MetricKey.INTERRUPTIONS.value, "Interruptions", 15.0,
            higher_is_worse=True, point_tiers=((60.0, 25), (30.0, 15), (15.0, 8)),
        ),
        # Faster replies under load signal always-on pressure
        SignalRule(
            MetricKey.RESPONSE_TIME_HOURS.value, "Response urgency", 10.0,
            higher_is_worse=False, point_tiers=((40.0, 15), (20.0, 10), (10.0, 5)),
        ),
    ),
    scoring=ScoringVariant.POINTS,
    state_basis=StateBasis.SCORE,
    state_bands=(
        (0, "Low tax"),
        (30, "Moderate tax"),
        (60, "Severe tax"),
    ),
    summary_template="{state}: {label} is the largest source of bandwidth tax ({change} vs baseline).",
    stable_summary="Cognitive load is within the team's normal range.",
)

SILENCE_RISK_CONFIG = IndicatorConfig(
    indicator=IndicatorType.SILENCE_RISK,
    signals=(
        SignalRule(
            MetricKey.MESSAGE_COUNT.value, "Async contributions", 5.0,
            higher_is_worse=False, point_tiers=((30.0, 30), (15.0, 20), (5.0, 10)),
        ),
        SignalRule(
            MetricKey.UNIQUE_CONTACTS.value, "Collaboration breadth", 5.0,
            higher_is_worse=False, point_tiers=((25.0, 30), (15.0, 20), (5.0, 10)),
        ),
        SignalRule(
            MetricKey.UPWARD_RESPONSE_HOURS.value, "Upward response time", 10.0,
            higher_is_worse=True, point_tiers=((50.0, 25), (25.0, 15), (10.0, 8)),
        ),
        SignalRule(
            MetricKey.SENTIMENT_VARIANCE.value, "Expression range", 10.0,
            higher_is_worse=False, point_tiers=((40.0, 15), (20.0, 10), (10.0, 5)),
        ),
    ),
    scoring=ScoringVariant.POINTS,
    state_basis=StateBasis.SCORE,
    state_bands=(
        (0, "Low Silence Risk"),
        (30, "Rising Silence Risk"),
        (60, "High Silence Risk"),
    ),
    summary_template="{state}: {label} changed {change} vs baseline.",
    stable_summary="Voice and participation patterns are consistent with baseline.",
)

CAPACITY_CONFIG = IndicatorConfig(
    indicator=IndicatorType.CAPACITY,
    signals=(
        SignalRule(
            MetricKey.MEETING_HOURS.value, "Meeting load", 10.0,
            higher_is_worse=True, point_tiers=((50.0, 25), (25.0, 15), (10.0, 8)),
        ),
        SignalRule(
            MetricKey.FOCUS_TIME_RATIO.value, "Focus time", 10.0,
            higher_is_worse=False, point_tiers=((40.0, 25), (20.0, 15), (10.0, 8)),
        ),
        SignalRule(
            MetricKey.AFTER_HOURS_RATE.value, "After-hours activity", 15.0,
            higher_is_worse=True, point_tiers=((60.0, 25), (30.0, 15), (15.0, 8)),
        ),
        SignalRule(
            MetricKey.RESPONSE_TIME_HOURS.value, "Response time", 10.0,
            higher_is_worse=True, point_tiers=((50.0, 25), (25.0, 15), (10.0, 8)),
        ),
    ),
    scoring=ScoringVariant.POINTS,
    state_basis=StateBasis.SCORE,
    state_bands=(
        (0, "Green"),
        (25, "Yellow"),
        (50, "Red"),
    ),
    summary_template="Capacity {state}: {label} is the largest drain ({change} vs baseline).",
    stable_summary="Team capacity is healthy with no significant drains.",
)

INDICATOR_CONFIGS: Dict[IndicatorType, IndicatorConfig] = {
    config.indicator: config
    for config in (
        DRIFT_CONFIG,
        COORDINATION_LOAD_CONFIG,
        BANDWIDTH_TAX_CONFIG,
        SILENCE_RISK_CONFIG,
        CAPACITY_CONFIG,
    )
}


def get_indicator_config(indicator: IndicatorType) -> IndicatorConfig:
    """Configuration for an indicator; raises ValueError for unknown names."""
    try:
        return INDICATOR_CONFIGS[IndicatorType(indicator)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown indicator: {indicator}") from None


def indicator_metrics() -> List[str]:
    """Every metric key read by at least one indicator, in first-seen order."""
    seen: List[str] = []
    for config in INDICATOR_CONFIGS.values():
        for rule in config.signals:
            if rule.metric not in seen:
                seen.append(rule.metric)
    return seen


def capacity_remaining(assessment: DeviationAssessment) -> int:
    """Remaining capacity (0-100) of a capacity assessment."""
    return 100 - assessment.score


# =============================================================================
# Assessment
# =============================================================================


def assess_indicator(
    team_id: str,
    indicator: IndicatorType,
    current: Dict[str, Optional[float]],
    baseline: Optional[Baseline],
    period_start: date,
    period_end: date
) -> DeviationAssessment:
    """Run the shared classifier with one indicator's configuration."""
    return classify(
        get_indicator_config(indicator),
        team_id,
        current,
        baseline,
        period_start,
        period_end,
    )


def assess_all_indicators(
    team_id: str,
    current: Dict[str, Optional[float]],
    baseline: Optional[Baseline],
    period_start: date,
    period_end: date
) -> List[DeviationAssessment]:
    """Assess every configured indicator for one period."""
    return [
        classify(config, team_id, current, baseline, period_start, period_end)
        for config in INDICATOR_CONFIGS.values()
    ]


# =============================================================================
# Drift Timeline
# =============================================================================


def _state_rank(indicator: IndicatorType, state: Optional[str]) -> int:
    labels = [label for _, label in get_indicator_config(indicator).state_bands]
    return labels.index(state) if state in labels else 0


def build_timeline_event(
    previous_state: Optional[str],
    assessment: DeviationAssessment
) -> Optional[DriftTimelineEvent]:
    """
    Timeline entry for a state change between consecutive periods.

    Args:
        previous_state: State of the previous period, None for the first one.
        assessment: Assessment of the current period.

    Returns:
        - baseline: first assessment with an established baseline
        - first_signal: left the lowest state
        - escalation: moved to a higher state from a non-lowest state
        - resolution: moved to a lower state
        None when the state did not change or no baseline exists yet.
    """
    if not assessment.baseline_established:
        return None

    indicator = assessment.indicator
    lead = assessment.top_drivers[0].label if assessment.top_drivers else None

    if previous_state is None:
        event_type = TimelineEventType.BASELINE
        description = f"Monitoring started in state {assessment.state}."
    elif previous_state == assessment.state:
        return None
    else:
        previous_rank = _state_rank(indicator, previous_state)
        current_rank = _state_rank(indicator, assessment.state)

        if current_rank > previous_rank:
            event_type = (
                TimelineEventType.FIRST_SIGNAL if previous_rank == 0
                else TimelineEventType.ESCALATION
            )
            description = f"Moved from {previous_state} to {assessment.state}"
            description += f", led by {lead}." if lead else "."
        else:
            event_type = TimelineEventType.RESOLUTION
            description = f"Improved from {previous_state} to {assessment.state}."

    return DriftTimelineEvent(
        team_id=assessment.team_id,
        indicator=indicator,
        event_date=assessment.period_end,
        event_type=event_type,
        from_state=previous_state,
        to_state=assessment.state,
        description=description,
    )


async def record_timeline_event(event: DriftTimelineEvent) -> None:
    """Upsert a timeline event on (team_id, indicator, event_date)."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            """
            INSERT INTO drift_timeline (
                team_id, indicator, event_date, event_type,
                from_state, to_state, description
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (team_id, indicator, event_date) DO UPDATE SET
                event_type = EXCLUDED.event_type,
                from_state = EXCLUDED.from_state,
                to_state = EXCLUDED.to_state,
                description = EXCLUDED.description
            """,
            event.team_id,
            event.indicator.value,
            event.event_date,
            event.event_type.value,
            event.from_state,
            event.to_state,
            event.description
        )


async def get_timeline(team_id: str, indicator: IndicatorType) -> List[DriftTimelineEvent]:
    """Timeline events of an indicator, oldest first."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT team_id, indicator, event_date, event_type,
                   from_state, to_state, description
            FROM drift_timeline
            WHERE team_id = $1 AND indicator = $2
            ORDER BY event_date
            """,
            team_id,
            IndicatorType(indicator).value
        )
    return [DriftTimelineEvent(**dict(row)) for row in rows]


# =============================================================================
# Storage
# =============================================================================


def _row_to_assessment(row: Any) -> DeviationAssessment:
    signals = from_json(row["signals"], default=[]) or []
    drivers = from_json(row["top_drivers"], default=[]) or []
    return DeviationAssessment(
        team_id=row["team_id"],
        indicator=row["indicator"],
        period_start=row["period_start"],
        period_end=row["period_end"],
        signals=[SignalDeviation(**s) for s in signals],
        score=row["score"],
        state=row["state"],
        top_drivers=[TopDriver(**d) for d in drivers],
        explanation=row["explanation"],
        confidence=row["confidence"],
        baseline_established=row["baseline_established"],
        negative_count=row["negative_count"],
    )


async def persist_assessment(assessment: DeviationAssessment) -> None:
    """
    Upsert an assessment on (team_id, indicator, period_start).

    The row is replaced in full; assessments are regenerated, never patched.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            """
            INSERT INTO deviation_assessment (
                team_id, indicator, period_start, period_end, signals, score,
                state, top_drivers, explanation, confidence,
                baseline_established, negative_count, updated_at
            )
            VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8::jsonb, $9, $10, $11, $12, NOW())
            ON CONFLICT (team_id, indicator, period_start) DO UPDATE SET
                period_end = EXCLUDED.period_end,
                signals = EXCLUDED.signals,
                score = EXCLUDED.score,
                state = EXCLUDED.state,
                top_drivers = EXCLUDED.top_drivers,
                explanation = EXCLUDED.explanation,
                confidence = EXCLUDED.confidence,
                baseline_established = EXCLUDED.baseline_established,
                negative_count = EXCLUDED.negative_count,
                updated_at = NOW()
            """,
            assessment.team_id,
            assessment.indicator.value,
            assessment.period_start,
            assessment.period_end,
            to_json([s.model_dump(mode="json") for s in assessment.signals]),
            assessment.score,
            assessment.state,
            to_json([d.model_dump(mode="json") for d in assessment.top_drivers]),
            assessment.explanation,
            assessment.confidence.value if assessment.confidence else None,
            assessment.baseline_established,
            assessment.negative_count
        )


async def get_latest_assessment(
    team_id: str,
    indicator: IndicatorType,
    before: Optional[date] = None
) -> Optional[DeviationAssessment]:
    """
    Most recent assessment of an indicator.

    Args:
        team_id: Team identifier.
        indicator: Indicator to read.
        before: When set, only periods starting strictly before this date.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            SELECT *
            FROM deviation_assessment
            WHERE team_id = $1
              AND indicator = $2
              AND ($3::date IS NULL OR period_start < $3::date)
            ORDER BY period_start DESC
            LIMIT 1
            """,
            team_id,
            IndicatorType(indicator).value,
            before
        )
    return _row_to_assessment(row) if row else None


async def list_assessments(
    team_id: str,
    indicator: IndicatorType,
    limit: int = DEFAULT_HISTORY_LIMIT
) -> List[DeviationAssessment]:
    """Assessment history of an indicator, newest first."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT *
            FROM deviation_assessment
            WHERE team_id = $1 AND indicator = $2
            ORDER BY period_start DESC
            LIMIT $3
            """,
            team_id,
            IndicatorType(indicator).value,
            limit
        )
    return [_row_to_assessment(row) for row in rows]


async def refresh_indicator_assessments(
    team_id: str,
    current: Dict[str, Optional[float]],
    baseline: Optional[Baseline],
    period_start: date,
    period_end: date
) -> List[DeviationAssessment]:
    """
    Assess, persist and timeline every indicator for one period.

    Returns:
        The persisted assessments.
    """
    assessments = assess_all_indicators(team_id, current, baseline, period_start, period_end)

    for assessment in assessments:
        previous = await get_latest_assessment(team_id, assessment.indicator, before=period_start)
        previous_state = (
            previous.state if previous and previous.baseline_established else None
        )

        await persist_assessment(assessment)

        event = build_timeline_event(previous_state, assessment)
        if event:
            await record_timeline_event(event)
            logger.info(
                f"Timeline {event.event_type.value} for team {team_id} "
                f"{assessment.indicator.value}: {event.to_state}"
            )

    return assessments


__all__ = [
    "DRIFT_CONFIG",
    "COORDINATION_LOAD_CONFIG",
    "BANDWIDTH_TAX_CONFIG",
    "SILENCE_RISK_CONFIG",
    "CAPACITY_CONFIG",
    "INDICATOR_CONFIGS",
    "get_indicator_config",
    "indicator_metrics",
    "capacity_remaining",
    "assess_indicator",
    "assess_all_indicators",
    "build_timeline_event",
    "record_timeline_event",
    "get_timeline",
    "persist_assessment",
    "get_latest_assessment",
    "list_assessments",
    "refresh_indicator_assessments",
]
