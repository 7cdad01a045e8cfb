"""
Crisis Anomaly Detection Service.

Runs on its own short cadence (every 15 minutes), independent of the weekly
diagnosis. A trailing window of hourly activity (default 6 hours) is
extrapolated to a daily-equivalent rate and compared with the team's 7-day
daily average over a volatile signal set.

Both sides are divided by the hours actually observed. A baseline holding
less than `crisis_min_baseline_hours` (default 120, five days) is not judged.

Signals:
    message_volume         |deviation| >= 50%   (high when >= 70%)
    negative_reactions     deviation >= +300%   (high when >= +500%)
    thread_abandonment     deviation >= +200%
    sentiment_score        drop <= -100%        (high)
    meeting_cancellations  deviation >= +300%
    decline_rate           change >= +25 points
    calendar_purges        >= 3 purges inside the window

Crisis Rule:
    >= 2 high-significance signals OR >= 4 signals in total. Stricter than
    the weekly classifier; false positives at this cadence cause alert fatigue.

Deduplication:
    A same-type unresolved crisis detected within the dedup window (6 hours)
    is updated in place instead of creating a new event.

Dependencies:
- teampulse/services/metrics_source.py: fetch_activity_window
- teampulse/core/config.py: crisis_window_hours, crisis_baseline_days,
  crisis_min_baseline_hours, crisis_dedup_hours
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from teampulse.core.config import get_settings
from teampulse.core.database import from_json, get_db_pool, to_json
from teampulse.models.enums import (
    CrisisMetric,
    CrisisSeverity,
    CrisisType,
    CrisisUrgency,
    ResolutionState,
    SignalSignificance,
)
from teampulse.models.schemas import CrisisEvent, CrisisSignal
from teampulse.services.metrics_source import fetch_activity_window


logger = logging.getLogger(__name__)


# =============================================================================
# Thresholds
# =============================================================================


MESSAGE_VOLUME_SIGNAL_PCT: float = 50.0
MESSAGE_VOLUME_HIGH_PCT: float = 70.0

NEGATIVE_REACTIONS_SIGNAL_PCT: float = 300.0
NEGATIVE_REACTIONS_HIGH_PCT: float = 500.0

THREAD_ABANDONMENT_SIGNAL_PCT: float = 200.0

SENTIMENT_DROP_PCT: float = -100.0

MEETING_CANCELLATIONS_SIGNAL_PCT: float = 300.0

DECLINE_RATE_SIGNAL_POINTS: float = 25.0

CALENDAR_PURGE_MIN_COUNT: int = 3
CALENDAR_PURGE_DEVIATION: float = 1000.0

CRISIS_MIN_HIGH_SIGNALS: int = 2
CRISIS_MIN_TOTAL_SIGNALS: int = 4

# Baselines holding fewer hours than this are not enough data to judge a spike
MIN_BASELINE_HOURS: int = 120

# Count rates below one event per day are compared against one per day
MIN_BASELINE_RATE: float = 1.0

LIKELY_TRIGGERS: Dict[CrisisType, List[str]] = {
    CrisisType.SUDDEN_SENTIMENT_COLLAPSE: [
        "Layoff announcement",
        "Organizational restructuring",
        "Leadership change",
    ],
    CrisisType.COMMUNICATION_SHUTDOWN: [
        "Manager departure",
        "Team conflict",
        "Major setback",
    ],
    CrisisType.LEADERSHIP_DEPARTURE_SHOCK: [
        "Manager resignation",
        "Executive departure",
    ],
    CrisisType.MASS_CALENDAR_CANCELLATION: [
        "Urgent company event",
        "Crisis response",
        "Emergency meeting",
    ],
    CrisisType.CONFLICT_SPIKE: [
        "Team disagreement",
        "Project failure",
        "Interpersonal conflict",
    ],
}

SEVERITY_RANK: Dict[CrisisSeverity, int] = {
    CrisisSeverity.LOW: 0,
    CrisisSeverity.MEDIUM: 1,
    CrisisSeverity.HIGH: 2,
    CrisisSeverity.CRITICAL: 3,
}


class CrisisNotFoundError(ValueError):
    """Raised when a crisis event ID does not exist."""


# =============================================================================
# Rates
# =============================================================================


def _decline_rate(activity: Dict[str, Any]) -> float:
    invites = activity.get("meeting_invites") or 0
    if invites <= 0:
        return 0.0
    return (activity.get("meeting_declines") or 0) / invites * 100


def hours_covered(activity: Dict[str, Any], default_hours: float) -> float:
    """Hours of data behind a window sum; `default_hours` when not reported."""
    return float(activity.get("hours_observed") or default_hours)


def _daily_rates(activity: Dict[str, Any], hours: float) -> Dict[str, Optional[float]]:
    scale = 24 / max(hours, 1)
    return {
        CrisisMetric.MESSAGE_VOLUME.value: activity.get("message_count", 0) * scale,
        CrisisMetric.NEGATIVE_REACTIONS.value: activity.get("negative_reactions", 0) * scale,
        CrisisMetric.THREAD_ABANDONMENT.value: activity.get("abandoned_threads", 0) * scale,
        CrisisMetric.MEETING_CANCELLATIONS.value: activity.get("meeting_cancellations", 0) * scale,
        CrisisMetric.CALENDAR_PURGES.value: activity.get("calendar_purges", 0) * scale,
        CrisisMetric.DECLINE_RATE.value: _decline_rate(activity),
        CrisisMetric.SENTIMENT_SCORE.value: activity.get("sentiment_score"),
    }


def compute_baseline_rates(activity: Dict[str, Any], days: int = 7) -> Dict[str, Optional[float]]:
    """
    Daily average rates over the baseline window.

    Counts are divided by the hours actually observed (`hours_observed`), so
    a team with two days of history is averaged over two days, not `days`.
    """
    return _daily_rates(activity, hours_covered(activity, days * 24))


def extrapolate_window(activity: Dict[str, Any], window_hours: int) -> Dict[str, Optional[float]]:
    """
    Daily-equivalent rates of a trailing window.

    Counts are scaled by 24 / hours observed (x4 for a full 6-hour window);
    the decline rate and sentiment are ratios and are not scaled.
    """
    return _daily_rates(activity, hours_covered(activity, window_hours))


def _rate_deviation(current: float, baseline: float) -> float:
    return (current - baseline) / max(baseline, MIN_BASELINE_RATE) * 100


# =============================================================================
# Signal Detection
# =============================================================================


def detect_signals(
    baseline: Dict[str, Optional[float]],
    current: Dict[str, Optional[float]],
    purges_in_window: float = 0
) -> List[CrisisSignal]:
    """
    Compare daily-equivalent current rates with baseline rates.

    Args:
        baseline: Output of compute_baseline_rates.
        current: Output of extrapolate_window.
        purges_in_window: Raw calendar purge count inside the window.

    Returns:
        Anomalous signals with their significance.
    """
    signals: List[CrisisSignal] = []

    def add(metric: CrisisMetric, deviation: float, significance: SignalSignificance) -> None:
        signals.append(
            CrisisSignal(
                metric=metric.value,
                baseline=round(baseline.get(metric.value) or 0.0, 4),
                current=round(current.get(metric.value) or 0.0, 4),
                deviation=round(deviation, 2),
                significance=significance,
            )
        )

    messages = _rate_deviation(
        current[CrisisMetric.MESSAGE_VOLUME.value],
        baseline[CrisisMetric.MESSAGE_VOLUME.value]
    )
    if abs(messages) >= MESSAGE_VOLUME_SIGNAL_PCT:
        add(
            CrisisMetric.MESSAGE_VOLUME,
            messages,
            SignalSignificance.HIGH if abs(messages) >= MESSAGE_VOLUME_HIGH_PCT else SignalSignificance.MEDIUM
        )

    reactions = _rate_deviation(
        current[CrisisMetric.NEGATIVE_REACTIONS.value],
        baseline[CrisisMetric.NEGATIVE_REACTIONS.value]
    )
    if reactions >= NEGATIVE_REACTIONS_SIGNAL_PCT:
        add(
            CrisisMetric.NEGATIVE_REACTIONS,
            reactions,
            SignalSignificance.HIGH if reactions >= NEGATIVE_REACTIONS_HIGH_PCT else SignalSignificance.MEDIUM
        )

    threads = _rate_deviation(
        current[CrisisMetric.THREAD_ABANDONMENT.value],
        baseline[CrisisMetric.THREAD_ABANDONMENT.value]
    )
    if threads >= THREAD_ABANDONMENT_SIGNAL_PCT:
        add(CrisisMetric.THREAD_ABANDONMENT, threads, SignalSignificance.MEDIUM)

    base_sentiment = baseline.get(CrisisMetric.SENTIMENT_SCORE.value)
    cur_sentiment = current.get(CrisisMetric.SENTIMENT_SCORE.value)
    if base_sentiment is not None and cur_sentiment is not None and base_sentiment > 0:
        sentiment = (cur_sentiment - base_sentiment) / base_sentiment * 100
        if sentiment <= SENTIMENT_DROP_PCT:
            add(CrisisMetric.SENTIMENT_SCORE, sentiment, SignalSignificance.HIGH)

    cancellations = _rate_deviation(
        current[CrisisMetric.MEETING_CANCELLATIONS.value],
        baseline[CrisisMetric.MEETING_CANCELLATIONS.value]
    )
    if cancellations >= MEETING_CANCELLATIONS_SIGNAL_PCT:
        add(CrisisMetric.MEETING_CANCELLATIONS, cancellations, SignalSignificance.MEDIUM)

    declines = current[CrisisMetric.DECLINE_RATE.value] - baseline[CrisisMetric.DECLINE_RATE.value]
    if declines >= DECLINE_RATE_SIGNAL_POINTS:
        add(CrisisMetric.DECLINE_RATE, declines, SignalSignificance.MEDIUM)

    if purges_in_window >= CALENDAR_PURGE_MIN_COUNT:
        add(CrisisMetric.CALENDAR_PURGES, CALENDAR_PURGE_DEVIATION, SignalSignificance.MEDIUM)

    return signals


def _high_count(signals: List[CrisisSignal]) -> int:
    return sum(1 for s in signals if s.significance == SignalSignificance.HIGH)


def is_significant_crisis(signals: List[CrisisSignal]) -> bool:
    """>= 2 high-significance signals OR >= 4 signals in total."""
    return (
        _high_count(signals) >= CRISIS_MIN_HIGH_SIGNALS
        or len(signals) >= CRISIS_MIN_TOTAL_SIGNALS
    )


def classify_crisis_type(signals: List[CrisisSignal]) -> CrisisType:
    """
    Decision table over which signal combination fired (first match wins).

    sentiment + negative reactions      -> sudden_sentiment_collapse
    message drop + cancellations        -> communication_shutdown
    calendar purges + cancellations     -> leadership_departure_shock
    cancellations                       -> mass_calendar_cancellation
    negative reactions                  -> conflict_spike
    otherwise                           -> sudden_sentiment_collapse
    """
    by_metric = {s.metric: s for s in signals}

    sentiment = CrisisMetric.SENTIMENT_SCORE.value in by_metric
    reactions = CrisisMetric.NEGATIVE_REACTIONS.value in by_metric
    cancellations = CrisisMetric.MEETING_CANCELLATIONS.value in by_metric
    purges = CrisisMetric.CALENDAR_PURGES.value in by_metric
    message_signal = by_metric.get(CrisisMetric.MESSAGE_VOLUME.value)
    message_drop = message_signal is not None and message_signal.deviation < 0

    if sentiment and reactions:
        return CrisisType.SUDDEN_SENTIMENT_COLLAPSE
    if message_drop and cancellations:
        return CrisisType.COMMUNICATION_SHUTDOWN
    if purges and cancellations:
        return CrisisType.LEADERSHIP_DEPARTURE_SHOCK
    if cancellations:
        return CrisisType.MASS_CALENDAR_CANCELLATION
    if reactions:
        return CrisisType.CONFLICT_SPIKE
    return CrisisType.SUDDEN_SENTIMENT_COLLAPSE


def calculate_severity(signals: List[CrisisSignal]) -> CrisisSeverity:
    """Severity from the high-signal count and the summed |deviation|."""
    high = _high_count(signals)
    magnitude = sum(abs(s.deviation) for s in signals)

    if high >= 3 or magnitude >= 2000:
        return CrisisSeverity.CRITICAL
    if high >= 2 or magnitude >= 1000:
        return CrisisSeverity.HIGH
    if magnitude >= 500:
        return CrisisSeverity.MEDIUM
    return CrisisSeverity.LOW


def calculate_crisis_confidence(signals: List[CrisisSignal]) -> int:
    """40 + 10 per signal + 15 per high-significance signal, capped at 100."""
    return min(40 + 10 * len(signals) + 15 * _high_count(signals), 100)


def identify_triggers(crisis_type: CrisisType) -> List[str]:
    """Likely real-world triggers of a crisis type."""
    return list(LIKELY_TRIGGERS[CrisisType(crisis_type)])


def get_recommended_action(severity: CrisisSeverity) -> str:
    """Response guidance for a severity."""
    if severity == CrisisSeverity.CRITICAL:
        return "Immediate leadership intervention required - contact team within 2 hours"
    if severity == CrisisSeverity.HIGH:
        return "Urgent manager check-in needed - schedule team conversation today"
    return "Monitor closely and schedule check-in within 24 hours"


def determine_urgency(severity: CrisisSeverity) -> CrisisUrgency:
    return CrisisUrgency.IMMEDIATE if severity == CrisisSeverity.CRITICAL else CrisisUrgency.TODAY


def evaluate_crisis(
    team_id: str,
    baseline_activity: Dict[str, Any],
    current_activity: Dict[str, Any],
    window_hours: int = 6,
    baseline_days: int = 7,
    min_baseline_hours: int = MIN_BASELINE_HOURS
) -> Optional[CrisisEvent]:
    """
    Evaluate one team's activity windows.

    Args:
        team_id: Team identifier.
        baseline_activity: Summed activity over the baseline days.
        current_activity: Summed activity over the trailing window.
        window_hours: Length of the trailing window.
        baseline_days: Days spanned by the baseline window.
        min_baseline_hours: Observed baseline hours needed before judging.

    Returns:
        An unsaved CrisisEvent, or None when the signals do not amount to a
        crisis or the baseline holds too little data.
    """
    baseline_hours = hours_covered(baseline_activity, baseline_days * 24)
    if baseline_hours < min_baseline_hours:
        logger.info(
            f"Not enough activity history for team {team_id}: "
            f"{baseline_hours:.0f}h observed, {min_baseline_hours}h required"
        )
        return None

    signals = detect_signals(
        compute_baseline_rates(baseline_activity, baseline_days),
        extrapolate_window(current_activity, window_hours),
        purges_in_window=current_activity.get("calendar_purges", 0)
    )

    if not is_significant_crisis(signals):
        return None

    crisis_type = classify_crisis_type(signals)
    severity = calculate_severity(signals)

    return CrisisEvent(
        team_id=team_id,
        crisis_type=crisis_type,
        severity=severity,
        signals=signals,
        confidence_score=calculate_crisis_confidence(signals),
        likely_triggers=identify_triggers(crisis_type),
        recommended_action=get_recommended_action(severity),
        urgency=determine_urgency(severity),
    )


# =============================================================================
# Storage
# =============================================================================


def _row_to_crisis(row: Any) -> CrisisEvent:
    if row["resolved_at"] is not None:
        resolution_state = ResolutionState.RESOLVED
    elif row["acknowledged_at"] is not None:
        resolution_state = ResolutionState.ACKNOWLEDGED
    else:
        resolution_state = ResolutionState.UNRESOLVED

    return CrisisEvent(
        id=row["id"],
        team_id=row["team_id"],
        crisis_type=row["crisis_type"],
        severity=row["severity"],
        signals=[CrisisSignal(**s) for s in from_json(row["signals"], default=[]) or []],
        confidence_score=row["confidence_score"],
        likely_triggers=from_json(row["likely_triggers"], default=[]) or [],
        recommended_action=row["recommended_action"],
        urgency=row["urgency"],
        detected_at=row["detected_at"],
        last_seen_at=row["last_seen_at"],
        acknowledged_at=row["acknowledged_at"],
        acknowledged_by=row["acknowledged_by"],
        resolved_at=row["resolved_at"],
        resolved_by=row["resolved_by"],
        resolution_notes=row["resolution_notes"],
        resolution_state=resolution_state,
    )


def is_new_event(event: CrisisEvent) -> bool:
    """True when the event was created (not re-detected) by the last scan."""
    return event.detected_at is not None and event.detected_at == event.last_seen_at


async def detect_team_crisis(team_id: str, now: Optional[datetime] = None) -> Optional[CrisisEvent]:
    """
    Scan one team and store any crisis found.

    Returns:
        The stored (new or updated) CrisisEvent, or None when there is no
        crisis or not enough activity data.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)

    window_start = now - timedelta(hours=settings.crisis_window_hours)
    baseline_start = window_start - timedelta(days=settings.crisis_baseline_days)

    current_activity = await fetch_activity_window(team_id, window_start, now)
    baseline_activity = await fetch_activity_window(team_id, baseline_start, window_start)

    if not current_activity or not baseline_activity:
        return None

    event = evaluate_crisis(
        team_id,
        baseline_activity,
        current_activity,
        window_hours=settings.crisis_window_hours,
        baseline_days=settings.crisis_baseline_days,
        min_baseline_hours=settings.crisis_min_baseline_hours
    )
    if event is None:
        return None

    signals_json = to_json([s.model_dump(mode="json") for s in event.signals])

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            existing_id = await conn.fetchval(
                """
                SELECT id
                FROM crisis_event
                WHERE team_id = $1
                  AND crisis_type = $2
                  AND resolved_at IS NULL
                  AND detected_at >= $3
                ORDER BY detected_at DESC
                LIMIT 1
                FOR UPDATE
                """,
                team_id,
                event.crisis_type.value,
                now - timedelta(hours=settings.crisis_dedup_hours)
            )

            if existing_id:
                row = await conn.fetchrow(
                    """
                    UPDATE crisis_event
                    SET severity = $2, signals = $3::jsonb, confidence_score = $4,
                        recommended_action = $5, urgency = $6, last_seen_at = $7
                    WHERE id = $1
                    RETURNING *
                    """,
                    existing_id,
                    event.severity.value,
                    signals_json,
                    event.confidence_score,
                    event.recommended_action,
                    event.urgency.value,
                    now
                )
                logger.info(f"Updated {event.crisis_type.value} crisis {existing_id} for team {team_id}")
            else:
                row = await conn.fetchrow(
                    """
                    INSERT INTO crisis_event (
                        id, team_id, crisis_type, severity, signals,
                        confidence_score, likely_triggers, recommended_action,
                        urgency, detected_at, last_seen_at
                    )
                    VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7::jsonb, $8, $9, $10, $10)
                    RETURNING *
                    """,
                    str(uuid.uuid4()),
                    team_id,
                    event.crisis_type.value,
                    event.severity.value,
                    signals_json,
                    event.confidence_score,
                    to_json(event.likely_triggers),
                    event.recommended_action,
                    event.urgency.value,
                    now
                )
                logger.warning(
                    f"{event.severity.value.upper()} crisis detected for team {team_id}: "
                    f"{event.crisis_type.value} ({len(event.signals)} signals)"
                )

    return _row_to_crisis(row)


async def get_crisis(crisis_id: str) -> Optional[CrisisEvent]:
    """Crisis event by ID, or None."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM crisis_event WHERE id = $1", crisis_id)
    return _row_to_crisis(row) if row else None


async def get_active_crises(hours: int = 24, team_id: Optional[str] = None) -> List[CrisisEvent]:
    """Unresolved crises detected in the last `hours`, most severe first."""
    since = datetime.now(timezone.utc) - timedelta(hours=hours)

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT *
            FROM crisis_event
            WHERE resolved_at IS NULL
              AND detected_at >= $1
              AND ($2::text IS NULL OR team_id = $2)
            ORDER BY detected_at DESC
            """,
            since,
            team_id
        )

    crises = [_row_to_crisis(row) for row in rows]
    # Stable sort keeps the recency order within a severity
    crises.sort(key=lambda c: SEVERITY_RANK[c.severity], reverse=True)
    return crises


async def acknowledge_crisis(crisis_id: str, acknowledged_by: str) -> CrisisEvent:
    """
    Record acknowledgement. The first acknowledgement is kept.

    Raises:
        CrisisNotFoundError: If the crisis does not exist.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            UPDATE crisis_event
            SET acknowledged_at = COALESCE(acknowledged_at, NOW()),
                acknowledged_by = COALESCE(acknowledged_by, $2)
            WHERE id = $1
            RETURNING *
            """,
            crisis_id,
            acknowledged_by
        )

    if row is None:
        raise CrisisNotFoundError(f"Crisis {crisis_id} not found")

    logger.info(f"Crisis {crisis_id} acknowledged by {acknowledged_by}")
    return _row_to_crisis(row)


async def resolve_crisis(
    crisis_id: str,
    resolved_by: Optional[str] = None,
    notes: Optional[str] = None
) -> CrisisEvent:
    """
    Mark a crisis resolved. Does not require prior acknowledgement. The first
    resolution time and resolver are kept.

    Raises:
        CrisisNotFoundError: If the crisis does not exist.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            UPDATE crisis_event
            SET resolved_at = COALESCE(resolved_at, NOW()),
                resolved_by = COALESCE(resolved_by, $3),
                resolution_notes = COALESCE($2, resolution_notes)
            WHERE id = $1
            RETURNING *
            """,
            crisis_id,
            notes,
            resolved_by
        )

    if row is None:
        raise CrisisNotFoundError(f"Crisis {crisis_id} not found")

    logger.info(f"Crisis {crisis_id} resolved by {resolved_by or 'unknown'}")
    return _row_to_crisis(row)


__all__ = [
    "CrisisNotFoundError",
    "LIKELY_TRIGGERS",
    "hours_covered",
    "compute_baseline_rates",
    "extrapolate_window",
    "detect_signals",
    "is_significant_crisis",
    "classify_crisis_type",
    "calculate_severity",
    "calculate_crisis_confidence",
    "identify_triggers",
    "get_recommended_action",
    "determine_urgency",
    "evaluate_crisis",
    "is_new_event",
    "detect_team_crisis",
    "get_crisis",
    "get_active_crises",
    "acknowledge_crisis",
    "resolve_crisis",
]
