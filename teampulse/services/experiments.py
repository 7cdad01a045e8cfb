"""
Experiment Tracking Service.

An activated action runs as a time-boxed experiment with declared success
metrics. Pre-metrics are captured at activation and post-metrics at or after
the end date; the pre/post comparison is classified into an Impact.

Impact Rules:
    A metric moved as expected when its direction matches the declared one
    and |percent change| > 5. It is adverse when it moved the other way by
    more than 5%.
    - positive: >= 2 metrics moved as expected and none adverse
    - negative: >= 2 adverse metrics
    - neutral:  otherwise
    Confidence is min(90, 60 + 10 * confirming) for positive/negative and 50
    for neutral.

Completion:
    The sweep claims an experiment (running -> completing) with a conditional
    UPDATE before touching it, so overlapping sweeps complete it exactly once.
    The claim only matches once the post-metrics window reaches the day before
    the end date; a running experiment cannot be completed early.
    Post-metrics are written only while still empty; a retried completion never
    replaces them with a later-drifted average. Learning records are written
    after the experiment is completed and never roll it back.

Dependencies:
- teampulse/services/metrics_source.py: trailing averages for snapshots
- teampulse/services/baseline.py: baseline reference values
- teampulse/services/learning.py: record_learning
"""

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from teampulse.core.database import execute_query, from_json, get_db_pool, to_json
from teampulse.models.enums import (
    ExpectedDirection,
    ExperimentStatus,
    ImpactResult,
    MetricKey,
    RiskType,
)
from teampulse.models.schemas import (
    Experiment,
    Impact,
    InterventionAction,
    MetricChange,
    MetricSnapshot,
    SuccessMetric,
)
from teampulse.services.baseline import get_current_baseline
from teampulse.services.learning import record_learning
from teampulse.services.metrics_source import get_trailing_averages
from teampulse.services.team_directory import get_team_profile


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================


SIGNIFICANT_CHANGE_PCT: float = 5.0

MIN_CONFIRMING_METRICS: int = 2

MAX_IMPACT_CONFIDENCE: int = 90

NEUTRAL_CONFIDENCE: int = 50

# Claims older than this are treated as abandoned by a crashed sweep
CLAIM_TIMEOUT_MINUTES: int = 60

SUCCESS_METRICS: Dict[RiskType, List[SuccessMetric]] = {
    RiskType.OVERLOAD: [
        SuccessMetric(metric=MetricKey.AFTER_HOURS_RATE.value, expected_direction=ExpectedDirection.DECREASE),
        SuccessMetric(metric=MetricKey.MEETING_HOURS.value, expected_direction=ExpectedDirection.DECREASE),
        SuccessMetric(metric=MetricKey.FOCUS_TIME_RATIO.value, expected_direction=ExpectedDirection.INCREASE),
    ],
    RiskType.EXECUTION: [
        SuccessMetric(metric=MetricKey.RESPONSE_TIME_HOURS.value, expected_direction=ExpectedDirection.DECREASE),
        SuccessMetric(metric=MetricKey.UNIQUE_CONTACTS.value, expected_direction=ExpectedDirection.INCREASE),
        SuccessMetric(metric=MetricKey.FOCUS_TIME_RATIO.value, expected_direction=ExpectedDirection.INCREASE),
    ],
    RiskType.RETENTION_STRAIN: [
        SuccessMetric(metric=MetricKey.AFTER_HOURS_RATE.value, expected_direction=ExpectedDirection.DECREASE),
        SuccessMetric(metric=MetricKey.MEETING_HOURS.value, expected_direction=ExpectedDirection.DECREASE),
        SuccessMetric(metric=MetricKey.RESPONSE_TIME_HOURS.value, expected_direction=ExpectedDirection.DECREASE),
    ],
}

RISK_NAMES: Dict[RiskType, str] = {
    RiskType.OVERLOAD: "overload risk",
    RiskType.EXECUTION: "execution risk",
    RiskType.RETENTION_STRAIN: "retention strain",
}

NEXT_STEPS: Dict[ImpactResult, str] = {
    ImpactResult.POSITIVE: "Make this practice permanent and monitor for sustained improvement.",
    ImpactResult.NEGATIVE: "Discontinue this intervention and try an alternative approach.",
    ImpactResult.NEUTRAL: "Extend the experiment duration or try a more targeted intervention.",
}


class ExperimentNotFoundError(ValueError):
    """Raised when an experiment ID does not exist."""


class ExperimentStateError(ValueError):
    """Raised when a running experiment is completed before its end date."""


# =============================================================================
# Pure Helpers
# =============================================================================


def get_success_metrics(risk_type: RiskType) -> List[SuccessMetric]:
    """Success metrics and expected directions for a risk type."""
    return [m.model_copy() for m in SUCCESS_METRICS[RiskType(risk_type)]]


def build_hypothesis(title: str, risk_type: RiskType, duration_weeks: int) -> str:
    """
    Hypothesis statement of an experiment.

    Example:
        >>> build_hypothesis("Reduce meeting frequency by 20%", RiskType.OVERLOAD, 2)
        'If we apply "Reduce meeting frequency by 20%" for 2 weeks, then overload risk will decrease without harming team coordination.'
    """
    return (
        f'If we apply "{title}" for {duration_weeks} weeks, then '
        f"{RISK_NAMES[RiskType(risk_type)]} will decrease without harming team coordination."
    )


def calculate_end_date(start_date: date, duration_weeks: int) -> date:
    """End date of an experiment: start + duration in weeks."""
    return start_date + timedelta(weeks=duration_weeks)


def _metric_label(metric: str) -> str:
    return metric.replace("_", " ")


def compare_metric(
    success_metric: SuccessMetric,
    pre_value: float,
    post_value: float
) -> MetricChange:
    """
    Pre/post comparison of one success metric.

    Example:
        >>> change = compare_metric(
        ...     SuccessMetric(metric="response_time_hours", expected_direction="decrease"), 8.0, 5.0)
        >>> change.delta, change.percent_change, change.moved_as_expected
        (-3.0, -37.5, True)
    """
    delta = post_value - pre_value
    percent_change = (delta / pre_value * 100) if pre_value != 0 else 0.0
    significant = abs(percent_change) > SIGNIFICANT_CHANGE_PCT

    if delta > 0:
        actual: Optional[ExpectedDirection] = ExpectedDirection.INCREASE
    elif delta < 0:
        actual = ExpectedDirection.DECREASE
    else:
        actual = None

    expected = ExpectedDirection(success_metric.expected_direction)

    return MetricChange(
        metric=success_metric.metric,
        pre_value=pre_value,
        post_value=post_value,
        delta=round(delta, 4),
        percent_change=round(percent_change, 2),
        expected_direction=expected,
        moved_as_expected=significant and actual == expected,
        adverse=significant and actual is not None and actual != expected,
    )


def compute_impact(
    experiment_id: str,
    action_title: str,
    success_metrics: List[SuccessMetric],
    pre_metrics: List[MetricSnapshot],
    post_metrics: List[MetricSnapshot]
) -> Impact:
    """
    Classify an experiment's outcome from its pre/post snapshots.

    Metrics missing from either snapshot are left out of the comparison.
    """
    pre_by_metric = {s.metric: s.value for s in pre_metrics}
    post_by_metric = {s.metric: s.value for s in post_metrics}

    changes: List[MetricChange] = []
    for success_metric in success_metrics:
        pre_value = pre_by_metric.get(success_metric.metric)
        post_value = post_by_metric.get(success_metric.metric)
        if pre_value is None or post_value is None:
            continue
        changes.append(compare_metric(success_metric, pre_value, post_value))

    improved = [c for c in changes if c.moved_as_expected]
    worsened = [c for c in changes if c.adverse]

    if len(improved) >= MIN_CONFIRMING_METRICS and not worsened:
        result = ImpactResult.POSITIVE
        confidence = min(MAX_IMPACT_CONFIDENCE, 60 + 10 * len(improved))
        names = ", ".join(_metric_label(c.metric) for c in improved)
        summary = (
            f'"{action_title}" improved {names} without negative side effects. '
            f"Consider making this permanent."
        )
    elif len(worsened) >= MIN_CONFIRMING_METRICS:
        result = ImpactResult.NEGATIVE
        confidence = min(MAX_IMPACT_CONFIDENCE, 60 + 10 * len(worsened))
        names = ", ".join(_metric_label(c.metric) for c in worsened)
        summary = (
            f'"{action_title}" did not produce expected results. {names} moved in '
            f"the wrong direction. Try a different approach."
        )
    else:
        result = ImpactResult.NEUTRAL
        confidence = NEUTRAL_CONFIDENCE
        summary = (
            f'"{action_title}" showed minimal impact. Metrics remained stable. '
            f"May need more time or a stronger intervention."
        )

    return Impact(
        experiment_id=experiment_id,
        result=result,
        confidence=confidence,
        metric_changes=changes,
        summary=summary,
        next_step=NEXT_STEPS[result],
    )


# =============================================================================
# Snapshots & Start
# =============================================================================


async def capture_metric_snapshot(
    team_id: str,
    success_metrics: List[SuccessMetric],
    as_of: date
) -> List[MetricSnapshot]:
    """
    7-day trailing average of each success metric with its baseline mean.

    Args:
        team_id: Team identifier.
        success_metrics: Metrics to capture.
        as_of: Last day of the trailing window.
    """
    metrics = [m.metric for m in success_metrics]
    averages = await get_trailing_averages(team_id, as_of, metrics)
    baseline = await get_current_baseline(team_id)
    captured_at = datetime.now(timezone.utc)

    return [
        MetricSnapshot(
            metric=metric,
            value=averages.get(metric),
            baseline=baseline.mean_of(metric) if baseline else None,
            captured_at=captured_at,
        )
        for metric in metrics
    ]


async def start_experiment(
    conn: Any,
    action: InterventionAction,
    pre_metrics: List[MetricSnapshot],
    start_date: date
) -> Experiment:
    """
    Insert the experiment of a freshly activated action.

    Runs on the caller's connection so it shares the activation transaction.
    """
    success_metrics = get_success_metrics(action.linked_risk)
    experiment = Experiment(
        id=str(uuid.uuid4()),
        action_id=action.id,
        team_id=action.team_id,
        start_date=start_date,
        end_date=calculate_end_date(start_date, action.duration_weeks),
        hypothesis=build_hypothesis(action.title, action.linked_risk, action.duration_weeks),
        success_metrics=success_metrics,
        pre_metrics=pre_metrics,
        status=ExperimentStatus.RUNNING,
    )

    await conn.execute(
        """
        INSERT INTO experiment (
            id, action_id, team_id, start_date, end_date, hypothesis,
            success_metrics, pre_metrics, post_metrics, status
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8::jsonb, '[]'::jsonb, $9)
        """,
        experiment.id,
        experiment.action_id,
        experiment.team_id,
        experiment.start_date,
        experiment.end_date,
        experiment.hypothesis,
        to_json([m.model_dump(mode="json") for m in experiment.success_metrics]),
        to_json([s.model_dump(mode="json") for s in experiment.pre_metrics]),
        experiment.status.value
    )

    logger.info(
        f"Started experiment {experiment.id} for action {action.id} "
        f"({experiment.start_date} -> {experiment.end_date})"
    )
    return experiment


# =============================================================================
# Storage Helpers
# =============================================================================


def _row_to_experiment(row: Any) -> Experiment:
    return Experiment(
        id=row["id"],
        action_id=row["action_id"],
        team_id=row["team_id"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        hypothesis=row["hypothesis"],
        success_metrics=[SuccessMetric(**m) for m in from_json(row["success_metrics"], default=[]) or []],
        pre_metrics=[MetricSnapshot(**s) for s in from_json(row["pre_metrics"], default=[]) or []],
        post_metrics=[MetricSnapshot(**s) for s in from_json(row["post_metrics"], default=[]) or []],
        status=row["status"],
        completed_at=row["completed_at"],
    )


def _row_to_impact(row: Any) -> Impact:
    return Impact(
        experiment_id=row["experiment_id"],
        result=row["result"],
        confidence=row["confidence"],
        metric_changes=[MetricChange(**c) for c in from_json(row["metric_changes"], default=[]) or []],
        summary=row["summary"],
        next_step=row["next_step"],
    )


def _row_to_action(row: Any) -> InterventionAction:
    return InterventionAction(**dict(row))


async def get_experiment(experiment_id: str) -> Optional[Experiment]:
    """Experiment by ID, or None."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM experiment WHERE id = $1", experiment_id)
    return _row_to_experiment(row) if row else None


async def get_impact(experiment_id: str) -> Optional[Impact]:
    """Impact of a completed experiment, or None."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            "SELECT * FROM experiment_impact WHERE experiment_id = $1",
            experiment_id
        )
    return _row_to_impact(row) if row else None


async def list_experiments(team_id: str) -> List[Experiment]:
    """Experiments of a team, newest first."""
    rows = await execute_query(
        "SELECT * FROM experiment WHERE team_id = $1 ORDER BY start_date DESC",
        team_id
    )
    return [_row_to_experiment(row) for row in rows]


# =============================================================================
# Completion
# =============================================================================


CLAIM_EXPERIMENT_SQL = f"""
    UPDATE experiment
    SET status = 'completing', claimed_at = NOW()
    WHERE id = $1
      AND end_date <= $2
      AND (
        status = 'running'
        OR (status = 'completing' AND claimed_at < NOW() - INTERVAL '{CLAIM_TIMEOUT_MINUTES} minutes')
      )
    RETURNING *
"""

RELEASE_CLAIM_SQL = """
    UPDATE experiment
    SET status = 'running', claimed_at = NULL
    WHERE id = $1 AND status = 'completing'
"""


async def complete_experiment(experiment_id: str, as_of: Optional[date] = None) -> Optional[Impact]:
    """
    Complete one experiment exactly once.

    Args:
        experiment_id: Experiment to complete.
        as_of: Last day of the post-metrics window (defaults to yesterday).
            Must be no earlier than the day before the end date.

    Returns:
        The computed Impact, or None when another sweep holds the claim or the
        experiment is already completed.

    Raises:
        ExperimentNotFoundError: If the experiment does not exist.
        ExperimentStateError: If the experiment is still running and its end
            date has not been reached.
    """
    as_of = as_of or (date.today() - timedelta(days=1))

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(CLAIM_EXPERIMENT_SQL, experiment_id, as_of + timedelta(days=1))

        if row is None:
            current = await conn.fetchrow(
                "SELECT status, end_date FROM experiment WHERE id = $1",
                experiment_id
            )
            if current is None:
                raise ExperimentNotFoundError(f"Experiment {experiment_id} not found")
            if current["status"] == ExperimentStatus.RUNNING.value:
                raise ExperimentStateError(
                    f"Experiment {experiment_id} runs until {current['end_date']}, "
                    f"post-metrics through {as_of} are too early"
                )
            logger.info(f"Experiment {experiment_id} already claimed or completed, skipping")
            return None

    experiment = _row_to_experiment(row)

    try:
        # Snapshot reads use their own pooled connections
        snapshot: Optional[List[MetricSnapshot]] = None
        if not experiment.post_metrics:
            snapshot = await capture_metric_snapshot(
                experiment.team_id,
                experiment.success_metrics,
                as_of
            )

        async with pool.acquire() as conn:
            if snapshot is not None:
                await conn.execute(
                    """
                    UPDATE experiment
                    SET post_metrics = $2::jsonb
                    WHERE id = $1 AND post_metrics = '[]'::jsonb
                    """,
                    experiment.id,
                    to_json([s.model_dump(mode="json") for s in snapshot])
                )
                experiment.post_metrics = snapshot

            action_row = await conn.fetchrow(
                "SELECT * FROM team_action WHERE id = $1",
                experiment.action_id
            )
            action = _row_to_action(action_row)

            impact = compute_impact(
                experiment.id,
                action.title,
                experiment.success_metrics,
                experiment.pre_metrics,
                experiment.post_metrics
            )

            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO experiment_impact (
                        experiment_id, result, confidence, metric_changes,
                        summary, next_step
                    )
                    VALUES ($1, $2, $3, $4::jsonb, $5, $6)
                    ON CONFLICT (experiment_id) DO NOTHING
                    """,
                    impact.experiment_id,
                    impact.result.value,
                    impact.confidence,
                    to_json([c.model_dump(mode="json") for c in impact.metric_changes]),
                    impact.summary,
                    impact.next_step
                )
                await conn.execute(
                    """
                    UPDATE experiment
                    SET status = 'completed', completed_at = NOW()
                    WHERE id = $1
                    """,
                    experiment.id
                )
                await conn.execute(
                    """
                    UPDATE team_action
                    SET status = 'completed'
                    WHERE id = $1 AND status = 'active'
                    """,
                    action.id
                )

    except Exception:
        async with pool.acquire() as conn:
            await conn.execute(RELEASE_CLAIM_SQL, experiment_id)
        raise

    experiment.status = ExperimentStatus.COMPLETED
    logger.info(f"Completed experiment {experiment.id}: {impact.result.value} ({impact.confidence}%)")

    try:
        profile = await get_team_profile(experiment.team_id)
        if profile is None:
            logger.warning(f"No profile for team {experiment.team_id}, learning not recorded")
        else:
            await record_learning(experiment, action, impact, profile)
    except Exception as e:
        logger.error(f"Failed to record learning for experiment {experiment.id}: {e}", exc_info=True)

    return impact


async def sweep_expired_experiments(as_of: Optional[date] = None) -> Dict[str, Any]:
    """
    Complete every running experiment whose end date has passed.

    Returns:
        Dict with completed, skipped, failed counts and per-experiment errors.
    """
    as_of = as_of or date.today()

    rows = await execute_query(
        """
        SELECT id
        FROM experiment
        WHERE status = $1 AND end_date <= $2
        ORDER BY end_date
        """,
        ExperimentStatus.RUNNING.value,
        as_of
    )

    results: Dict[str, Any] = {"completed": 0, "skipped": 0, "failed": 0, "errors": []}

    for row in rows:
        experiment_id = row["id"]
        try:
            impact = await complete_experiment(experiment_id, as_of - timedelta(days=1))
            if impact is None:
                results["skipped"] += 1
            else:
                results["completed"] += 1
        except Exception as e:
            logger.error(f"Error completing experiment {experiment_id}: {e}")
            results["failed"] += 1
            results["errors"].append({"experiment_id": experiment_id, "error": str(e)})
            continue

    logger.info(
        f"Experiment sweep: {results['completed']} completed, "
        f"{results['skipped']} skipped, {results['failed']} failed"
    )
    return results


__all__ = [
    "SUCCESS_METRICS",
    "NEXT_STEPS",
    "ExperimentNotFoundError",
    "ExperimentStateError",
    "get_success_metrics",
    "build_hypothesis",
    "calculate_end_date",
    "compare_metric",
    "compute_impact",
    "capture_metric_snapshot",
    "start_experiment",
    "get_experiment",
    "get_impact",
    "list_experiments",
    "complete_experiment",
    "sweep_expired_experiments",
]
