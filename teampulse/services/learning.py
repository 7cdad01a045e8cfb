"""
Learning Loop Service.

Every completed experiment with an impact yields exactly one learning record
(team profile, risk type, action, outcome). Retrieval ranks the corpus for a
(profile, risk type) query with an explicit precedence:

1. Exact-profile positives (industry + function + size band), most recent first
2. Only when step 1 yields fewer than `min_count`: same function and size band
   positives from other industries
3. Exact-profile negatives, always returned separately and never broadened

Broadening applies to scarce positive evidence only; negative outcomes stay
scoped to the exact profile so a recommender can exclude past failures.

Dependencies:
- teampulse/core/database.py: get_db_pool, to_json, from_json
- teampulse/core/config.py: learning_min_results, learning_result_limit
"""

import logging
import uuid
from typing import Any, List, Optional

from teampulse.core.config import get_settings
from teampulse.core.database import from_json, get_db_pool, to_json
from teampulse.models.enums import Confidence, ImpactResult, RiskType
from teampulse.models.schemas import (
    Experiment,
    Impact,
    InterventionAction,
    LearnedPatterns,
    LearningRecord,
    LearningStats,
    MetricChange,
    TeamProfile,
)


logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_MIN: int = 80

MEDIUM_CONFIDENCE_MIN: int = 60


def impact_confidence_level(confidence: int) -> Confidence:
    """Bucket a 0-100 impact confidence."""
    if confidence >= HIGH_CONFIDENCE_MIN:
        return Confidence.HIGH
    if confidence >= MEDIUM_CONFIDENCE_MIN:
        return Confidence.MEDIUM
    return Confidence.LOW


def build_learning_record(
    experiment: Experiment,
    action: InterventionAction,
    impact: Impact,
    profile: TeamProfile
) -> LearningRecord:
    """Assemble the learning record of a completed experiment."""
    return LearningRecord(
        experiment_id=experiment.id,
        industry=profile.industry,
        function=profile.function,
        size_band=profile.size_band,
        risk_type=action.linked_risk,
        top_drivers=[action.top_driver] if action.top_driver else [],
        action_title=action.title,
        action_duration_weeks=action.duration_weeks,
        outcome=impact.result,
        metric_impacts=impact.metric_changes,
        confidence=impact_confidence_level(impact.confidence),
    )


async def record_learning(
    experiment: Experiment,
    action: InterventionAction,
    impact: Impact,
    profile: TeamProfile
) -> Optional[str]:
    """
    Store the learning record of an experiment.

    Exactly one record per experiment: a repeated call is a no-op.

    Returns:
        ID of the new record, or None when one already existed.
    """
    record = build_learning_record(experiment, action, impact, profile)

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        learning_id = await conn.fetchval(
            """
            INSERT INTO action_learning (
                id, experiment_id, industry, function, size_band, risk_type,
                top_drivers, action_title, action_duration_weeks, outcome,
                metric_impacts, confidence, recorded_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10, $11::jsonb, $12, NOW())
            ON CONFLICT (experiment_id) DO NOTHING
            RETURNING id
            """,
            str(uuid.uuid4()),
            record.experiment_id,
            record.industry,
            record.function,
            record.size_band,
            record.risk_type.value,
            to_json(record.top_drivers),
            record.action_title,
            record.action_duration_weeks,
            record.outcome.value,
            to_json([m.model_dump(mode="json") for m in record.metric_impacts]),
            record.confidence.value
        )

    if learning_id:
        logger.info(
            f"Recorded {record.outcome.value} learning for experiment {experiment.id} "
            f"({record.function}/{record.size_band}, {record.risk_type.value})"
        )
    return learning_id


# =============================================================================
# Retrieval
# =============================================================================


def _recency(record: LearningRecord) -> float:
    return record.recorded_at.timestamp() if record.recorded_at else 0.0


def rank_learnings(
    records: List[LearningRecord],
    industry: str,
    function: str,
    size_band: str,
    risk_type: RiskType,
    limit: int = 10,
    min_count: int = 3,
    negative_limit: int = 5
) -> LearnedPatterns:
    """
    Rank learning records for one profile and risk type.

    Args:
        records: Candidate records (any profile).
        industry: Query team's industry.
        function: Query team's function.
        size_band: Query team's size band.
        risk_type: Risk the recommendation targets.
        limit: Maximum positive records returned (exact + broadened).
        min_count: Exact positives below which the search is broadened.
        negative_limit: Maximum negative records returned.

    Returns:
        LearnedPatterns with successes, broadened_successes and failures.
    """
    risk_type = RiskType(risk_type)
    candidates = sorted(
        [r for r in records if r.risk_type == risk_type],
        key=_recency,
        reverse=True
    )

    def exact(record: LearningRecord) -> bool:
        return (
            record.industry == industry
            and record.function == function
            and record.size_band == size_band
        )

    successes = [
        r for r in candidates
        if r.outcome == ImpactResult.POSITIVE and exact(r)
    ][:limit]

    broadened: List[LearningRecord] = []
    if len(successes) < min_count:
        broadened = [
            r for r in candidates
            if r.outcome == ImpactResult.POSITIVE
            and r.function == function
            and r.size_band == size_band
            and r.industry != industry
        ][:max(limit - len(successes), 0)]

    failures = [
        r for r in candidates
        if r.outcome == ImpactResult.NEGATIVE and exact(r)
    ][:negative_limit]

    return LearnedPatterns(
        successes=successes,
        broadened_successes=broadened,
        failures=failures,
        total_learnings=len(successes) + len(broadened) + len(failures),
    )


def _row_to_record(row: Any) -> LearningRecord:
    impacts = from_json(row["metric_impacts"], default=[]) or []
    return LearningRecord(
        id=row["id"],
        experiment_id=row["experiment_id"],
        industry=row["industry"],
        function=row["function"],
        size_band=row["size_band"],
        risk_type=row["risk_type"],
        top_drivers=from_json(row["top_drivers"], default=[]) or [],
        action_title=row["action_title"],
        action_duration_weeks=row["action_duration_weeks"],
        outcome=row["outcome"],
        metric_impacts=[MetricChange(**m) for m in impacts],
        confidence=row["confidence"],
        recorded_at=row["recorded_at"],
    )


async def fetch_candidate_learnings(
    function: str,
    size_band: str,
    risk_type: RiskType
) -> List[LearningRecord]:
    """All learnings sharing function, size band and risk type (any industry)."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT *
            FROM action_learning
            WHERE function = $1 AND size_band = $2 AND risk_type = $3
            ORDER BY recorded_at DESC
            """,
            function,
            size_band,
            RiskType(risk_type).value
        )
    return [_row_to_record(row) for row in rows]


async def get_learned_patterns(
    industry: str,
    function: str,
    size_band: str,
    risk_type: RiskType,
    limit: Optional[int] = None
) -> LearnedPatterns:
    """
    Ranked learnings for a (profile, risk type) query.

    Example:
        >>> patterns = await get_learned_patterns("Fintech", "Engineering", "6-10", RiskType.OVERLOAD)
        >>> [r.action_title for r in patterns.successes]
        ['Introduce quiet hours (no messages 8PM-8AM)']
    """
    settings = get_settings()
    records = await fetch_candidate_learnings(function, size_band, risk_type)

    patterns = rank_learnings(
        records,
        industry,
        function,
        size_band,
        risk_type,
        limit=limit or settings.learning_result_limit,
        min_count=settings.learning_min_results,
        negative_limit=settings.learning_negative_limit,
    )

    logger.info(
        f"Learned patterns for {industry}/{function}/{size_band} {RiskType(risk_type).value}: "
        f"{len(patterns.successes)} exact, {len(patterns.broadened_successes)} broadened, "
        f"{len(patterns.failures)} failures"
    )
    return patterns


async def get_learning_stats(industry: str, function: str, size_band: str) -> LearningStats:
    """Outcome counts and success rate for one exact profile."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT outcome, COUNT(*) AS count
            FROM action_learning
            WHERE industry = $1 AND function = $2 AND size_band = $3
            GROUP BY outcome
            """,
            industry,
            function,
            size_band
        )

    counts = {row["outcome"]: int(row["count"]) for row in rows}
    successes = counts.get(ImpactResult.POSITIVE.value, 0)
    failures = counts.get(ImpactResult.NEGATIVE.value, 0)
    neutrals = counts.get(ImpactResult.NEUTRAL.value, 0)
    total = successes + failures + neutrals

    return LearningStats(
        successes=successes,
        failures=failures,
        neutrals=neutrals,
        success_rate=round(successes / total * 100, 1) if total else 0.0,
    )


__all__ = [
    "impact_confidence_level",
    "build_learning_record",
    "record_learning",
    "rank_learnings",
    "fetch_candidate_learnings",
    "get_learned_patterns",
    "get_learning_stats",
]
