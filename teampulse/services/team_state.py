"""
Team State Service.

Aggregates the three weekly risk composites into one team health state.

State Rules (evaluated in order):
    1. breaking:   execution >= 65 this week AND execution >= 65 the week before
    2. overloaded: overload >= 65 this week
    3. strained:   any risk >= 35
    4. healthy:    otherwise (initial state)

The two-week execution rule is hysteresis: one noisy week cannot flip a team to
breaking. States are evaluated once per team and week and never revised.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from teampulse.core.database import get_db_pool
from teampulse.models.enums import Confidence, DominantRisk, RiskType, TeamHealthState
from teampulse.models.schemas import RiskScore, TeamState
from teampulse.services.risk import BAND_RED_MIN, BAND_YELLOW_MIN


logger = logging.getLogger(__name__)


STATE_SUMMARIES: Dict[TeamHealthState, str] = {
    TeamHealthState.HEALTHY: "Team patterns are within normal range.",
    TeamHealthState.BREAKING: "Coordination patterns have degraded significantly for multiple weeks.",
    TeamHealthState.OVERLOADED: "Work intensity is exceeding the team's ability to recover.",
}

STRAINED_SUMMARIES: Dict[DominantRisk, str] = {
    DominantRisk.OVERLOAD: "Coordination pressure is rising compared to normal patterns.",
    DominantRisk.EXECUTION: "Team coordination efficiency is declining.",
    DominantRisk.RETENTION_STRAIN: "Sustained pressure patterns may increase exit risk.",
}


def _aggregate_confidence(risks: List[RiskScore]) -> Confidence:
    levels = [r.confidence for r in risks]
    if not levels:
        return Confidence.LOW
    if all(level == Confidence.HIGH for level in levels):
        return Confidence.HIGH
    if any(level == Confidence.LOW for level in levels):
        return Confidence.LOW
    return Confidence.MEDIUM


def determine_team_state(
    team_id: str,
    week_start: date,
    risks: List[RiskScore],
    previous_execution_score: Optional[int]
) -> TeamState:
    """
    Classify a team's weekly state from its risk scores.

    Args:
        team_id: Team identifier.
        week_start: Monday of the diagnosed week.
        risks: This week's risk scores (any subset of the three types).
        previous_execution_score: Execution score of the immediately preceding
            week, None when that week was not scored.

    Returns:
        TeamState with dominant risk, aggregated confidence and summary.
    """
    scores = {RiskType(r.risk_type): r.score for r in risks}
    overload = scores.get(RiskType.OVERLOAD, 0)
    execution = scores.get(RiskType.EXECUTION, 0)

    if (
        execution >= BAND_RED_MIN
        and previous_execution_score is not None
        and previous_execution_score >= BAND_RED_MIN
    ):
        state = TeamHealthState.BREAKING
        dominant = DominantRisk.EXECUTION
    elif overload >= BAND_RED_MIN:
        state = TeamHealthState.OVERLOADED
        dominant = DominantRisk.OVERLOAD
    elif any(score >= BAND_YELLOW_MIN for score in scores.values()):
        state = TeamHealthState.STRAINED
        top_risk = max(scores.items(), key=lambda item: item[1])[0]
        dominant = DominantRisk(top_risk.value)
    else:
        state = TeamHealthState.HEALTHY
        dominant = DominantRisk.NONE

    if state == TeamHealthState.STRAINED:
        summary = STRAINED_SUMMARIES[dominant]
    else:
        summary = STATE_SUMMARIES[state]

    return TeamState(
        team_id=team_id,
        week_start=week_start,
        state=state,
        dominant_risk=dominant,
        confidence=_aggregate_confidence(risks),
        summary=summary,
    )


# =============================================================================
# Storage
# =============================================================================


def _row_to_state(row: Any) -> TeamState:
    return TeamState(
        team_id=row["team_id"],
        week_start=row["week_start"],
        state=row["state"],
        dominant_risk=row["dominant_risk"],
        confidence=row["confidence"],
        summary=row["summary"],
    )


async def persist_team_state(team_state: TeamState) -> None:
    """Upsert a team state on (team_id, week_start)."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            """
            INSERT INTO team_state (
                team_id, week_start, state, dominant_risk,
                confidence, summary, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, NOW())
            ON CONFLICT (team_id, week_start) DO UPDATE SET
                state = EXCLUDED.state,
                dominant_risk = EXCLUDED.dominant_risk,
                confidence = EXCLUDED.confidence,
                summary = EXCLUDED.summary,
                updated_at = NOW()
            """,
            team_state.team_id,
            team_state.week_start,
            team_state.state.value,
            team_state.dominant_risk.value,
            team_state.confidence.value,
            team_state.summary
        )


async def get_team_state(team_id: str, week_start: Optional[date] = None) -> Optional[TeamState]:
    """State of one week; the latest evaluated week when week_start is omitted."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            SELECT team_id, week_start, state, dominant_risk, confidence, summary
            FROM team_state
            WHERE team_id = $1
              AND ($2::date IS NULL OR week_start = $2::date)
            ORDER BY week_start DESC
            LIMIT 1
            """,
            team_id,
            week_start
        )
    return _row_to_state(row) if row else None


async def get_previous_execution_score(team_id: str, week_start: date) -> Optional[int]:
    """Execution score of the week immediately preceding week_start, if scored."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        score = await conn.fetchval(
            """
            SELECT score
            FROM risk_score
            WHERE team_id = $1 AND week_start = $2 AND risk_type = $3
            """,
            team_id,
            week_start - timedelta(days=7),
            RiskType.EXECUTION.value
        )
    return int(score) if score is not None else None


async def get_state_history(team_id: str, weeks: int = 12) -> List[TeamState]:
    """Most recent weekly states, newest first."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT team_id, week_start, state, dominant_risk, confidence, summary
            FROM team_state
            WHERE team_id = $1
            ORDER BY week_start DESC
            LIMIT $2
            """,
            team_id,
            weeks
        )
    return [_row_to_state(row) for row in rows]


__all__ = [
    "STATE_SUMMARIES",
    "STRAINED_SUMMARIES",
    "determine_team_state",
    "persist_team_state",
    "get_team_state",
    "get_previous_execution_score",
    "get_state_history",
]
