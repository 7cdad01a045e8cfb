"""
FastAPI router for per-team diagnostics.

Exposes the weekly pipeline's outputs for one team and the two operations a
team lead can trigger directly: an explicit re-baseline and an on-demand
diagnosis.

Key Endpoints:
- GET  /teams/{team_id}/baseline - Current baseline and version history
- POST /teams/{team_id}/baseline/recalculate - Explicit re-baseline (new version)
- GET  /teams/{team_id}/assessments/{indicator} - Latest assessment, history, timeline
- POST /teams/{team_id}/samples - Append daily metric samples
- GET  /teams/{team_id}/risks - Risk scores for a week (latest when omitted)
- GET  /teams/{team_id}/risks/{risk_type}/history - Recent scores of one risk type
- GET  /teams/{team_id}/state - Team state for a week plus recent history
- POST /teams/{team_id}/diagnose - Run the weekly pipeline now
- GET  /teams/{team_id}/diagnosis-runs - Diagnosis run log

All payloads are team aggregates; no individual-level data is exposed.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query

from teampulse.core.dependencies import DBSessionDep
from teampulse.jobs.weekly_diagnosis import diagnose_single_team
from teampulse.models.enums import IndicatorType, RiskType
from teampulse.models.schemas import MetricSample, RecalculateBaselineRequest, RiskScore, TeamState
from teampulse.services.baseline import (
    InsufficientBaselineDataError,
    get_current_baseline,
    list_baseline_versions,
    recalculate_baseline,
)
from teampulse.services.indicators import (
    capacity_remaining,
    get_latest_assessment,
    get_timeline,
    list_assessments,
)
from teampulse.services.metrics_source import record_samples
from teampulse.services.risk import get_risk_history, get_risk_scores
from teampulse.services.team_state import get_state_history, get_team_state


# =============================================================================
# Module Configuration
# =============================================================================

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT: int = 12

MAX_HISTORY_LIMIT: int = 52

router = APIRouter()


# =============================================================================
# Baseline
# =============================================================================


@router.get("/{team_id}/baseline", response_model=dict)
async def get_baseline(team_id: str) -> dict:
    """
    Current baseline of a team with its version history.

    Raises:
        HTTPException 404: If the team has no baseline yet.
    """
    try:
        baseline = await get_current_baseline(team_id)
        if baseline is None:
            raise HTTPException(
                status_code=404,
                detail=f"No baseline for team {team_id}; calibration has not started"
            )

        versions = await list_baseline_versions(team_id)
        return {
            "baseline": baseline.model_dump(mode="json"),
            "versions": [
                {
                    "version": v.version,
                    "windowStart": v.window_start.isoformat(),
                    "windowEnd": v.window_end.isoformat(),
                    "status": v.status.value,
                    "isCurrent": v.is_current,
                }
                for v in versions
            ],
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching baseline for team {team_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch baseline")


@router.post("/{team_id}/baseline/recalculate", response_model=dict)
async def recalculate_team_baseline(team_id: str, request: RecalculateBaselineRequest) -> dict:
    """
    Rebuild the baseline on a longer window as a new version.

    The previous version is retired but kept.

    Raises:
        HTTPException 422: If the window holds too few sample days.
    """
    as_of = request.as_of or date.today()
    try:
        baseline = await recalculate_baseline(team_id, as_of, request.window_days)
        return {"success": True, "baseline": baseline.model_dump(mode="json")}

    except InsufficientBaselineDataError as e:
        logger.warning(f"Re-baseline rejected for team {team_id}: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error(f"Error recalculating baseline for team {team_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to recalculate baseline")


# =============================================================================
# Indicators
# =============================================================================


@router.get("/{team_id}/assessments/{indicator}", response_model=dict)
async def get_indicator_assessments(
    team_id: str,
    indicator: IndicatorType,
    limit: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
) -> dict:
    """
    Latest assessment of one indicator, its history and its timeline.

    Example Response:
        {
            "indicator": "drift",
            "latest": {"state": "Developing Drift", "score": 67, ...},
            "history": [...],
            "timeline": [{"eventType": "first_signal", ...}]
        }
    """
    try:
        latest = await get_latest_assessment(team_id, indicator)
        history = await list_assessments(team_id, indicator, limit)
        timeline = await get_timeline(team_id, indicator)

        response: Dict[str, Any] = {
            "indicator": indicator.value,
            "latest": latest.model_dump(mode="json") if latest else None,
            "history": [a.model_dump(mode="json") for a in history],
            "timeline": [e.model_dump(mode="json") for e in timeline],
        }
        if indicator == IndicatorType.CAPACITY and latest is not None and latest.baseline_established:
            response["capacityRemaining"] = capacity_remaining(latest)
        return response

    except Exception as e:
        logger.error(
            f"Error fetching {indicator.value} assessments for team {team_id}: {str(e)}",
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Failed to fetch assessments")


@router.post("/{team_id}/samples", response_model=dict)
async def submit_samples(team_id: str, samples: List[MetricSample]) -> dict:
    """
    Append daily team-aggregate samples from a collector.

    Samples already stored for a (team, day) are ignored.

    Raises:
        HTTPException 400: If a sample belongs to another team.
    """
    foreign = [s.sample_date.isoformat() for s in samples if s.team_id != team_id]
    if foreign:
        raise HTTPException(
            status_code=400,
            detail=f"Samples for {', '.join(foreign)} belong to another team"
        )

    try:
        submitted = await record_samples(samples)
        return {"teamId": team_id, "submitted": submitted}
    except Exception as e:
        logger.error(f"Error recording samples for team {team_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to record samples")


# =============================================================================
# Risks & State
# =============================================================================


@router.get("/{team_id}/risks", response_model=List[RiskScore])
async def get_team_risks(
    team_id: str,
    week_start: Optional[date] = Query(default=None, description="Monday of the week; latest when omitted"),
) -> List[RiskScore]:
    """Risk scores (overload, execution, retention strain) for a week."""
    try:
        return await get_risk_scores(team_id, week_start)
    except Exception as e:
        logger.error(f"Error fetching risks for team {team_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch risk scores")


@router.get("/{team_id}/risks/{risk_type}/history", response_model=List[RiskScore])
async def get_team_risk_history(
    team_id: str,
    risk_type: RiskType,
    weeks: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
) -> List[RiskScore]:
    """Most recent weekly scores of one risk type, newest first."""
    try:
        return await get_risk_history(team_id, risk_type, weeks)
    except Exception as e:
        logger.error(
            f"Error fetching {risk_type.value} history for team {team_id}: {str(e)}",
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Failed to fetch risk history")


@router.get("/{team_id}/state", response_model=dict)
async def get_current_team_state(
    team_id: str,
    week_start: Optional[date] = Query(default=None, description="Monday of the week; latest when omitted"),
    history_weeks: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=0, le=MAX_HISTORY_LIMIT),
) -> dict:
    """
    Team state for a week plus the state history.

    Raises:
        HTTPException 404: If the team has never been diagnosed.
    """
    try:
        state: Optional[TeamState] = await get_team_state(team_id, week_start)
        if state is None:
            raise HTTPException(status_code=404, detail=f"No team state for team {team_id}")

        history = await get_state_history(team_id, history_weeks) if history_weeks else []
        return {
            "state": state.model_dump(mode="json"),
            "history": [s.model_dump(mode="json") for s in history],
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching state for team {team_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch team state")


# =============================================================================
# Diagnosis
# =============================================================================


@router.post("/{team_id}/diagnose", response_model=dict)
async def diagnose(
    team_id: str,
    week_start: Optional[date] = Query(default=None, description="Monday of the week; current week when omitted"),
) -> dict:
    """
    Run the weekly pipeline for one team now.

    Returns the same per-team result the weekly job produces. A diagnosis
    already running for the same week is reported as skipped.

    Raises:
        HTTPException 404: If the team does not exist.
    """
    try:
        result: Dict[str, Any] = await diagnose_single_team(team_id, week_start)
        return result

    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error diagnosing team {team_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to run diagnosis")


@router.get("/{team_id}/diagnosis-runs", response_model=dict)
async def list_diagnosis_runs(
    team_id: str,
    db: DBSessionDep,
    limit: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
) -> dict:
    """Diagnosis run log of a team, newest week first."""
    try:
        rows = await db.fetch(
            """
            SELECT week_start, status, started_at, finished_at, error
            FROM diagnosis_run
            WHERE team_id = $1
            ORDER BY week_start DESC
            LIMIT $2
            """,
            team_id,
            limit
        )
        return {
            "runs": [
                {
                    "weekStart": row["week_start"].isoformat(),
                    "status": row["status"],
                    "startedAt": row["started_at"].isoformat() if row["started_at"] else None,
                    "finishedAt": row["finished_at"].isoformat() if row["finished_at"] else None,
                    "error": row["error"],
                }
                for row in rows
            ]
        }

    except Exception as e:
        logger.error(f"Error listing diagnosis runs for team {team_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list diagnosis runs")
