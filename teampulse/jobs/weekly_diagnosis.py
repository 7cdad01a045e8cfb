"""
Weekly Diagnosis Job for TeamPulse.

Runs the per-team weekly pipeline for every active team:

    baseline -> indicators -> risks -> team state -> suggested action

The stages of one team run sequentially; teams run concurrently under an
asyncio.Semaphore sized by DIAGNOSIS_WORKER_LIMIT, which must not exceed the
database pool's max_size.

Idempotency Guarantees:
- A (team, week) pair is claimed in `diagnosis_run` with an upsert that only
  succeeds when no other pass holds it in `running` state; a `running` claim
  older than RUN_CLAIM_TIMEOUT_MINUTES is taken over
- Every write downstream is an upsert keyed by (team, week[, type])
- Re-running a completed week recomputes and overwrites the same rows; the
  suggested action is keyed by (team, week) and is never duplicated

Failure Isolation:
- A failure for one team is logged, recorded on its diagnosis_run row and
  counted; the remaining teams continue

Usage:
    from teampulse.jobs.weekly_diagnosis import run_weekly_diagnosis

    # Diagnose the current week for all active teams
    result = await run_weekly_diagnosis()

    # Diagnose a specific week
    result = await run_weekly_diagnosis(date(2025, 1, 6))

    # Cron entry point
    python -m teampulse.jobs.weekly_diagnosis

See Also:
    - teampulse/services/risk.py: Risk composites
    - teampulse/services/team_state.py: State machine
    - teampulse/services/interventions.py: Action generation
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from teampulse.core.config import get_settings
from teampulse.core.database import close_db, execute_command, get_db_pool, init_db
from teampulse.models.enums import DiagnosisRunStatus, TeamHealthState
from teampulse.models.schemas import TeamProfile
from teampulse.jobs.notifications import drain_notifications, notify_breaking_state
from teampulse.services.baseline import ensure_baseline
from teampulse.services.indicators import indicator_metrics, refresh_indicator_assessments
from teampulse.services.interventions import generate_action
from teampulse.services.metrics_source import get_trailing_averages
from teampulse.services.risk import compute_weekly_risks, persist_risk_scores, risk_metrics
from teampulse.services.team_directory import get_team_profile, list_active_teams
from teampulse.services.team_state import (
    determine_team_state,
    get_previous_execution_score,
    persist_team_state,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Days of observed data preceding the diagnosed week
OBSERVATION_DAYS: int = 7

# Running claims older than this are treated as abandoned by a dead process
RUN_CLAIM_TIMEOUT_MINUTES: int = 60


# =============================================================================
# Week Helpers
# =============================================================================


def get_week_start(day: Optional[date] = None) -> date:
    """
    Monday of the week containing `day` (today when omitted).

    Examples:
        >>> get_week_start(date(2025, 1, 8))
        datetime.date(2025, 1, 6)
    """
    day = day or date.today()
    return day - timedelta(days=day.weekday())


def observation_window(week_start: date) -> tuple:
    """(period_start, period_end) of the data diagnosed for `week_start`."""
    period_end = week_start - timedelta(days=1)
    return period_end - timedelta(days=OBSERVATION_DAYS - 1), period_end


# =============================================================================
# Idempotency Key
# =============================================================================


CLAIM_RUN_SQL = f"""
    INSERT INTO diagnosis_run (team_id, week_start, status, started_at)
    VALUES ($1, $2, $3, NOW())
    ON CONFLICT (team_id, week_start) DO UPDATE SET
        status = EXCLUDED.status,
        started_at = NOW(),
        finished_at = NULL,
        error = NULL
    WHERE diagnosis_run.status <> $3
       OR diagnosis_run.started_at < NOW() - INTERVAL '{RUN_CLAIM_TIMEOUT_MINUTES} minutes'
    RETURNING team_id
"""


async def claim_diagnosis_run(team_id: str, week_start: date) -> bool:
    """
    Claim the (team, week) key for this pass.

    Returns:
        False when another pass claimed the same key less than
        RUN_CLAIM_TIMEOUT_MINUTES ago and is still running.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        claimed = await conn.fetchval(
            CLAIM_RUN_SQL, team_id, week_start, DiagnosisRunStatus.RUNNING.value
        )
    return claimed is not None


async def finish_diagnosis_run(
    team_id: str,
    week_start: date,
    status: DiagnosisRunStatus,
    error: Optional[str] = None
) -> None:
    """Record the outcome of a claimed run."""
    await execute_command(
        """
        UPDATE diagnosis_run
        SET status = $3, error = $4, finished_at = NOW()
        WHERE team_id = $1 AND week_start = $2
        """,
        team_id,
        week_start,
        status.value,
        error
    )


# =============================================================================
# Per-Team Pipeline
# =============================================================================


async def diagnose_team(
    team_id: str,
    week_start: date,
    profile: Optional[TeamProfile] = None
) -> Dict[str, Any]:
    """
    Run the weekly pipeline for one team.

    Args:
        team_id: Team identifier.
        week_start: Monday of the diagnosed week.
        profile: Team profile, used for notification display names.

    Returns:
        Dict with the team state, risk scores and the generated action ID.
    """
    period_start, period_end = observation_window(week_start)

    baseline = await ensure_baseline(team_id, period_end)

    metrics = sorted(set(indicator_metrics()) | set(risk_metrics()))
    current = await get_trailing_averages(team_id, period_end, metrics)

    assessments = await refresh_indicator_assessments(
        team_id, current, baseline, period_start, period_end
    )

    risks = await compute_weekly_risks(team_id, week_start, period_end, baseline, current)
    await persist_risk_scores(risks)

    previous_execution = await get_previous_execution_score(team_id, week_start)
    team_state = determine_team_state(team_id, week_start, risks, previous_execution)
    await persist_team_state(team_state)

    action = await generate_action(team_id, week_start, team_state, risks)

    if team_state.state == TeamHealthState.BREAKING:
        notify_breaking_state(team_state, profile.name if profile else None)

    logger.info(
        f"Diagnosed team {team_id} for week {week_start}: {team_state.state.value} "
        f"(dominant={team_state.dominant_risk.value}, action={'yes' if action else 'no'})"
    )

    return {
        "team_id": team_id,
        "state": team_state.state.value,
        "dominant_risk": team_state.dominant_risk.value,
        "risks": {risk.risk_type.value: risk.score for risk in risks},
        "indicators": {a.indicator.value: a.state for a in assessments},
        "action_id": action.id if action else None,
    }


async def run_team_diagnosis(
    team_id: str,
    week_start: date,
    profile: Optional[TeamProfile] = None
) -> Dict[str, Any]:
    """
    Claim, diagnose and finish one (team, week).

    Returns:
        Dict with status ('completed', 'skipped' or 'failed') plus the
        diagnose_team result or the error.
    """
    if not await claim_diagnosis_run(team_id, week_start):
        logger.info(f"Diagnosis for team {team_id} week {week_start} already running, skipping")
        return {"team_id": team_id, "status": "skipped", "reason": "already running"}

    try:
        result = await diagnose_team(team_id, week_start, profile)
    except Exception as e:
        logger.error(f"Diagnosis failed for team {team_id} week {week_start}: {e}", exc_info=True)
        await finish_diagnosis_run(team_id, week_start, DiagnosisRunStatus.FAILED, str(e))
        return {"team_id": team_id, "status": "failed", "error": str(e)}

    await finish_diagnosis_run(team_id, week_start, DiagnosisRunStatus.COMPLETED)
    result["status"] = "completed"
    return result


async def diagnose_single_team(team_id: str, week_start: Optional[date] = None) -> Dict[str, Any]:
    """On-demand diagnosis used by the API."""
    week_start = week_start or get_week_start()
    profile = await get_team_profile(team_id)
    if profile is None:
        raise ValueError(f"Team {team_id} not found")
    return await run_team_diagnosis(team_id, week_start, profile)


# =============================================================================
# Batch Entry Point
# =============================================================================


async def run_weekly_diagnosis(week_start: Optional[date] = None) -> Dict[str, Any]:
    """
    Diagnose every active team for a week.

    Args:
        week_start: Monday of the diagnosed week (defaults to this week).

    Returns:
        Dict with processed, failed, skipped counts, per-team errors, a
        summary of team states, and the number of actions generated.
    """
    settings = get_settings()
    week_start = get_week_start(week_start)
    teams = await list_active_teams()

    logger.info(
        f"Starting weekly diagnosis for {len(teams)} teams, week {week_start} "
        f"(workers={settings.diagnosis_worker_limit})"
    )

    semaphore = asyncio.Semaphore(settings.diagnosis_worker_limit)

    async def _run(profile: TeamProfile) -> Dict[str, Any]:
        async with semaphore:
            try:
                return await run_team_diagnosis(profile.team_id, week_start, profile)
            except Exception as e:
                # Claim/finish bookkeeping failed; isolate like a pipeline failure
                logger.error(f"Diagnosis bookkeeping failed for team {profile.team_id}: {e}", exc_info=True)
                return {"team_id": profile.team_id, "status": "failed", "error": str(e)}

    outcomes: List[Dict[str, Any]] = await asyncio.gather(*[_run(team) for team in teams])

    results: Dict[str, Any] = {
        "week_start": week_start.isoformat(),
        "processed": 0,
        "failed": 0,
        "skipped": 0,
        "errors": [],
        "summary": {state.value: 0 for state in TeamHealthState},
        "actions_generated": 0,
    }

    for outcome in outcomes:
        status = outcome["status"]
        if status == "completed":
            results["processed"] += 1
            results["summary"][outcome["state"]] += 1
            if outcome.get("action_id"):
                results["actions_generated"] += 1
        elif status == "skipped":
            results["skipped"] += 1
        else:
            results["failed"] += 1
            results["errors"].append({"team_id": outcome["team_id"], "error": outcome["error"]})

    logger.info(
        f"Weekly diagnosis complete: {results['processed']} processed, "
        f"{results['failed']} failed, {results['skipped']} skipped, "
        f"{results['actions_generated']} actions generated"
    )
    return results


async def main() -> Dict[str, Any]:
    """Cron entry point: open the pool, run, drain notifications, close."""
    await init_db()
    try:
        result = await run_weekly_diagnosis()
        await drain_notifications()
        return result
    finally:
        await close_db()


__all__ = [
    "get_week_start",
    "observation_window",
    "claim_diagnosis_run",
    "finish_diagnosis_run",
    "diagnose_team",
    "run_team_diagnosis",
    "diagnose_single_team",
    "run_weekly_diagnosis",
]


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    asyncio.run(main())
