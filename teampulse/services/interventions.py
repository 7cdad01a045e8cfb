"""
Intervention Actions Service.

Generates one recommended action per strained week from a fixed decision table
keyed by (dominant risk, top driver metric), and manages the action lifecycle:

    suggested -> active -> completed   (activation starts an experiment)
    suggested -> dismissed

Invariants:
- At most one active action per team (checked here and enforced by the
  partial unique index team_action_one_active)
- At most one generated action per (team_id, created_week)
- Activation and experiment creation share one transaction

Dependencies:
- teampulse/services/experiments.py: start_experiment, capture_metric_snapshot
- asyncpg: UniqueViolationError from the one-active index
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from teampulse.core.database import get_db_pool
from teampulse.models.enums import (
    ActionStatus,
    DominantRisk,
    MetricKey,
    RiskBand,
    RiskType,
    TeamHealthState,
)
from teampulse.models.schemas import (
    Experiment,
    InterventionAction,
    RiskDriver,
    RiskScore,
    TeamState,
)
from teampulse.services.experiments import (
    capture_metric_snapshot,
    get_success_metrics,
    start_experiment,
)


logger = logging.getLogger(__name__)


class ActionNotFoundError(ValueError):
    """Raised when an action ID does not exist."""


class ActionStateError(ValueError):
    """Raised when a lifecycle transition is not allowed from the current state."""


@dataclass(frozen=True)
class ActionTemplate:
    """Playbook entry: what to try, why, and for how many weeks."""
    title: str
    rationale: str
    duration_weeks: int = 2


# =============================================================================
# Playbook
# =============================================================================


ACTION_PLAYBOOK: Dict[Tuple[RiskType, str], ActionTemplate] = {
    (RiskType.OVERLOAD, MetricKey.AFTER_HOURS_RATE.value): ActionTemplate(
        "Introduce quiet hours (no messages 8PM-8AM)",
        "After-hours activity accounts for most of the current overload risk. "
        "Setting boundaries can help the team recover.",
        3,
    ),
    (RiskType.OVERLOAD, MetricKey.MEETING_HOURS.value): ActionTemplate(
        "Reduce meeting frequency by 20%",
        "Meeting load is significantly higher than baseline. Consolidating or "
        "eliminating low-value meetings can reduce coordination overhead.",
        2,
    ),
    (RiskType.OVERLOAD, MetricKey.BACK_TO_BACK_MEETINGS.value): ActionTemplate(
        "Introduce 15-minute buffers between meetings",
        "Back-to-back meetings are reducing recovery time. Small buffers can "
        "help restore focus and reduce fatigue.",
        2,
    ),
    (RiskType.OVERLOAD, MetricKey.FOCUS_TIME_RATIO.value): ActionTemplate(
        "Block 2-hour focus periods (no meetings)",
        "Focus time has declined significantly. Protected time blocks can help "
        "restore deep work capacity.",
        3,
    ),
    (RiskType.EXECUTION, MetricKey.RESPONSE_TIME_HOURS.value): ActionTemplate(
        "Reset async communication norms",
        "Response times have slowed significantly. Clarifying expectations for "
        "async communication can restore coordination velocity.",
        2,
    ),
    (RiskType.EXECUTION, MetricKey.UNIQUE_CONTACTS.value): ActionTemplate(
        "Re-engage quiet participants in key decisions",
        "Participation patterns have shifted. Proactive inclusion can prevent "
        "coordination gaps and restore team alignment.",
        2,
    ),
    (RiskType.EXECUTION, MetricKey.MEETING_FRAGMENTATION.value): ActionTemplate(
        "Consolidate decision-making meetings",
        "Meeting patterns are becoming fragmented. Consolidating related "
        "discussions can improve coordination efficiency.",
        2,
    ),
    (RiskType.EXECUTION, MetricKey.FOCUS_TIME_RATIO.value): ActionTemplate(
        "Establish focus time standards",
        "Reduced focus time is impacting execution. Setting team-wide focus "
        "periods can improve delivery quality.",
        3,
    ),
}

FALLBACK_ACTIONS: Dict[RiskType, ActionTemplate] = {
    RiskType.OVERLOAD: ActionTemplate(
        "Review and reduce coordination overhead",
        "Multiple work intensity signals are elevated. A holistic review of "
        "meeting and communication patterns is recommended.",
        2,
    ),
    RiskType.EXECUTION: ActionTemplate(
        "Review coordination patterns and decision-making process",
        "Multiple coordination signals indicate declining efficiency. A "
        "systematic review can identify bottlenecks.",
        2,
    ),
    RiskType.RETENTION_STRAIN: ActionTemplate(
        "Manager 1:1 check-ins on workload and sustainability",
        "Sustained pressure patterns increase exit risk. Direct conversations "
        "about workload and wellbeing are the most effective intervention.",
        2,
    ),
}


def select_action_template(
    risk_type: RiskType,
    drivers: List[RiskDriver]
) -> Tuple[ActionTemplate, Optional[str]]:
    """
    Look up the playbook entry for a risk and its top driver.

    Args:
        risk_type: Dominant risk of the team.
        drivers: Drivers of that risk (any order).

    Returns:
        (template, top driver metric). Falls back to the per-risk generic
        action when there is no driver or no specific entry.

    Example:
        >>> template, driver = select_action_template(
        ...     RiskType.OVERLOAD,
        ...     [RiskDriver(metric="meeting_hours", contribution_weight=0.3, deviation=0.6, explanation="")])
        >>> template.title, driver
        ('Reduce meeting frequency by 20%', 'meeting_hours')
    """
    risk_type = RiskType(risk_type)
    ranked = sorted(drivers, key=lambda d: d.deviation * d.contribution_weight, reverse=True)
    top_driver = ranked[0].metric if ranked else None

    template = ACTION_PLAYBOOK.get((risk_type, top_driver)) if top_driver else None
    return template or FALLBACK_ACTIONS[risk_type], top_driver


# =============================================================================
# Storage Helpers
# =============================================================================


def _row_to_action(row: Any) -> InterventionAction:
    return InterventionAction(
        id=row["id"],
        team_id=row["team_id"],
        created_week=row["created_week"],
        linked_risk=row["linked_risk"],
        top_driver=row["top_driver"],
        title=row["title"],
        rationale=row["rationale"],
        status=row["status"],
        duration_weeks=row["duration_weeks"],
        activated_by=row["activated_by"],
        activated_at=row["activated_at"],
        dismissed_by=row["dismissed_by"],
        dismissed_at=row["dismissed_at"],
        dismissal_reason=row["dismissal_reason"],
        created_at=row["created_at"],
    )


async def get_action(action_id: str) -> Optional[InterventionAction]:
    """Action by ID, or None."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM team_action WHERE id = $1", action_id)
    return _row_to_action(row) if row else None


async def get_active_action(team_id: str) -> Optional[InterventionAction]:
    """The team's active action, or None."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            "SELECT * FROM team_action WHERE team_id = $1 AND status = $2",
            team_id,
            ActionStatus.ACTIVE.value
        )
    return _row_to_action(row) if row else None


async def list_actions(
    team_id: Optional[str] = None,
    status: Optional[ActionStatus] = None,
    limit: int = 50
) -> List[InterventionAction]:
    """Actions filtered by team and status, newest week first."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT *
            FROM team_action
            WHERE ($1::text IS NULL OR team_id = $1)
              AND ($2::text IS NULL OR status = $2)
            ORDER BY created_week DESC, created_at DESC
            LIMIT $3
            """,
            team_id,
            ActionStatus(status).value if status else None,
            limit
        )
    return [_row_to_action(row) for row in rows]


# =============================================================================
# Generation
# =============================================================================


async def generate_action(
    team_id: str,
    week_start: date,
    team_state: TeamState,
    risks: List[RiskScore]
) -> Optional[InterventionAction]:
    """
    Suggest an action for a strained week.

    No action is generated when the team is healthy, the dominant risk is
    green, or the team already has an active action. Re-running for the same
    week returns the action generated the first time.

    Returns:
        The week's suggested action, or None.
    """
    if team_state.state == TeamHealthState.HEALTHY or team_state.dominant_risk == DominantRisk.NONE:
        return None

    risk_type = RiskType(team_state.dominant_risk.value)
    risk = next((r for r in risks if r.risk_type == risk_type), None)
    if risk is None or risk.band == RiskBand.GREEN:
        return None

    if await get_active_action(team_id) is not None:
        logger.info(f"Team {team_id} already has an active action, none generated")
        return None

    template, top_driver = select_action_template(risk_type, risk.drivers)

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            INSERT INTO team_action (
                id, team_id, created_week, linked_risk, top_driver,
                title, rationale, status, duration_weeks
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (team_id, created_week) DO NOTHING
            RETURNING *
            """,
            str(uuid.uuid4()),
            team_id,
            week_start,
            risk_type.value,
            top_driver,
            template.title,
            template.rationale,
            ActionStatus.SUGGESTED.value,
            template.duration_weeks
        )

        if row is None:
            row = await conn.fetchrow(
                "SELECT * FROM team_action WHERE team_id = $1 AND created_week = $2",
                team_id,
                week_start
            )
            return _row_to_action(row) if row else None

    action = _row_to_action(row)
    logger.info(f"Generated action '{action.title}' for team {team_id} ({risk_type.value})")
    return action


# =============================================================================
# Lifecycle Transitions
# =============================================================================


async def activate_action(
    action_id: str,
    activated_by: str,
    start_date: Optional[date] = None
) -> Tuple[InterventionAction, Experiment]:
    """
    Activate a suggested action and start its experiment.

    Args:
        action_id: Action to activate.
        activated_by: User performing the activation.
        start_date: Experiment start (defaults to today).

    Returns:
        (activated action, started experiment).

    Raises:
        ActionNotFoundError: If the action does not exist.
        ActionStateError: If the action is not suggested or the team already
            has an active action.
    """
    start_date = start_date or date.today()

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM team_action WHERE id = $1", action_id)
        if row is None:
            raise ActionNotFoundError(f"Action {action_id} not found")

        action = _row_to_action(row)
        if action.status != ActionStatus.SUGGESTED:
            raise ActionStateError(
                f"Action {action_id} is {action.status.value}, only suggested actions can be activated"
            )

        active_id = await conn.fetchval(
            "SELECT id FROM team_action WHERE team_id = $1 AND status = $2",
            action.team_id,
            ActionStatus.ACTIVE.value
        )
        if active_id:
            raise ActionStateError(f"Team {action.team_id} already has an active action ({active_id})")

    # Taken between acquisitions; the snapshot reads use their own connections
    pre_metrics = await capture_metric_snapshot(
        action.team_id,
        get_success_metrics(action.linked_risk),
        start_date - timedelta(days=1)
    )

    async with pool.acquire() as conn:
        try:
            async with conn.transaction():
                updated = await conn.fetchrow(
                    """
                    UPDATE team_action
                    SET status = 'active', activated_by = $2, activated_at = NOW()
                    WHERE id = $1 AND status = 'suggested'
                    RETURNING *
                    """,
                    action_id,
                    activated_by
                )
                if updated is None:
                    raise ActionStateError(f"Action {action_id} is no longer suggested")

                action = _row_to_action(updated)
                experiment = await start_experiment(conn, action, pre_metrics, start_date)
        except asyncpg.UniqueViolationError:
            raise ActionStateError(f"Team {action.team_id} already has an active action") from None

    logger.info(f"Action {action_id} activated by {activated_by}")
    return action, experiment


async def dismiss_action(
    action_id: str,
    dismissed_by: str,
    reason: Optional[str] = None
) -> InterventionAction:
    """
    Dismiss a suggested action.

    Raises:
        ActionNotFoundError: If the action does not exist.
        ActionStateError: If the action is not suggested.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            UPDATE team_action
            SET status = 'dismissed', dismissed_by = $2,
                dismissed_at = NOW(), dismissal_reason = $3
            WHERE id = $1 AND status = 'suggested'
            RETURNING *
            """,
            action_id,
            dismissed_by,
            reason
        )

        if row is None:
            current = await conn.fetchval("SELECT status FROM team_action WHERE id = $1", action_id)
            if current is None:
                raise ActionNotFoundError(f"Action {action_id} not found")
            raise ActionStateError(
                f"Action {action_id} is {current}, only suggested actions can be dismissed"
            )

    logger.info(f"Action {action_id} dismissed by {dismissed_by}")
    return _row_to_action(row)


__all__ = [
    "ActionNotFoundError",
    "ActionStateError",
    "ActionTemplate",
    "ACTION_PLAYBOOK",
    "FALLBACK_ACTIONS",
    "select_action_template",
    "get_action",
    "get_active_action",
    "list_actions",
    "generate_action",
    "activate_action",
    "dismiss_action",
]
