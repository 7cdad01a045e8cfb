"""
FastAPI router for the intervention lifecycle.

Key Endpoints:
- GET  /interventions/actions - List actions (filter by team and status)
- POST /interventions/actions/{action_id}/activate - suggested -> active, starts the experiment
- POST /interventions/actions/{action_id}/dismiss - suggested -> dismissed
- GET  /interventions/experiments - List a team's experiments
- GET  /interventions/experiments/{experiment_id} - Experiment with its impact
- POST /interventions/experiments/{experiment_id}/complete - Complete now (manual sweep)

Core Rule:
- The system only suggests; a human activates or dismisses every action.

Error Mapping:
- ActionNotFoundError / ExperimentNotFoundError -> 404
- ActionStateError (illegal transition, second active action) -> 409
- ExperimentStateError (completion before the end date) -> 409
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from teampulse.models.enums import ActionStatus
from teampulse.models.schemas import ActivateActionRequest, DismissActionRequest
from teampulse.services.experiments import (
    ExperimentNotFoundError,
    ExperimentStateError,
    complete_experiment,
    get_experiment,
    get_impact,
    list_experiments,
)
from teampulse.services.interventions import (
    ActionNotFoundError,
    ActionStateError,
    activate_action,
    dismiss_action,
    list_actions,
)


# =============================================================================
# Module Configuration
# =============================================================================

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT: int = 50

MAX_LIST_LIMIT: int = 200

router = APIRouter()


# =============================================================================
# Actions
# =============================================================================


@router.get("/actions", response_model=dict)
async def get_actions(
    team_id: Optional[str] = Query(default=None, description="Filter by team"),
    status: Optional[ActionStatus] = Query(default=None, description="Filter by status"),
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
) -> dict:
    """List actions, newest week first."""
    try:
        actions = await list_actions(team_id, status, limit)
        return {"actions": [a.model_dump(mode="json") for a in actions]}
    except Exception as e:
        logger.error(f"Error listing actions: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list actions")


@router.post("/actions/{action_id}/activate", response_model=dict)
async def activate(action_id: str, request: ActivateActionRequest) -> dict:
    """
    Activate a suggested action and start its experiment.

    Raises:
        HTTPException 404: If the action does not exist.
        HTTPException 409: If the action is not suggested or the team
            already has an active action.

    Example Response:
        {
            "success": true,
            "action": {"id": "...", "status": "active", ...},
            "experiment": {"id": "...", "status": "running", "endDate": ...}
        }
    """
    try:
        action, experiment = await activate_action(action_id, request.activated_by)
        return {
            "success": True,
            "action": action.model_dump(mode="json"),
            "experiment": experiment.model_dump(mode="json"),
        }

    except ActionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ActionStateError as e:
        logger.warning(f"Activation rejected for action {action_id}: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error activating action {action_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to activate action")


@router.post("/actions/{action_id}/dismiss", response_model=dict)
async def dismiss(action_id: str, request: DismissActionRequest) -> dict:
    """
    Dismiss a suggested action.

    Raises:
        HTTPException 404: If the action does not exist.
        HTTPException 409: If the action is not suggested.
    """
    try:
        action = await dismiss_action(action_id, request.dismissed_by, request.reason)
        return {"success": True, "action": action.model_dump(mode="json")}

    except ActionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ActionStateError as e:
        logger.warning(f"Dismissal rejected for action {action_id}: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error dismissing action {action_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to dismiss action")


# =============================================================================
# Experiments
# =============================================================================


@router.get("/experiments", response_model=dict)
async def get_experiments(
    team_id: str = Query(..., description="Team whose experiments to list"),
) -> dict:
    """Experiments of a team, newest first."""
    try:
        experiments = await list_experiments(team_id)
        return {"experiments": [e.model_dump(mode="json") for e in experiments]}
    except Exception as e:
        logger.error(f"Error listing experiments for team {team_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list experiments")


@router.get("/experiments/{experiment_id}", response_model=dict)
async def get_experiment_detail(experiment_id: str) -> dict:
    """
    Experiment with its impact (null while running).

    Raises:
        HTTPException 404: If the experiment does not exist.
    """
    try:
        experiment = await get_experiment(experiment_id)
        if experiment is None:
            raise HTTPException(status_code=404, detail=f"Experiment {experiment_id} not found")

        impact = await get_impact(experiment_id)
        return {
            "experiment": experiment.model_dump(mode="json"),
            "impact": impact.model_dump(mode="json") if impact else None,
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching experiment {experiment_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch experiment")


@router.post("/experiments/{experiment_id}/complete", response_model=dict)
async def complete(experiment_id: str) -> dict:
    """
    Complete an experiment whose end date has been reached, without waiting
    for the sweep.

    An experiment already claimed by a sweep is reported with
    `completed: false`.

    Raises:
        HTTPException 404: If the experiment does not exist.
        HTTPException 409: If the experiment has not reached its end date.
    """
    try:
        impact = await complete_experiment(experiment_id)
        return {
            "completed": impact is not None,
            "impact": impact.model_dump(mode="json") if impact else None,
        }

    except ExperimentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ExperimentStateError as e:
        logger.warning(f"Completion rejected for experiment {experiment_id}: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error completing experiment {experiment_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to complete experiment")
