"""
FastAPI router for crisis events.

Key Endpoints:
- GET  /crises - Unresolved crises of the last N hours, most severe first
- GET  /crises/{crisis_id} - One crisis event
- POST /crises/{crisis_id}/acknowledge - Record acknowledgement
- POST /crises/{crisis_id}/resolve - Mark resolved

Acknowledgement and resolution are independent; a crisis may be resolved
without being acknowledged. Repeating either keeps the first timestamp.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from teampulse.models.schemas import AcknowledgeCrisisRequest, CrisisEvent, ResolveCrisisRequest
from teampulse.services.crisis import (
    CrisisNotFoundError,
    acknowledge_crisis,
    get_active_crises,
    get_crisis,
    resolve_crisis,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[CrisisEvent])
async def list_active_crises(
    hours: int = Query(default=24, ge=1, le=24 * 30, description="Look-back window in hours"),
    team_id: Optional[str] = Query(default=None, description="Filter by team"),
) -> List[CrisisEvent]:
    """Unresolved crises detected in the look-back window."""
    try:
        return await get_active_crises(hours, team_id)
    except Exception as e:
        logger.error(f"Error listing crises: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list crises")


@router.get("/{crisis_id}", response_model=CrisisEvent)
async def get_crisis_event(crisis_id: str) -> CrisisEvent:
    try:
        crisis = await get_crisis(crisis_id)
        if crisis is None:
            raise HTTPException(status_code=404, detail=f"Crisis {crisis_id} not found")
        return crisis
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching crisis {crisis_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch crisis")


@router.post("/{crisis_id}/acknowledge", response_model=CrisisEvent)
async def acknowledge(crisis_id: str, request: AcknowledgeCrisisRequest) -> CrisisEvent:
    """
    Acknowledge a crisis.

    Raises:
        HTTPException 404: If the crisis does not exist.
    """
    try:
        return await acknowledge_crisis(crisis_id, request.acknowledged_by)
    except CrisisNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error acknowledging crisis {crisis_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to acknowledge crisis")


@router.post("/{crisis_id}/resolve", response_model=CrisisEvent)
async def resolve(crisis_id: str, request: ResolveCrisisRequest) -> CrisisEvent:
    """
    Resolve a crisis.

    Raises:
        HTTPException 404: If the crisis does not exist.
    """
    try:
        return await resolve_crisis(crisis_id, request.resolved_by, request.notes)
    except CrisisNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error resolving crisis {crisis_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to resolve crisis")
