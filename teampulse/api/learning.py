"""
FastAPI router for learned patterns.

Key Endpoints:
- POST /learning/patterns - Ranked learnings for a (team profile, risk type)
- GET  /learning/stats - Outcome counts for one profile

Ranking precedence: exact-profile successes first (most recent first),
broadened to the same function and size band only when too few exact results
exist; failures are exact-profile only and returned separately.
"""

import logging

from fastapi import APIRouter, HTTPException, Query

from teampulse.core.dependencies import SettingsDep
from teampulse.models.schemas import LearnedPatterns, LearningStats, PatternQueryRequest
from teampulse.services.learning import get_learned_patterns, get_learning_stats


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/patterns", response_model=LearnedPatterns)
async def query_patterns(request: PatternQueryRequest, settings: SettingsDep) -> LearnedPatterns:
    """
    Learned patterns for a team profile and risk type.

    Example Request:
        POST /learning/patterns
        {
            "industry": "Fintech",
            "function": "Engineering",
            "size_band": "6-10",
            "risk_type": "overload"
        }
    """
    try:
        return await get_learned_patterns(
            request.industry,
            request.function,
            request.size_band,
            request.risk_type,
            limit=request.limit or settings.learning_result_limit,
        )
    except Exception as e:
        logger.error(f"Error querying learned patterns: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to query learned patterns")


@router.get("/stats", response_model=LearningStats)
async def profile_stats(
    industry: str = Query(...),
    function: str = Query(...),
    size_band: str = Query(...),
) -> LearningStats:
    """Success / failure / neutral counts for one exact profile."""
    try:
        return await get_learning_stats(industry, function, size_band)
    except Exception as e:
        logger.error(f"Error fetching learning stats: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch learning stats")
