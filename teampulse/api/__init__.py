"""
TeamPulse API package initialization.

This package contains FastAPI router modules:
- teams: Baseline, indicator assessments, risks, team state, on-demand diagnosis
- interventions: Action lifecycle and experiments
- learning: Learned pattern retrieval
- crisis: Crisis events and their acknowledgement / resolution
"""

from fastapi import APIRouter

from teampulse.api.teams import router as teams_router
from teampulse.api.interventions import router as interventions_router
from teampulse.api.learning import router as learning_router
from teampulse.api.crisis import router as crisis_router

# Create main API router
api_router = APIRouter()

api_router.include_router(teams_router, prefix="/teams", tags=["teams"])
api_router.include_router(interventions_router, prefix="/interventions", tags=["interventions"])
api_router.include_router(learning_router, prefix="/learning", tags=["learning"])
api_router.include_router(crisis_router, prefix="/crises", tags=["crises"])

__all__ = [
    "api_router",
    "teams_router",
    "interventions_router",
    "learning_router",
    "crisis_router",
]
