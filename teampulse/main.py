"""
FastAPI application entry point for the TeamPulse API.

Configures logging and CORS, manages the database pool through the lifespan
handler, and registers the API routers. The scheduled jobs live in
teampulse/jobs/ and run outside this process.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from teampulse import __version__
from teampulse.core.database import init_db, close_db
from teampulse.api import api_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Initialize database connection pool
    On shutdown:
        - Close database connection pool
    """
    logger.info("TeamPulse API starting")
    try:
        await init_db()
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        # Keep serving /health; data endpoints fail until the pool is available

    yield

    logger.info("TeamPulse API shutting down")
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="TeamPulse API",
    version=__version__,
    description=(
        "Team behavioral-drift diagnostics: baselines, drift and load indicators, "
        "weekly risk and team state, interventions with experiments and learning, "
        "and crisis detection."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # Dashboard dev server
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "TeamPulse API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "teampulse.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
