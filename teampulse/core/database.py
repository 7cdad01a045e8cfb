"""
Async PostgreSQL access for TeamPulse.

One asyncpg pool per process backs every store: baselines, indicator
assessments and timeline events, risk scores, team states, actions,
experiments, learnings, crisis events and diagnosis runs.

Key Components:
- init_db() / close_db(): pool lifecycle, driven by the FastAPI lifespan and
  by each job's main()
- get_db_pool(): the shared pool, created lazily on first use
- execute_query() / execute_command(): single-statement helpers
- to_json() / from_json(): JSONB parameter and column conversion

Pool sizing comes from DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE. The weekly
diagnosis fans out over teams with DIAGNOSIS_WORKER_LIMIT concurrent workers,
each holding at most one connection at a time, so the worker limit must stay at
or below DB_POOL_MAX_SIZE. Services release their connection before calling
another service's read (metric snapshots, baselines), so nested acquisitions
never happen.

Usage:
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(RISK_UPSERT_SQL, ...)

    rows = await execute_query("SELECT * FROM experiment WHERE team_id = $1", team_id)
"""

import json
from typing import Any, List, Optional

import asyncpg
from asyncpg import Pool

from teampulse.core.config import get_settings


# Seconds before a single statement is cancelled
COMMAND_TIMEOUT: int = 60

_pool: Optional[Pool] = None


# =============================================================================
# Pool Lifecycle
# =============================================================================

async def init_db() -> Pool:
    """
    Create the connection pool, or return the existing one.

    Raises:
        asyncpg.PostgresError: If the database rejects the connection.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        settings = get_settings()
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=COMMAND_TIMEOUT,
        )

    return _pool


async def get_db_pool() -> Pool:
    """Shared pool; created on first use when init_db() has not run yet."""
    if _pool is None:
        await init_db()

    assert _pool is not None, "Pool should be initialized after init_db()"
    return _pool


async def close_db() -> None:
    """Close the pool. Safe to call twice; the next get_db_pool() reopens it."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


# =============================================================================
# Statement Helpers
# =============================================================================

async def execute_query(query: str, *args: Any) -> List[asyncpg.Record]:
    """Run a query on a pooled connection and return every row."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        return await conn.fetch(query, *args)


async def execute_command(query: str, *args: Any) -> str:
    """
    Run an INSERT/UPDATE/DELETE on a pooled connection.

    Returns:
        The command status string, e.g. 'UPDATE 1'.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        return await conn.execute(query, *args)


# =============================================================================
# JSONB Helpers
# =============================================================================

def to_json(value: Any) -> str:
    """Serialize a value for a JSONB parameter (dates become ISO strings)."""
    return json.dumps(value, default=str)


def from_json(value: Any, default: Any = None) -> Any:
    """
    Decode a JSONB column value.

    asyncpg returns JSONB as text unless a type codec is registered; values that
    are already decoded pass through unchanged.
    """
    if value is None:
        return default
    if isinstance(value, (str, bytes, bytearray)):
        return json.loads(value)
    return value
