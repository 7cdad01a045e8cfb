"""
FastAPI dependencies for the TeamPulse API.

- DBSessionDep: a pooled asyncpg connection, released when the request ends
- SettingsDep: the cached Settings instance

Access control is enforced in front of this service; transition endpoints take
the acting user from the request body.

Usage:
    @router.get("/{team_id}/diagnosis-runs")
    async def list_runs(team_id: str, db: DBSessionDep):
        rows = await db.fetch("SELECT * FROM diagnosis_run WHERE team_id = $1", team_id)
"""

from typing import Annotated, AsyncGenerator

from asyncpg import Connection
from fastapi import Depends

from teampulse.core.config import Settings, get_settings
from teampulse.core.database import get_db_pool


async def get_db_session() -> AsyncGenerator[Connection, None]:
    """Yield a pooled connection for the duration of one request."""
    pool = await get_db_pool()
    async with pool.acquire() as connection:
        yield connection


def get_settings_dependency() -> Settings:
    """
    Settings for injection.

    Overridable in tests with
    app.dependency_overrides[get_settings_dependency] = lambda: mock_settings
    """
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

DBSessionDep = Annotated[Connection, Depends(get_db_session)]
