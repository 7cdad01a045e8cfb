"""
Core infrastructure for TeamPulse: settings, the asyncpg pool and FastAPI
dependencies.

    from teampulse.core import get_settings, get_db_pool, DBSessionDep
"""

from teampulse.core.config import Settings, get_settings
from teampulse.core.database import (
    close_db,
    execute_command,
    execute_query,
    from_json,
    get_db_pool,
    init_db,
    to_json,
)
from teampulse.core.dependencies import (
    DBSessionDep,
    SettingsDep,
    get_db_session,
    get_settings_dependency,
)

__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    # Database
    "init_db",
    "close_db",
    "get_db_pool",
    "execute_query",
    "execute_command",
    "to_json",
    "from_json",
    # Dependencies
    "get_db_session",
    "get_settings_dependency",
    "SettingsDep",
    "DBSessionDep",
]
