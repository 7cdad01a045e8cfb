"""
Team Directory Service.

Read interface over team membership and profile data (headcount, industry,
function, size band, connected telemetry sources). Used for baseline source
confidence, learning-pattern matching and selecting the teams a job covers.
"""

import logging
from typing import Any, List, Optional

from teampulse.core.database import get_db_pool
from teampulse.models.enums import SizeBand
from teampulse.models.schemas import TeamProfile


logger = logging.getLogger(__name__)


def size_band_for(member_count: int) -> SizeBand:
    """
    Map a headcount to its size band.

    Example:
        >>> size_band_for(8)
        <SizeBand.S: '6-10'>
    """
    if member_count <= 5:
        return SizeBand.XS
    if member_count <= 10:
        return SizeBand.S
    if member_count <= 20:
        return SizeBand.M
    if member_count <= 50:
        return SizeBand.L
    return SizeBand.XL


def _row_to_profile(row: Any) -> TeamProfile:
    member_count = int(row["member_count"] or 0)
    return TeamProfile(
        team_id=row["team_id"],
        name=row["name"],
        member_count=member_count,
        industry=row["industry"] or "Other",
        function=row["function"] or "Other",
        size_band=row["size_band"] or size_band_for(member_count).value,
        connected_sources=int(row["connected_sources"] or 0),
        is_active=bool(row["is_active"]),
    )


async def get_team_profile(team_id: str) -> Optional[TeamProfile]:
    """Profile of one team, or None when the team is unknown."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            SELECT team_id, name, member_count, industry, function,
                   size_band, connected_sources, is_active
            FROM team_profile
            WHERE team_id = $1
            """,
            team_id
        )
    return _row_to_profile(row) if row else None


async def list_active_teams() -> List[TeamProfile]:
    """All teams scheduled for diagnosis and crisis scans."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT team_id, name, member_count, industry, function,
                   size_band, connected_sources, is_active
            FROM team_profile
            WHERE is_active = TRUE
            ORDER BY team_id
            """
        )
    return [_row_to_profile(row) for row in rows]


__all__ = [
    "size_band_for",
    "get_team_profile",
    "list_active_teams",
]
