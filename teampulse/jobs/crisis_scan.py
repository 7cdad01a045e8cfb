"""
Crisis scan job for TeamPulse.

Runs the crisis anomaly detector for every active team on a fast cadence
(hourly or more often). New crisis events trigger a Slack notification;
re-detections within the dedup window update the stored event silently.

Failure Isolation:
- A failure for one team is logged and counted; the scan continues

Usage:
    from teampulse.jobs.crisis_scan import scan_all_teams

    result = await scan_all_teams()

    # Cron entry point
    python -m teampulse.jobs.crisis_scan
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from teampulse.core.database import close_db, init_db
from teampulse.jobs.notifications import drain_notifications, notify_crisis
from teampulse.services.crisis import detect_team_crisis, is_new_event
from teampulse.services.team_directory import list_active_teams


logger = logging.getLogger(__name__)


async def scan_all_teams(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Scan every active team once.

    Returns:
        Dict with scanned, new_crises, updated_crises, failed counts and
        per-team errors.
    """
    now = now or datetime.now(timezone.utc)
    teams = await list_active_teams()

    results: Dict[str, Any] = {
        'scanned': 0,
        'new_crises': 0,
        'updated_crises': 0,
        'failed': 0,
        'errors': [],
    }

    for team in teams:
        try:
            event = await detect_team_crisis(team.team_id, now)
        except Exception as e:
            logger.error(f"Crisis scan failed for team {team.team_id}: {e}", exc_info=True)
            results['failed'] += 1
            results['errors'].append({'team_id': team.team_id, 'error': str(e)})
            continue

        results['scanned'] += 1
        if event is None:
            continue

        if is_new_event(event):
            results['new_crises'] += 1
            notify_crisis(event, team.name)
        else:
            results['updated_crises'] += 1

    logger.info(
        f"Crisis scan: {results['scanned']} teams scanned, {results['new_crises']} new, "
        f"{results['updated_crises']} updated, {results['failed']} failed"
    )
    return results


async def main() -> Dict[str, Any]:
    await init_db()
    try:
        result = await scan_all_teams()
        await drain_notifications()
        return result
    finally:
        await close_db()


__all__ = ["scan_all_teams"]


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    asyncio.run(main())
