"""
Experiment completion sweep for TeamPulse.

Completes every running experiment whose time box has ended: captures
post-metrics, computes the impact, closes the experiment and its action, and
records the learning. Safe to run concurrently with itself; each experiment is
claimed with a conditional update before any work is done.

Usage:
    from teampulse.jobs.experiment_sweep import run_experiment_sweep

    result = await run_experiment_sweep()

    # Cron entry point (daily)
    python -m teampulse.jobs.experiment_sweep
"""

import asyncio
import logging
from datetime import date
from typing import Any, Dict, Optional

from teampulse.core.database import close_db, init_db
from teampulse.services.experiments import sweep_expired_experiments


logger = logging.getLogger(__name__)


async def run_experiment_sweep(as_of: Optional[date] = None) -> Dict[str, Any]:
    """
    Run the sweep and wrap its counts in a job result.

    Returns:
        Dict with success flag, date, and completed / skipped / failed counts.
    """
    as_of = as_of or date.today()
    logger.info(f"Starting experiment sweep as of {as_of}")

    try:
        counts = await sweep_expired_experiments(as_of)
    except Exception as e:
        logger.error(f"Experiment sweep failed: {e}", exc_info=True)
        return {'success': False, 'date': as_of.isoformat(), 'error': str(e)}

    return {'success': counts['failed'] == 0, 'date': as_of.isoformat(), **counts}


async def main() -> Dict[str, Any]:
    await init_db()
    try:
        return await run_experiment_sweep()
    finally:
        await close_db()


__all__ = ["run_experiment_sweep"]


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    asyncio.run(main())
