"""
Scheduled Jobs for TeamPulse.

This module provides the background automation that drives the
diagnostic-and-learning loop:
- Weekly diagnosis: baseline, indicators, risks, team state, action (weekly_diagnosis.py)
- Experiment sweep: completes experiments whose time box ended (experiment_sweep.py)
- Crisis scan: fast-cadence anomaly detection (crisis_scan.py)
- Notifications: Slack escalations for crises and breaking teams (notifications.py)

Idempotency Guarantees:
-----------------------
- Weekly diagnosis: (team, week) is claimed in the diagnosis_run table; all
  downstream writes are upserts by natural key, so re-running a week
  overwrites rather than duplicates.

- Experiment sweep: each experiment is claimed with a conditional
  running -> completing update; a second sweep skips claimed experiments.

- Crisis scan: a same-type unresolved crisis detected within the dedup window
  is updated in place instead of creating a new event.

Environment Requirements:
-------------------------
- DATABASE_URL: PostgreSQL connection string
- SLACK_WEBHOOK_URL: Slack incoming webhook URL (optional; notifications are
  skipped when unset)
- DIAGNOSIS_WORKER_LIMIT: Concurrent teams in the weekly diagnosis (default 4)

Dependencies:
-------------
- slack-sdk (Slack webhook client)

Usage Examples:
---------------
    from teampulse.jobs import (
        run_weekly_diagnosis,
        run_experiment_sweep,
        scan_all_teams,
    )

    # Weekly (Monday morning)
    result = await run_weekly_diagnosis()

    # Daily
    result = await run_experiment_sweep()

    # Hourly
    result = await scan_all_teams()

Each job module can also be run directly, e.g.
`python -m teampulse.jobs.weekly_diagnosis`.
"""

# =============================================================================
# Weekly Diagnosis
# =============================================================================

from teampulse.jobs.weekly_diagnosis import (
    diagnose_single_team,
    diagnose_team,
    get_week_start,
    run_weekly_diagnosis,
)

# =============================================================================
# Experiment Sweep
# =============================================================================

from teampulse.jobs.experiment_sweep import run_experiment_sweep

# =============================================================================
# Crisis Scan
# =============================================================================

from teampulse.jobs.crisis_scan import scan_all_teams

# =============================================================================
# Notifications
# =============================================================================

from teampulse.jobs.notifications import (
    notify_breaking_state,
    notify_crisis,
)


__all__ = [
    # Weekly diagnosis
    "diagnose_single_team",
    "diagnose_team",
    "get_week_start",
    "run_weekly_diagnosis",
    # Experiment sweep
    "run_experiment_sweep",
    # Crisis scan
    "scan_all_teams",
    # Notifications
    "notify_breaking_state",
    "notify_crisis",
]
