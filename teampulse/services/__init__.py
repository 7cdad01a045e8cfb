"""
TeamPulse Services Module

Business logic of the diagnostic-and-learning loop. Each service is stateless;
storage goes through the shared asyncpg pool, and every computation that
matters for correctness is a pure function next to the upsert that stores it.

Services:
- metrics_source: Daily sample frames and hourly activity windows
- team_directory: Team profiles and size bands
- baseline: Versioned per-team statistical baselines
- deviation: The shared deviation & state classifier
- indicators: Drift, coordination load, bandwidth tax, silence risk, capacity
- risk: Weekly overload / execution / retention-strain composites
- team_state: Weekly team health state machine
- interventions: Action playbook and lifecycle
- experiments: Experiment snapshots, impact, completion sweep
- learning: Learning records and pattern retrieval
- crisis: Fast-cadence crisis anomaly detection

All services are consumed by the API layer (teampulse/api/) and the cron
jobs (teampulse/jobs/).
"""

# =============================================================================
# Metrics Source & Team Directory
# =============================================================================

from teampulse.services.metrics_source import (
    fetch_activity_window,
    fetch_sample_frame,
    get_daily_series,
    get_sample_day_count,
    get_trailing_averages,
    record_samples,
    samples_to_frame,
)
from teampulse.services.team_directory import (
    get_team_profile,
    list_active_teams,
    size_band_for,
)

# =============================================================================
# Baseline Engine
# =============================================================================

from teampulse.services.baseline import (
    InsufficientBaselineDataError,
    build_baseline,
    calculate_delta_pct,
    compute_baseline_confidence,
    compute_metric_stats,
    ensure_baseline,
    get_current_baseline,
    is_outside_band,
    list_baseline_versions,
    recalculate_baseline,
)

# =============================================================================
# Deviation & State Classifier
# =============================================================================

from teampulse.services.deviation import (
    IndicatorConfig,
    SignalRule,
    classify,
    evaluate_signal,
)
from teampulse.services.indicators import (
    INDICATOR_CONFIGS,
    assess_all_indicators,
    assess_indicator,
    build_timeline_event,
    get_latest_assessment,
    get_timeline,
    list_assessments,
    persist_assessment,
    record_timeline_event,
    refresh_indicator_assessments,
)

# =============================================================================
# Weekly Risk & Team State
# =============================================================================

from teampulse.services.risk import (
    calculate_deviation,
    calculate_trend_slope,
    compute_execution_risk,
    compute_overload_risk,
    compute_retention_strain_risk,
    compute_weekly_risks,
    get_risk_band,
    get_risk_history,
    get_risk_scores,
    persist_risk_scores,
)
from teampulse.services.team_state import (
    determine_team_state,
    get_previous_execution_score,
    get_state_history,
    get_team_state,
    persist_team_state,
)

# =============================================================================
# Intervention Lifecycle
# =============================================================================

from teampulse.services.interventions import (
    ActionNotFoundError,
    ActionStateError,
    activate_action,
    dismiss_action,
    generate_action,
    get_action,
    get_active_action,
    list_actions,
    select_action_template,
)
from teampulse.services.experiments import (
    ExperimentNotFoundError,
    ExperimentStateError,
    complete_experiment,
    compute_impact,
    get_experiment,
    get_impact,
    list_experiments,
    sweep_expired_experiments,
)
from teampulse.services.learning import (
    get_learned_patterns,
    get_learning_stats,
    rank_learnings,
    record_learning,
)

# =============================================================================
# Crisis Detection
# =============================================================================

from teampulse.services.crisis import (
    CrisisNotFoundError,
    acknowledge_crisis,
    detect_team_crisis,
    evaluate_crisis,
    get_active_crises,
    resolve_crisis,
)


__all__ = [
    # Metrics source & team directory
    "fetch_activity_window",
    "fetch_sample_frame",
    "get_daily_series",
    "get_sample_day_count",
    "get_trailing_averages",
    "record_samples",
    "samples_to_frame",
    "get_team_profile",
    "list_active_teams",
    "size_band_for",
    # Baseline
    "InsufficientBaselineDataError",
    "build_baseline",
    "calculate_delta_pct",
    "compute_baseline_confidence",
    "compute_metric_stats",
    "ensure_baseline",
    "get_current_baseline",
    "is_outside_band",
    "list_baseline_versions",
    "recalculate_baseline",
    # Deviation & indicators
    "IndicatorConfig",
    "SignalRule",
    "classify",
    "evaluate_signal",
    "INDICATOR_CONFIGS",
    "assess_all_indicators",
    "assess_indicator",
    "build_timeline_event",
    "get_latest_assessment",
    "get_timeline",
    "list_assessments",
    "persist_assessment",
    "record_timeline_event",
    "refresh_indicator_assessments",
    # Risk & state
    "calculate_deviation",
    "calculate_trend_slope",
    "compute_execution_risk",
    "compute_overload_risk",
    "compute_retention_strain_risk",
    "compute_weekly_risks",
    "get_risk_band",
    "get_risk_history",
    "get_risk_scores",
    "persist_risk_scores",
    "determine_team_state",
    "get_previous_execution_score",
    "get_state_history",
    "get_team_state",
    "persist_team_state",
    # Interventions
    "ActionNotFoundError",
    "ActionStateError",
    "activate_action",
    "dismiss_action",
    "generate_action",
    "get_action",
    "get_active_action",
    "list_actions",
    "select_action_template",
    "ExperimentNotFoundError",
    "ExperimentStateError",
    "complete_experiment",
    "compute_impact",
    "get_experiment",
    "get_impact",
    "list_experiments",
    "sweep_expired_experiments",
    "get_learned_patterns",
    "get_learning_stats",
    "rank_learnings",
    "record_learning",
    # Crisis
    "CrisisNotFoundError",
    "acknowledge_crisis",
    "detect_team_crisis",
    "evaluate_crisis",
    "get_active_crises",
    "resolve_crisis",
]
