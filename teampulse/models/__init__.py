"""
Package initialization file for TeamPulse models.

Re-exports all Pydantic schemas and enumerations so other modules can write:

    from teampulse.models import RiskType, RiskScore, TeamState
"""

# =============================================================================
# Enums
# =============================================================================

from teampulse.models.enums import (
    ActionStatus,
    BaselineConfidence,
    BaselineStatus,
    Confidence,
    CrisisMetric,
    CrisisSeverity,
    CrisisType,
    CrisisUrgency,
    DiagnosisRunStatus,
    DominantRisk,
    ExpectedDirection,
    ExperimentStatus,
    ImpactResult,
    IndicatorType,
    MetricKey,
    ResolutionState,
    RiskBand,
    RiskType,
    ScoringVariant,
    SignalDirection,
    SignalSignificance,
    SizeBand,
    StateBasis,
    TeamFunction,
    TeamHealthState,
    TimelineEventType,
)

# =============================================================================
# Schemas
# =============================================================================

from teampulse.models.schemas import (
    AcknowledgeCrisisRequest,
    ActivateActionRequest,
    Baseline,
    CrisisEvent,
    CrisisSignal,
    DeviationAssessment,
    DismissActionRequest,
    DriftTimelineEvent,
    Experiment,
    Impact,
    InterventionAction,
    LearnedPatterns,
    LearningRecord,
    LearningStats,
    MetricChange,
    MetricSample,
    MetricSnapshot,
    MetricStats,
    PatternQueryRequest,
    RecalculateBaselineRequest,
    ResolveCrisisRequest,
    RiskDriver,
    RiskScore,
    SignalDeviation,
    SuccessMetric,
    TeamProfile,
    TeamState,
    TopDriver,
)


__all__ = [
    # Enums
    "ActionStatus",
    "BaselineConfidence",
    "BaselineStatus",
    "Confidence",
    "CrisisMetric",
    "CrisisSeverity",
    "CrisisType",
    "CrisisUrgency",
    "DiagnosisRunStatus",
    "DominantRisk",
    "ExpectedDirection",
    "ExperimentStatus",
    "ImpactResult",
    "IndicatorType",
    "MetricKey",
    "ResolutionState",
    "RiskBand",
    "RiskType",
    "ScoringVariant",
    "SignalDirection",
    "SignalSignificance",
    "SizeBand",
    "StateBasis",
    "TeamFunction",
    "TeamHealthState",
    "TimelineEventType",
    # Schemas
    "AcknowledgeCrisisRequest",
    "ActivateActionRequest",
    "Baseline",
    "CrisisEvent",
    "CrisisSignal",
    "DeviationAssessment",
    "DismissActionRequest",
    "DriftTimelineEvent",
    "Experiment",
    "Impact",
    "InterventionAction",
    "LearnedPatterns",
    "LearningRecord",
    "LearningStats",
    "MetricChange",
    "MetricSample",
    "MetricSnapshot",
    "MetricStats",
    "PatternQueryRequest",
    "RecalculateBaselineRequest",
    "ResolveCrisisRequest",
    "RiskDriver",
    "RiskScore",
    "SignalDeviation",
    "SuccessMetric",
    "TeamProfile",
    "TeamState",
    "TopDriver",
]
