"""
Pydantic request/response models for the TeamPulse backend.

This module provides type-safe validation and serialization for every record the
core produces or consumes: metric samples, baselines, deviation assessments, risk
scores, team states, interventions, experiments, impacts, learning records and
crisis events, plus the request bodies of the lifecycle endpoints.

All models use Pydantic v2 syntax. Enum-typed fields accept either the enum
member or its string value.
"""

from datetime import date as DateType, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from teampulse.models.enums import (
    ActionStatus,
    BaselineConfidence,
    BaselineStatus,
    Confidence,
    CrisisSeverity,
    CrisisType,
    CrisisUrgency,
    DominantRisk,
    ExpectedDirection,
    ExperimentStatus,
    ImpactResult,
    IndicatorType,
    ResolutionState,
    RiskBand,
    RiskType,
    SignalDirection,
    SignalSignificance,
    TeamHealthState,
    TimelineEventType,
)


# =============================================================================
# Telemetry & Team Directory
# =============================================================================


class MetricSample(BaseModel):
    """
    One day of team-aggregate telemetry.

    Append-only; at most one sample per team per day.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "team_id": "team-payments",
                "sample_date": "2026-03-02",
                "metrics": {
                    "meeting_hours": 15.0,
                    "after_hours_rate": 12.5,
                    "response_time_hours": 4.0,
                    "focus_time_ratio": 0.42,
                },
            }
        }
    )

    team_id: str = Field(..., min_length=1, description="Team identifier")
    sample_date: DateType = Field(..., description="Day the aggregates cover")
    metrics: Dict[str, Optional[float]] = Field(
        default_factory=dict,
        description="Metric key -> daily value (see MetricKey)"
    )


class TeamProfile(BaseModel):
    """Team directory entry used for confidence and learning-pattern matching."""
    team_id: str = Field(..., description="Team identifier")
    name: Optional[str] = Field(default=None, description="Display name")
    member_count: int = Field(default=0, ge=0, description="Current headcount")
    industry: str = Field(default="Other", description="Organization industry")
    function: str = Field(default="Other", description="Team function (see TeamFunction)")
    size_band: str = Field(default="1-5", description="Headcount band (see SizeBand)")
    connected_sources: int = Field(default=0, ge=0, description="Connected telemetry sources")
    is_active: bool = Field(default=True, description="Whether the team is scheduled")


# =============================================================================
# Baseline
# =============================================================================


class MetricStats(BaseModel):
    """Distribution summary of one metric over the calibration window."""
    mean: float
    std_dev: float = Field(..., ge=0.0, description="Population standard deviation")
    median: float
    p25: float
    p75: float
    min: float
    max: float
    sample_count: int = Field(..., ge=0)


class Baseline(BaseModel):
    """
    Per-team statistical baseline.

    Versioned: an explicit recalculation writes version + 1 and keeps the
    previous version for audit.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "team_id": "team-payments",
                "version": 1,
                "window_start": "2026-02-01",
                "window_end": "2026-03-02",
                "window_days": 30,
                "metrics": {
                    "meeting_hours": {
                        "mean": 15.0, "std_dev": 1.2, "median": 15.0,
                        "p25": 14.1, "p75": 15.8, "min": 12.5, "max": 17.0,
                        "sample_count": 30,
                    }
                },
                "confidence": "High",
                "confidence_score": 100,
                "calibration_day": 30,
                "status": "established",
                "sample_count": 30,
                "is_current": True,
            }
        }
    )

    team_id: str
    version: int = Field(default=1, ge=1)
    window_start: DateType
    window_end: DateType
    window_days: int = Field(..., ge=1)
    metrics: Dict[str, MetricStats] = Field(default_factory=dict)
    confidence: BaselineConfidence
    confidence_score: int = Field(..., ge=0, le=100)
    calibration_day: int = Field(..., ge=0, le=30)
    status: BaselineStatus
    sample_count: int = Field(..., ge=0, description="Distinct sample days in the window")
    is_current: bool = True
    created_at: Optional[datetime] = None

    def mean_of(self, metric: str) -> Optional[float]:
        """Baseline mean of a metric, or None when the metric was never observed."""
        stats = self.metrics.get(metric)
        return stats.mean if stats else None


# =============================================================================
# Deviation Assessments
# =============================================================================


class SignalDeviation(BaseModel):
    """One signal of a deviation assessment."""
    signal: str = Field(..., description="Metric key")
    label: str = Field(..., description="Human-readable signal name")
    value: Optional[float] = Field(default=None, description="Current value")
    baseline: Optional[float] = Field(default=None, description="Baseline mean")
    percent_change: Optional[float] = Field(default=None, description="Change vs baseline in %")
    deviating: bool = False
    direction: SignalDirection = SignalDirection.NEUTRAL
    points: int = Field(default=0, ge=0, description="Points awarded (points scoring only)")
    outside_band: bool = Field(default=False, description="Current value outside the baseline p25..p75 band")


class TopDriver(BaseModel):
    """Ranked contributor to an assessment's score."""
    signal: str
    label: str
    change: str = Field(..., description="Formatted change, e.g. '+67%'")
    percent_change: float
    contribution: float


class DeviationAssessment(BaseModel):
    """
    Output of the shared deviation classifier for one indicator and period.

    Regenerated in full each period; never partially updated.
    """
    team_id: str
    indicator: IndicatorType
    period_start: DateType
    period_end: DateType
    signals: List[SignalDeviation] = Field(default_factory=list)
    score: int = Field(default=0, ge=0, le=100)
    state: str = Field(..., description="Indicator-specific state label")
    top_drivers: List[TopDriver] = Field(default_factory=list)
    explanation: str = ""
    confidence: Optional[BaselineConfidence] = None
    baseline_established: bool = False
    negative_count: int = Field(default=0, ge=0)


class DriftTimelineEvent(BaseModel):
    """State change of an indicator between consecutive periods."""
    team_id: str
    indicator: IndicatorType
    event_date: DateType
    event_type: TimelineEventType
    from_state: Optional[str] = None
    to_state: str
    description: str


# =============================================================================
# Weekly Risk & Team State
# =============================================================================


class RiskDriver(BaseModel):
    """Metric contributing to a risk composite."""
    metric: str
    contribution_weight: float
    deviation: float = Field(..., description="Clamped deviation or normalized slope")
    explanation: str


class RiskScore(BaseModel):
    """Weekly risk composite. Unique per (team_id, week_start, risk_type)."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "team_id": "team-payments",
                "week_start": "2026-03-02",
                "risk_type": "overload",
                "score": 48,
                "band": "yellow",
                "confidence": "medium",
                "drivers": [
                    {
                        "metric": "after_hours_rate",
                        "contribution_weight": 0.35,
                        "deviation": 0.6,
                        "explanation": "After-hours activity is 60% higher than baseline",
                    }
                ],
                "explanation": "After-hours activity is 60% higher than baseline.",
            }
        }
    )

    team_id: str
    week_start: DateType
    risk_type: RiskType
    score: int = Field(..., ge=0, le=100)
    band: RiskBand
    confidence: Confidence
    drivers: List[RiskDriver] = Field(default_factory=list)
    explanation: str = ""


class TeamState(BaseModel):
    """Weekly team health state. Unique per (team_id, week_start)."""
    team_id: str
    week_start: DateType
    state: TeamHealthState = TeamHealthState.HEALTHY
    dominant_risk: DominantRisk = DominantRisk.NONE
    confidence: Confidence = Confidence.LOW
    summary: str = ""


# =============================================================================
# Interventions
# =============================================================================


class InterventionAction(BaseModel):
    """Recommended, time-boxed behavioral intervention."""
    id: str
    team_id: str
    created_week: DateType
    linked_risk: RiskType
    top_driver: Optional[str] = None
    title: str
    rationale: str
    status: ActionStatus = ActionStatus.SUGGESTED
    duration_weeks: int = Field(default=2, ge=1, le=12)
    activated_by: Optional[str] = None
    activated_at: Optional[datetime] = None
    dismissed_by: Optional[str] = None
    dismissed_at: Optional[datetime] = None
    dismissal_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class SuccessMetric(BaseModel):
    """Metric an experiment is expected to move."""
    metric: str
    expected_direction: ExpectedDirection


class MetricSnapshot(BaseModel):
    """7-day trailing average of one success metric."""
    metric: str
    value: Optional[float] = None
    baseline: Optional[float] = None
    captured_at: datetime


class Experiment(BaseModel):
    """Time-boxed trial of an activated action. 1:1 with the action."""
    id: str
    action_id: str
    team_id: str
    start_date: DateType
    end_date: DateType
    hypothesis: str
    success_metrics: List[SuccessMetric] = Field(default_factory=list)
    pre_metrics: List[MetricSnapshot] = Field(default_factory=list)
    post_metrics: List[MetricSnapshot] = Field(default_factory=list)
    status: ExperimentStatus = ExperimentStatus.RUNNING
    completed_at: Optional[datetime] = None


class MetricChange(BaseModel):
    """Pre/post comparison of one success metric."""
    metric: str
    pre_value: float
    post_value: float
    delta: float
    percent_change: float
    expected_direction: ExpectedDirection
    moved_as_expected: bool
    adverse: bool = Field(..., description="Moved against expectation by more than 5%")


class Impact(BaseModel):
    """Measured outcome of a completed experiment. 1:1 with the experiment."""
    experiment_id: str
    result: ImpactResult
    confidence: int = Field(..., ge=0, le=100)
    metric_changes: List[MetricChange] = Field(default_factory=list)
    summary: str = ""
    next_step: str = ""


# =============================================================================
# Learning Loop
# =============================================================================


class LearningRecord(BaseModel):
    """Stored (profile, risk, action, outcome) tuple. Append-only."""
    id: Optional[str] = None
    experiment_id: str
    industry: str
    function: str
    size_band: str
    risk_type: RiskType
    top_drivers: List[str] = Field(default_factory=list)
    action_title: str
    action_duration_weeks: int = 2
    outcome: ImpactResult
    metric_impacts: List[MetricChange] = Field(default_factory=list)
    confidence: Confidence = Confidence.MEDIUM
    recorded_at: Optional[datetime] = None


class LearnedPatterns(BaseModel):
    """Ranked learnings for a (profile, risk type) query."""
    successes: List[LearningRecord] = Field(default_factory=list)
    broadened_successes: List[LearningRecord] = Field(
        default_factory=list,
        description="Same function and size band in other industries"
    )
    failures: List[LearningRecord] = Field(default_factory=list)
    total_learnings: int = 0


class LearningStats(BaseModel):
    """Outcome counts for one team profile."""
    successes: int = 0
    failures: int = 0
    neutrals: int = 0
    success_rate: float = 0.0


# =============================================================================
# Crisis Detection
# =============================================================================


class CrisisSignal(BaseModel):
    """One anomalous signal of a crisis scan."""
    metric: str
    baseline: float
    current: float = Field(..., description="Extrapolated daily-equivalent value")
    deviation: float = Field(..., description="Percent change (points for decline rate)")
    significance: SignalSignificance = SignalSignificance.MEDIUM


class CrisisEvent(BaseModel):
    """Same-day multi-signal anomaly requiring immediate attention."""
    id: Optional[str] = None
    team_id: str
    crisis_type: CrisisType
    severity: CrisisSeverity
    signals: List[CrisisSignal] = Field(default_factory=list)
    confidence_score: int = Field(..., ge=0, le=100)
    likely_triggers: List[str] = Field(default_factory=list)
    recommended_action: str = ""
    urgency: CrisisUrgency = CrisisUrgency.TODAY
    detected_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolution_state: ResolutionState = ResolutionState.UNRESOLVED


# =============================================================================
# API Request Models
# =============================================================================


class ActivateActionRequest(BaseModel):
    """Body of POST /interventions/actions/{id}/activate."""
    activated_by: str = Field(..., min_length=1)


class DismissActionRequest(BaseModel):
    """Body of POST /interventions/actions/{id}/dismiss."""
    dismissed_by: str = Field(..., min_length=1)
    reason: Optional[str] = None


class RecalculateBaselineRequest(BaseModel):
    """Body of POST /teams/{team_id}/baseline/recalculate."""
    window_days: Optional[int] = Field(default=None, ge=7, le=365)
    as_of: Optional[DateType] = None


class PatternQueryRequest(BaseModel):
    """Body of POST /learning/patterns."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "industry": "Fintech",
                "function": "Engineering",
                "size_band": "6-10",
                "risk_type": "overload",
            }
        }
    )

    industry: str
    function: str
    size_band: str
    risk_type: RiskType
    limit: Optional[int] = Field(default=None, ge=1, le=50)


class AcknowledgeCrisisRequest(BaseModel):
    """Body of POST /crises/{id}/acknowledge."""
    acknowledged_by: str = Field(..., min_length=1)


class ResolveCrisisRequest(BaseModel):
    """Body of POST /crises/{id}/resolve."""
    resolved_by: Optional[str] = None
    notes: Optional[str] = None
