"""
Enumeration definitions for the TeamPulse backend.

All enums inherit from both `str` and `Enum` so they serialize to JSON and bind
to asyncpg text parameters via `.value` without custom encoders.

Groups:
- Telemetry: MetricKey, CrisisMetric
- Baseline: BaselineConfidence, BaselineStatus
- Deviation classifier: IndicatorType, SignalDirection, ScoringVariant, StateBasis
- Weekly risk: RiskType, DominantRisk, RiskBand, Confidence, TeamHealthState
- Interventions: ActionStatus, ExperimentStatus, ExpectedDirection, ImpactResult
- Team directory: TeamFunction, SizeBand
- Crisis: CrisisType, CrisisSeverity, SignalSignificance, CrisisUrgency,
  ResolutionState
- Jobs: TimelineEventType, DiagnosisRunStatus
"""

from enum import Enum


# =============================================================================
# Telemetry
# =============================================================================


class MetricKey(str, Enum):
    """
    Canonical keys of the per-team daily metric vector.

    Every value is a team aggregate for one day:
    - meeting_hours: Hours spent in meetings
    - after_hours_rate: Percentage of activity outside working hours
    - response_time_hours: Median response latency in hours
    - focus_time_ratio: Share of the working day in uninterrupted focus
    - async_participation: Share of members contributing in async channels
    - unique_contacts: Distinct collaborators reached (collaboration breadth)
    - back_to_back_meetings: Meetings with no gap before the next one
    - meeting_fragmentation: Short meetings splitting the working day
    - cross_team_meetings: Meetings involving other teams
    - focus_block_minutes: Average length of uninterrupted focus blocks
    - interruptions: Context switches (pings, ad-hoc calls) per member
    - message_count: Messages contributed
    - upward_response_hours: Response latency to leadership messages
    - sentiment_variance: Variance of message sentiment (expression range)
    """
    MEETING_HOURS = "meeting_hours"
    AFTER_HOURS_RATE = "after_hours_rate"
    RESPONSE_TIME_HOURS = "response_time_hours"
    FOCUS_TIME_RATIO = "focus_time_ratio"
    ASYNC_PARTICIPATION = "async_participation"
    UNIQUE_CONTACTS = "unique_contacts"
    BACK_TO_BACK_MEETINGS = "back_to_back_meetings"
    MEETING_FRAGMENTATION = "meeting_fragmentation"
    CROSS_TEAM_MEETINGS = "cross_team_meetings"
    FOCUS_BLOCK_MINUTES = "focus_block_minutes"
    INTERRUPTIONS = "interruptions"
    MESSAGE_COUNT = "message_count"
    UPWARD_RESPONSE_HOURS = "upward_response_hours"
    SENTIMENT_VARIANCE = "sentiment_variance"


class CrisisMetric(str, Enum):
    """
    Fast-moving signals evaluated by the crisis scan.

    Chat signals carry a significance; calendar signals are medium unless stated.
    """
    MESSAGE_VOLUME = "message_volume"
    NEGATIVE_REACTIONS = "negative_reactions"
    THREAD_ABANDONMENT = "thread_abandonment"
    SENTIMENT_SCORE = "sentiment_score"
    MEETING_CANCELLATIONS = "meeting_cancellations"
    DECLINE_RATE = "decline_rate"
    CALENDAR_PURGES = "calendar_purges"


# =============================================================================
# Baseline
# =============================================================================


class BaselineConfidence(str, Enum):
    """
    Baseline confidence level.

    Mapped from a 0-100 score (50% calibration days, 50% connected sources):
    - Low: score < 40
    - Medium: 40 <= score < 75
    - High: score >= 75
    """
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class BaselineStatus(str, Enum):
    """
    Calibration status of a baseline.

    - calibrating: Fewer days than the calibration window observed; refreshed
      on each diagnosis
    - established: Calibration complete; frozen until explicitly recalculated
    """
    CALIBRATING = "calibrating"
    ESTABLISHED = "established"


# =============================================================================
# Deviation Classifier
# =============================================================================


class IndicatorType(str, Enum):
    """Indicators produced by the shared deviation classifier."""
    DRIFT = "drift"
    COORDINATION_LOAD = "coordination_load"
    BANDWIDTH_TAX = "bandwidth_tax"
    SILENCE_RISK = "silence_risk"
    CAPACITY = "capacity"


class SignalDirection(str, Enum):
    """
    Direction of a signal's movement against its baseline.

    - positive: Deviating in the favorable direction
    - neutral: Within threshold
    - negative: Deviating in the adverse direction
    """
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class ScoringVariant(str, Enum):
    """
    Composite score formula of an indicator.

    - negative_ratio: negative signal count / total signals * 100
    - points: fixed points per triggered condition, capped at 100
    """
    NEGATIVE_RATIO = "negative_ratio"
    POINTS = "points"


class StateBasis(str, Enum):
    """Value mapped onto an indicator's state bands."""
    NEGATIVE_COUNT = "negative_count"
    SCORE = "score"


# =============================================================================
# Weekly Risk & Team State
# =============================================================================


class RiskType(str, Enum):
    """
    Weekly risk composites.

    - overload: Work intensity above the team's ability to recover
    - execution: Coordination efficiency declining
    - retention_strain: Sustained pressure trend that raises exit risk
    """
    OVERLOAD = "overload"
    EXECUTION = "execution"
    RETENTION_STRAIN = "retention_strain"


class DominantRisk(str, Enum):
    """Risk type driving the team state; none for healthy teams."""
    OVERLOAD = "overload"
    EXECUTION = "execution"
    RETENTION_STRAIN = "retention_strain"
    NONE = "none"


class RiskBand(str, Enum):
    """
    Risk severity bucket derived from a 0-100 score.

    - green: score < 35
    - yellow: 35 <= score < 65
    - red: score >= 65
    """
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class Confidence(str, Enum):
    """Confidence level attached to risk scores, states and learnings."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TeamHealthState(str, Enum):
    """
    Weekly team health state.

    - healthy: All risks below 35 (initial state)
    - strained: Any risk at or above 35, not otherwise classified
    - overloaded: Overload risk at or above 65 this week
    - breaking: Execution risk at or above 65 for two consecutive weeks
    """
    HEALTHY = "healthy"
    STRAINED = "strained"
    OVERLOADED = "overloaded"
    BREAKING = "breaking"


# =============================================================================
# Interventions
# =============================================================================


class ActionStatus(str, Enum):
    """
    Lifecycle status of an intervention action.

    suggested -> active -> completed, or suggested -> dismissed.
    """
    SUGGESTED = "suggested"
    ACTIVE = "active"
    DISMISSED = "dismissed"
    COMPLETED = "completed"


class ExperimentStatus(str, Enum):
    """
    Lifecycle status of an experiment.

    - running: Within its time box
    - completing: Claimed by a completion sweep
    - completed: Post metrics and impact recorded
    """
    RUNNING = "running"
    COMPLETING = "completing"
    COMPLETED = "completed"


class ExpectedDirection(str, Enum):
    """Direction a success metric is expected to move."""
    INCREASE = "increase"
    DECREASE = "decrease"


class ImpactResult(str, Enum):
    """Classified outcome of a completed experiment."""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


# =============================================================================
# Team Directory
# =============================================================================


class TeamFunction(str, Enum):
    """Team function used for learning-pattern matching."""
    ENGINEERING = "Engineering"
    PRODUCT = "Product"
    DESIGN = "Design"
    MARKETING = "Marketing"
    SALES = "Sales"
    SUPPORT = "Support"
    OPERATIONS = "Operations"
    OTHER = "Other"


class SizeBand(str, Enum):
    """Team headcount band used for learning-pattern matching."""
    XS = "1-5"
    S = "6-10"
    M = "11-20"
    L = "21-50"
    XL = "50+"


# =============================================================================
# Crisis Detection
# =============================================================================


class CrisisType(str, Enum):
    """Closed set of crisis patterns recognized by the crisis scan."""
    SUDDEN_SENTIMENT_COLLAPSE = "sudden_sentiment_collapse"
    COMMUNICATION_SHUTDOWN = "communication_shutdown"
    MASS_CALENDAR_CANCELLATION = "mass_calendar_cancellation"
    LEADERSHIP_DEPARTURE_SHOCK = "leadership_departure_shock"
    CONFLICT_SPIKE = "conflict_spike"


class CrisisSeverity(str, Enum):
    """Crisis severity, rising with the count and size of confirming signals."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SignalSignificance(str, Enum):
    """Significance of a single crisis signal."""
    MEDIUM = "medium"
    HIGH = "high"


class CrisisUrgency(str, Enum):
    """How quickly leadership should respond."""
    IMMEDIATE = "immediate"
    TODAY = "today"
    THIS_WEEK = "this_week"


class ResolutionState(str, Enum):
    """
    Response state of a crisis event.

    Acknowledgement and resolution are set independently; resolved wins.
    """
    UNRESOLVED = "unresolved"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


# =============================================================================
# Jobs
# =============================================================================


class TimelineEventType(str, Enum):
    """Drift timeline events written when an indicator's state changes."""
    BASELINE = "baseline"
    FIRST_SIGNAL = "first_signal"
    ESCALATION = "escalation"
    RESOLUTION = "resolution"


class DiagnosisRunStatus(str, Enum):
    """Status of the (team, week) diagnosis idempotency key."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
