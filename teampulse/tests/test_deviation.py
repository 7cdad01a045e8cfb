"""
Tests for the shared Deviation & State Classifier (teampulse/services/deviation.py).

Covers the per-signal comparison, both scoring variants, state mapping, driver
ranking and the conservative defaults, using the production indicator
configurations where a worked example exists.

Test Classes:
- TestEvaluateSignal: percent change, strict thresholds, polarity
- TestDriftScenario: four of six signals negative -> Developing Drift (67)
- TestPointsScoring: tiered points, capping and driver ranking
- TestInsufficientData: no baseline, no current values, zero baselines
- TestMonotonicity: a worsening signal never lowers score or state
"""

from datetime import date
from typing import Dict

import pytest

from teampulse.models.enums import IndicatorType, ScoringVariant, SignalDirection, StateBasis
from teampulse.services.deviation import (
    BASELINE_PENDING_EXPLANATION,
    NO_SIGNAL_EXPLANATION,
    IndicatorConfig,
    SignalRule,
    award_points,
    classify,
    evaluate_signal,
    format_change,
    round_half_up,
)
from teampulse.services.indicators import (
    CAPACITY_CONFIG,
    COORDINATION_LOAD_CONFIG,
    DRIFT_CONFIG,
    capacity_remaining,
)
from teampulse.tests.factories import make_baseline


PERIOD_START = date(2025, 3, 3)
PERIOD_END = date(2025, 3, 9)


@pytest.fixture
def drift_current() -> Dict[str, float]:
    """Current week: meetings, after-hours, response time and async participation worsen."""
    return {
        'meeting_hours': 25.0,        # +66.7%
        'after_hours_rate': 14.0,     # +40%
        'response_time_hours': 5.5,   # +37.5%
        'async_participation': 30.0,  # -40%
        'focus_time_ratio': 0.5,      # unchanged
        'unique_contacts': 20.0,      # unchanged
    }


# =============================================================================
# Single signal
# =============================================================================

class TestEvaluateSignal:

    def test_meeting_load_increase_is_negative(self) -> None:
        """15h baseline, 25h this week: +66.7% exceeds 20% and is adverse."""
        rule = SignalRule('meeting_hours', 'Meeting load', 20.0, higher_is_worse=True)

        result = evaluate_signal(rule, 25.0, 15.0)

        assert round(result.percent_change, 1) == 66.7
        assert result.deviating is True
        assert result.direction == SignalDirection.NEGATIVE

    def test_threshold_is_strict(self) -> None:
        rule = SignalRule('response_time_hours', 'Response time', 25.0)

        # 4h -> 5h is exactly +25%
        result = evaluate_signal(rule, 5.0, 4.0)

        assert result.percent_change == pytest.approx(25.0)
        assert result.deviating is False
        assert result.direction == SignalDirection.NEUTRAL

    def test_favorable_move_is_positive(self) -> None:
        rule = SignalRule('focus_time_ratio', 'Focus time', 20.0, higher_is_worse=False)

        result = evaluate_signal(rule, 0.75, 0.5)

        assert result.direction == SignalDirection.POSITIVE
        assert result.points == 0

    def test_lower_is_worse_polarity(self) -> None:
        rule = SignalRule('unique_contacts', 'Collaboration breadth', 25.0, higher_is_worse=False)

        result = evaluate_signal(rule, 10.0, 20.0)

        assert result.percent_change == pytest.approx(-50.0)
        assert result.direction == SignalDirection.NEGATIVE

    def test_points_awarded_only_for_negative(self) -> None:
        rule = SignalRule(
            'meeting_hours', 'Meeting time', 10.0,
            point_tiers=((50.0, 30), (25.0, 20), (10.0, 10)),
        )

        worse = evaluate_signal(rule, 25.0, 15.0)
        better = evaluate_signal(rule, 5.0, 15.0)

        assert worse.points == 30
        assert better.points == 0

    def test_award_points_uses_highest_exceeded_tier(self) -> None:
        rule = SignalRule('x', 'X', 10.0, point_tiers=((50.0, 30), (25.0, 20), (10.0, 10)))

        assert award_points(rule, 60.0) == 30
        assert award_points(rule, 50.0) == 20
        assert award_points(rule, -30.0) == 20
        assert award_points(rule, 11.0) == 10
        assert award_points(rule, 10.0) == 0


class TestFormatting:

    def test_round_half_up(self) -> None:
        assert round_half_up(66.5) == 67
        assert round_half_up(0.5) == 1
        assert round_half_up(66.4) == 66

    def test_format_change(self) -> None:
        assert format_change(66.67) == '+67%'
        assert format_change(-37.5) == '-38%'
        assert format_change(0.0) == '+0%'


# =============================================================================
# Negative-ratio scoring (drift)
# =============================================================================

@pytest.mark.scenario
class TestDriftScenario:

    def test_four_of_six_is_developing_drift(self, established_baseline, drift_current) -> None:
        # Act
        assessment = classify(
            DRIFT_CONFIG, 'team-1', drift_current, established_baseline, PERIOD_START, PERIOD_END
        )

        # Assert
        assert assessment.negative_count == 4
        assert assessment.score == 67
        assert assessment.state == 'Developing Drift'
        assert assessment.baseline_established is True
        assert len(assessment.signals) == 6

    def test_top_drivers_ranked_by_magnitude(self, established_baseline, drift_current) -> None:
        assessment = classify(
            DRIFT_CONFIG, 'team-1', drift_current, established_baseline, PERIOD_START, PERIOD_END
        )

        assert [d.signal for d in assessment.top_drivers] == [
            'meeting_hours', 'after_hours_rate', 'async_participation'
        ]
        assert assessment.top_drivers[0].change == '+67%'
        assert assessment.explanation == (
            '4 signals showing negative drift, led by Meeting load (+67%).'
        )

    def test_stable_when_nothing_deviates(self, established_baseline, drift_baseline_means) -> None:
        assessment = classify(
            DRIFT_CONFIG, 'team-1', drift_baseline_means, established_baseline, PERIOD_START, PERIOD_END
        )

        assert assessment.state == 'Stable'
        assert assessment.score == 0
        assert assessment.top_drivers == []
        assert assessment.explanation.startswith('No significant drift detected.')

    def test_single_negative_signal_stays_stable(self, established_baseline, drift_baseline_means) -> None:
        current = dict(drift_baseline_means, meeting_hours=25.0)

        assessment = classify(
            DRIFT_CONFIG, 'team-1', current, established_baseline, PERIOD_START, PERIOD_END
        )

        assert assessment.negative_count == 1
        assert assessment.score == 17
        assert assessment.state == 'Stable'
        assert assessment.explanation == '1 signal showing negative drift, led by Meeting load (+67%).'

    def test_signals_flag_values_outside_interquartile_band(
        self, established_baseline, drift_baseline_means
    ) -> None:
        # Band is mean +/- 1; meetings at 25 sit above it, contacts at 20.5 stay inside
        current = dict(drift_baseline_means, meeting_hours=25.0, unique_contacts=20.5)

        assessment = classify(
            DRIFT_CONFIG, 'team-1', current, established_baseline, PERIOD_START, PERIOD_END
        )

        by_metric = {s.signal: s for s in assessment.signals}
        assert by_metric['meeting_hours'].outside_band is True
        assert by_metric['unique_contacts'].outside_band is False
        assert by_metric['focus_time_ratio'].outside_band is False

    def test_five_negative_is_critical(self, established_baseline, drift_current) -> None:
        current = dict(drift_current, unique_contacts=10.0)

        assessment = classify(
            DRIFT_CONFIG, 'team-1', current, established_baseline, PERIOD_START, PERIOD_END
        )

        assert assessment.state == 'Critical Drift'
        assert assessment.score == 83


# =============================================================================
# Points scoring
# =============================================================================

class TestPointsScoring:

    def test_coordination_load(self, established_baseline, drift_baseline_means) -> None:
        # Arrange: meetings +66.7% (30), back-to-back +50% (15), focus -50% (20)
        current = dict(
            drift_baseline_means,
            meeting_hours=25.0,
            back_to_back_meetings=6.0,
            focus_time_ratio=0.25,
        )

        # Act
        assessment = classify(
            COORDINATION_LOAD_CONFIG, 'team-1', current, established_baseline, PERIOD_START, PERIOD_END
        )

        # Assert
        assert assessment.score == 65
        assert assessment.state == 'Coordination-heavy'
        assert [d.signal for d in assessment.top_drivers] == [
            'meeting_hours', 'focus_time_ratio', 'back_to_back_meetings'
        ]
        assert assessment.explanation == (
            'Coordination-heavy: Meeting time is driving coordination load (+67% vs baseline).'
        )

    def test_score_is_capped_at_100(self, established_baseline) -> None:
        config = IndicatorConfig(
            indicator=IndicatorType.CAPACITY,
            signals=tuple(
                SignalRule(metric, metric, 10.0, point_tiers=((10.0, 60),))
                for metric in ('meeting_hours', 'after_hours_rate', 'response_time_hours')
            ),
            scoring=ScoringVariant.POINTS,
            state_basis=StateBasis.SCORE,
            state_bands=((0, 'Green'), (50, 'Red')),
        )
        current = {'meeting_hours': 30.0, 'after_hours_rate': 20.0, 'response_time_hours': 8.0}

        assessment = classify(config, 'team-1', current, established_baseline, PERIOD_START, PERIOD_END)

        assert assessment.score == 100
        assert assessment.state == 'Red'

    def test_capacity_remaining(self, established_baseline, drift_baseline_means) -> None:
        # Meetings +66.7% (25) and after-hours +100% (25)
        current = dict(drift_baseline_means, meeting_hours=25.0, after_hours_rate=20.0)

        assessment = classify(
            CAPACITY_CONFIG, 'team-1', current, established_baseline, PERIOD_START, PERIOD_END
        )

        assert assessment.score == 50
        assert assessment.state == 'Red'
        assert capacity_remaining(assessment) == 50


# =============================================================================
# Conservative defaults
# =============================================================================

class TestInsufficientData:

    def test_no_baseline(self, drift_current) -> None:
        assessment = classify(DRIFT_CONFIG, 'team-1', drift_current, None, PERIOD_START, PERIOD_END)

        assert assessment.baseline_established is False
        assert assessment.state == 'Stable'
        assert assessment.score == 0
        assert assessment.explanation == BASELINE_PENDING_EXPLANATION
        assert assessment.confidence is None

    def test_no_current_values(self, established_baseline) -> None:
        assessment = classify(DRIFT_CONFIG, 'team-1', {}, established_baseline, PERIOD_START, PERIOD_END)

        assert assessment.baseline_established is True
        assert assessment.state == 'Stable'
        assert assessment.explanation == NO_SIGNAL_EXPLANATION

    def test_zero_baseline_signal_is_neutral(self) -> None:
        baseline = make_baseline({'meeting_hours': 0.0, 'after_hours_rate': 10.0})
        current = {'meeting_hours': 12.0, 'after_hours_rate': 10.0}

        assessment = classify(DRIFT_CONFIG, 'team-1', current, baseline, PERIOD_START, PERIOD_END)

        meeting = next(s for s in assessment.signals if s.signal == 'meeting_hours')
        assert meeting.percent_change is None
        assert meeting.direction == SignalDirection.NEUTRAL
        assert assessment.negative_count == 0


# =============================================================================
# Monotonicity
# =============================================================================

class TestMonotonicity:

    @pytest.mark.parametrize('config', [DRIFT_CONFIG, COORDINATION_LOAD_CONFIG, CAPACITY_CONFIG])
    def test_worsening_meeting_load_never_lowers_score(
        self, config, established_baseline, drift_baseline_means
    ) -> None:
        scores = []
        ranks = []
        labels = [label for _, label in config.state_bands]

        for meeting_hours in (15.0, 16.0, 17.0, 18.5, 20.0, 23.0, 30.0, 45.0):
            current = dict(drift_baseline_means, meeting_hours=meeting_hours, after_hours_rate=14.0)
            assessment = classify(
                config, 'team-1', current, established_baseline, PERIOD_START, PERIOD_END
            )
            scores.append(assessment.score)
            ranks.append(labels.index(assessment.state))

        assert scores == sorted(scores)
        assert ranks == sorted(ranks)
