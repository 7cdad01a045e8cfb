"""
Tests for weekly risk scoring (teampulse/services/risk.py).

Test Classes:
- TestDeviationHelpers: clamped relative deviation, trend slope, bands
- TestOverloadRisk: weighted point deviations against the baseline
- TestExecutionRisk: inverted participation and focus contributions
- TestRetentionStrainRisk: three-week trend slopes
- TestRiskStorage: weekly computation, upserts and per-type history
"""

import json
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from teampulse.models.enums import (
    BaselineStatus,
    Confidence,
    RiskBand,
    RiskType,
)
from teampulse.services.risk import (
    GREEN_EXPLANATIONS,
    calculate_deviation,
    calculate_trend_slope,
    compute_execution_risk,
    compute_overload_risk,
    compute_retention_strain_risk,
    compute_weekly_risks,
    determine_risk_confidence,
    get_risk_band,
    get_risk_history,
    get_risk_scores,
    persist_risk_scores,
    risk_metrics,
)
from teampulse.tests.factories import make_baseline, make_risk


MODULE = 'teampulse.services.risk'

WEEK = date(2025, 3, 10)


# =============================================================================
# Helpers
# =============================================================================

class TestDeviationHelpers:

    def test_deviation_is_relative(self) -> None:
        assert calculate_deviation(16.0, 10.0) == pytest.approx(0.6)

    def test_higher_is_better_inverts(self) -> None:
        assert calculate_deviation(0.3, 0.5, higher_is_better=True) == pytest.approx(0.4)
        assert calculate_deviation(0.75, 0.5, higher_is_better=True) == pytest.approx(-0.5)

    def test_deviation_is_clamped(self) -> None:
        assert calculate_deviation(50.0, 10.0) == 1.0
        assert calculate_deviation(0.0, 10.0) == -1.0

    def test_missing_or_zero_baseline(self) -> None:
        assert calculate_deviation(None, 10.0) == 0.0
        assert calculate_deviation(5.0, None) == 0.0
        assert calculate_deviation(5.0, 0.0) == 0.0

    def test_trend_slope_is_normalized_by_mean(self) -> None:
        # slope 1 per day, mean 3
        assert calculate_trend_slope([1.0, 2.0, 3.0, 4.0, 5.0]) == pytest.approx(1 / 3)

    def test_trend_slope_edge_cases(self) -> None:
        assert calculate_trend_slope([10.0, 10.0, 10.0]) == pytest.approx(0.0)
        assert calculate_trend_slope([5.0]) == 0.0
        assert calculate_trend_slope([]) == 0.0
        assert calculate_trend_slope([0.0, 0.0]) == 0.0
        assert calculate_trend_slope([1.0, 100.0]) == 1.0

    def test_trend_slope_skips_missing_days(self) -> None:
        assert calculate_trend_slope([1.0, None, 2.0, 3.0]) == pytest.approx(0.5)

    @pytest.mark.parametrize(
        'score, band',
        [
            (0, RiskBand.GREEN),
            (34, RiskBand.GREEN),
            (35, RiskBand.YELLOW),
            (64, RiskBand.YELLOW),
            (65, RiskBand.RED),
            (100, RiskBand.RED),
        ],
    )
    def test_bands(self, score, band) -> None:
        assert get_risk_band(score) == band

    def test_confidence_from_baseline(self, established_baseline) -> None:
        calibrating = make_baseline({'meeting_hours': 15.0}, status=BaselineStatus.CALIBRATING)

        assert determine_risk_confidence(None) == Confidence.LOW
        assert determine_risk_confidence(established_baseline) == Confidence.HIGH
        assert determine_risk_confidence(calibrating) == Confidence.MEDIUM

    def test_risk_metrics_are_unique(self) -> None:
        metrics = risk_metrics()

        assert len(metrics) == len(set(metrics)) == 7
        assert 'focus_time_ratio' in metrics


# =============================================================================
# Composites
# =============================================================================

class TestOverloadRisk:

    def test_weighted_sum(self, established_baseline, drift_baseline_means) -> None:
        # Arrange: after-hours +40%, meetings +40%, back-to-back +50%, focus -20%
        current = dict(
            drift_baseline_means,
            after_hours_rate=14.0,
            meeting_hours=21.0,
            back_to_back_meetings=6.0,
            focus_time_ratio=0.4,
        )

        # Act
        risk = compute_overload_risk('team-1', WEEK, current, established_baseline)

        # Assert: 0.35*0.4 + 0.30*0.4 + 0.20*0.5 + 0.15*0.2 = 0.39
        assert risk.risk_type == RiskType.OVERLOAD
        assert risk.score == 39
        assert risk.band == RiskBand.YELLOW
        assert risk.confidence == Confidence.HIGH
        assert [d.metric for d in risk.drivers] == [
            'after_hours_rate', 'meeting_hours', 'back_to_back_meetings', 'focus_time_ratio'
        ]
        assert risk.drivers[3].explanation == 'Focus time is 20% lower than baseline'
        assert risk.explanation == (
            'After-hours activity is 40% higher than baseline. '
            'Meeting load is 40% higher than baseline.'
        )

    def test_fully_adverse_week_is_capped_red(self, established_baseline, drift_baseline_means) -> None:
        current = dict(
            drift_baseline_means,
            after_hours_rate=30.0,
            meeting_hours=45.0,
            back_to_back_meetings=12.0,
            focus_time_ratio=0.0,
        )

        risk = compute_overload_risk('team-1', WEEK, current, established_baseline)

        assert risk.score == 100
        assert risk.band == RiskBand.RED

    def test_favorable_deviations_do_not_offset(self, established_baseline, drift_baseline_means) -> None:
        current = dict(drift_baseline_means, after_hours_rate=5.0, meeting_hours=21.0)

        risk = compute_overload_risk('team-1', WEEK, current, established_baseline)

        # Only meetings count: 0.30 * 0.4
        assert risk.score == 12
        assert risk.band == RiskBand.GREEN
        assert [d.metric for d in risk.drivers] == ['meeting_hours']
        assert risk.explanation == GREEN_EXPLANATIONS[RiskType.OVERLOAD]

    def test_no_baseline_scores_zero_with_low_confidence(self, drift_baseline_means) -> None:
        current = dict(drift_baseline_means, meeting_hours=45.0)

        risk = compute_overload_risk('team-1', WEEK, current, None)

        assert risk.score == 0
        assert risk.confidence == Confidence.LOW
        assert risk.drivers == []


class TestExecutionRisk:

    def test_red_at_sixty_five(self, established_baseline, drift_baseline_means) -> None:
        # response +100%, participation -50%, fragmentation +50%, focus -50%
        current = dict(
            drift_baseline_means,
            response_time_hours=8.0,
            unique_contacts=10.0,
            meeting_fragmentation=4.5,
            focus_time_ratio=0.25,
        )

        risk = compute_execution_risk('team-1', WEEK, current, established_baseline)

        assert risk.risk_type == RiskType.EXECUTION
        assert risk.score == 65
        assert risk.band == RiskBand.RED
        assert risk.drivers[0].metric == 'response_time_hours'
        assert risk.drivers[0].explanation == 'Response time is 100% higher than baseline'

    def test_baseline_week_is_green(self, established_baseline, drift_baseline_means) -> None:
        risk = compute_execution_risk('team-1', WEEK, drift_baseline_means, established_baseline)

        assert risk.score == 0
        assert risk.band == RiskBand.GREEN
        assert risk.explanation == GREEN_EXPLANATIONS[RiskType.EXECUTION]


class TestRetentionStrainRisk:

    def test_sustained_rise_in_all_series(self, established_baseline) -> None:
        series = {
            'after_hours_rate': [1.0, 3.0],
            'meeting_hours': [1.0, 3.0],
            'response_time_hours': [1.0, 3.0],
        }

        risk = compute_retention_strain_risk('team-1', WEEK, series, established_baseline)

        assert risk.score == 100
        assert risk.band == RiskBand.RED
        assert [d.metric for d in risk.drivers] == [
            'after_hours_rate', 'meeting_hours', 'response_time_hours'
        ]
        assert risk.explanation == (
            'After-hours activity has been strongly increasing over the past 3 weeks. '
            'Meeting load has been strongly increasing over the past 3 weeks.'
        )

    def test_gradual_rise_in_one_series(self, established_baseline) -> None:
        series = {'after_hours_rate': [4.0, 5.0, 6.0, 7.0, 8.0]}

        risk = compute_retention_strain_risk('team-1', WEEK, series, established_baseline)

        # 0.40 * (1/6)
        assert risk.score == 7
        assert risk.band == RiskBand.GREEN
        assert risk.drivers[0].deviation == pytest.approx(0.1667)
        assert risk.drivers[0].explanation == (
            'After-hours activity has been gradually increasing over the past 3 weeks'
        )

    def test_slope_above_strong_threshold(self, established_baseline) -> None:
        series = {'after_hours_rate': [1.0, 2.0, 3.0, 4.0, 5.0]}

        risk = compute_retention_strain_risk('team-1', WEEK, series, established_baseline)

        # 0.40 * (1/3)
        assert risk.score == 13
        assert risk.drivers[0].explanation == (
            'After-hours activity has been strongly increasing over the past 3 weeks'
        )

    def test_falling_series_scores_zero(self, established_baseline) -> None:
        series = {metric: [5.0, 4.0, 3.0] for metric in ('after_hours_rate', 'meeting_hours')}

        risk = compute_retention_strain_risk('team-1', WEEK, series, established_baseline)

        assert risk.score == 0
        assert risk.drivers == []


# =============================================================================
# Weekly computation and storage
# =============================================================================

class TestRiskStorage:

    @pytest.mark.asyncio
    async def test_compute_weekly_risks_uses_prefetched_averages(
        self, established_baseline, drift_baseline_means
    ) -> None:
        averages = AsyncMock()
        series = AsyncMock(return_value={})

        with patch(f'{MODULE}.get_trailing_averages', new=averages), \
                patch(f'{MODULE}.get_daily_series', new=series):
            risks = await compute_weekly_risks(
                'team-1', WEEK, date(2025, 3, 9), established_baseline, drift_baseline_means
            )

        assert [r.risk_type for r in risks] == [
            RiskType.OVERLOAD, RiskType.EXECUTION, RiskType.RETENTION_STRAIN
        ]
        assert all(r.week_start == WEEK for r in risks)
        averages.assert_not_called()
        series.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_compute_weekly_risks_fetches_averages(self, established_baseline) -> None:
        averages = AsyncMock(return_value={})

        with patch(f'{MODULE}.get_trailing_averages', new=averages), \
                patch(f'{MODULE}.get_daily_series', new=AsyncMock(return_value={})):
            risks = await compute_weekly_risks('team-1', WEEK, date(2025, 3, 9), established_baseline)

        averages.assert_awaited_once()
        assert averages.call_args[0][1] == date(2025, 3, 9)
        assert all(r.score == 0 for r in risks)

    @pytest.mark.asyncio
    async def test_persist_upserts_in_one_transaction(self, mock_db_pool, mock_conn) -> None:
        # Arrange
        scores = [make_risk(RiskType.OVERLOAD, 70), make_risk(RiskType.EXECUTION, 20)]

        # Act
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            written = await persist_risk_scores(scores)

        # Assert
        assert written == 2
        mock_conn.transaction.assert_called_once()
        assert mock_conn.execute.await_count == 2
        sql, *args = mock_conn.execute.call_args_list[0][0]
        assert 'ON CONFLICT (team_id, week_start, risk_type) DO UPDATE' in sql
        assert args[:6] == ['team-1', WEEK, 'overload', 70, 'red', 'high']
        assert json.loads(args[6]) == []

    @pytest.mark.asyncio
    async def test_persist_nothing(self) -> None:
        pool = AsyncMock()

        with patch(f'{MODULE}.get_db_pool', new=pool):
            assert await persist_risk_scores([]) == 0

        pool.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_scored_week(self, mock_db_pool, mock_conn) -> None:
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            assert await get_risk_scores('team-1') == []

        mock_conn.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_rows_decode_drivers(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetch.return_value = [{
            'team_id': 'team-1',
            'week_start': WEEK,
            'risk_type': 'overload',
            'score': 70,
            'band': 'red',
            'confidence': 'high',
            'drivers': json.dumps([{
                'metric': 'meeting_hours',
                'contribution_weight': 0.3,
                'deviation': 0.8,
                'explanation': 'Meeting load is 80% higher than baseline',
            }]),
            'explanation': 'Meeting load is 80% higher than baseline.',
        }]

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            scores = await get_risk_scores('team-1', WEEK)

        assert scores[0].risk_type == RiskType.OVERLOAD
        assert scores[0].drivers[0].metric == 'meeting_hours'

    @pytest.mark.asyncio
    async def test_history_filters_by_risk_type(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetch.return_value = [{
            'team_id': 'team-1',
            'week_start': WEEK,
            'risk_type': 'execution',
            'score': 20,
            'band': 'green',
            'confidence': 'medium',
            'drivers': json.dumps([]),
            'explanation': GREEN_EXPLANATIONS[RiskType.EXECUTION],
        }]

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            history = await get_risk_history('team-1', RiskType.EXECUTION, weeks=4)

        sql, *args = mock_conn.fetch.call_args.args
        assert 'ORDER BY week_start DESC' in sql
        assert args == ['team-1', 'execution', 4]
        assert [s.band for s in history] == [RiskBand.GREEN]
