"""
Tests for intervention actions (teampulse/services/interventions.py).

Test Classes:
- TestSelectActionTemplate: decision table lookup and fallbacks
- TestGenerateAction: when a strained week yields a suggestion
- TestActivateAction: suggested -> active with its experiment
- TestDismissAction: suggested -> dismissed
"""

from datetime import date, datetime, timezone
from typing import Any, Dict
from unittest.mock import AsyncMock, Mock, patch

import asyncpg
import pytest

from teampulse.models.enums import (
    ActionStatus,
    Confidence,
    DominantRisk,
    RiskType,
    TeamHealthState,
)
from teampulse.models.schemas import Experiment, RiskDriver, TeamState
from teampulse.services.interventions import (
    FALLBACK_ACTIONS,
    ActionNotFoundError,
    ActionStateError,
    activate_action,
    dismiss_action,
    generate_action,
    select_action_template,
)
from teampulse.tests.factories import make_risk


MODULE = 'teampulse.services.interventions'

WEEK = date(2025, 3, 10)


def _driver(metric: str, weight: float, deviation: float) -> RiskDriver:
    return RiskDriver(metric=metric, contribution_weight=weight, deviation=deviation, explanation='')


def _action_row(status: str = 'suggested', **overrides: Any) -> Dict[str, Any]:
    row = {
        'id': 'action-1',
        'team_id': 'team-1',
        'created_week': WEEK,
        'linked_risk': 'overload',
        'top_driver': 'meeting_hours',
        'title': 'Reduce meeting frequency by 20%',
        'rationale': 'Meeting load is significantly higher than baseline.',
        'status': status,
        'duration_weeks': 2,
        'activated_by': None,
        'activated_at': None,
        'dismissed_by': None,
        'dismissed_at': None,
        'dismissal_reason': None,
        'created_at': datetime(2025, 3, 10, 6, 0, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


def _state(state: TeamHealthState, dominant: DominantRisk) -> TeamState:
    return TeamState(
        team_id='team-1',
        week_start=WEEK,
        state=state,
        dominant_risk=dominant,
        confidence=Confidence.HIGH,
    )


# =============================================================================
# Decision table
# =============================================================================

class TestSelectActionTemplate:

    def test_top_driver_by_weighted_deviation(self) -> None:
        drivers = [
            _driver('after_hours_rate', 0.35, 0.2),
            _driver('meeting_hours', 0.30, 0.6),
        ]

        template, top_driver = select_action_template(RiskType.OVERLOAD, drivers)

        assert top_driver == 'meeting_hours'
        assert template.title == 'Reduce meeting frequency by 20%'
        assert template.duration_weeks == 2

    def test_quiet_hours_run_three_weeks(self) -> None:
        template, _ = select_action_template(
            RiskType.OVERLOAD, [_driver('after_hours_rate', 0.35, 0.5)]
        )

        assert template.duration_weeks == 3

    def test_no_drivers_falls_back(self) -> None:
        template, top_driver = select_action_template(RiskType.EXECUTION, [])

        assert top_driver is None
        assert template == FALLBACK_ACTIONS[RiskType.EXECUTION]

    def test_driver_without_entry_falls_back(self) -> None:
        template, top_driver = select_action_template(
            RiskType.RETENTION_STRAIN, [_driver('after_hours_rate', 0.4, 0.5)]
        )

        assert top_driver == 'after_hours_rate'
        assert template.title == 'Manager 1:1 check-ins on workload and sustainability'


# =============================================================================
# Generation
# =============================================================================

class TestGenerateAction:

    @pytest.mark.asyncio
    async def test_healthy_week_generates_nothing(self) -> None:
        pool = AsyncMock()

        with patch(f'{MODULE}.get_db_pool', new=pool):
            action = await generate_action(
                'team-1', WEEK, _state(TeamHealthState.HEALTHY, DominantRisk.NONE), []
            )

        assert action is None
        pool.assert_not_called()

    @pytest.mark.asyncio
    async def test_green_dominant_risk_generates_nothing(self) -> None:
        risks = [make_risk(RiskType.OVERLOAD, 20)]

        action = await generate_action(
            'team-1', WEEK, _state(TeamHealthState.STRAINED, DominantRisk.OVERLOAD), risks
        )

        assert action is None

    @pytest.mark.asyncio
    async def test_active_action_blocks_generation(self, mock_db_pool) -> None:
        risks = [make_risk(RiskType.OVERLOAD, 70)]

        with patch(f'{MODULE}.get_active_action', new=AsyncMock(return_value=Mock())), \
                patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            action = await generate_action(
                'team-1', WEEK, _state(TeamHealthState.OVERLOADED, DominantRisk.OVERLOAD), risks
            )

        assert action is None
        mock_db_pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_generates_suggested_action(self, mock_db_pool, mock_conn) -> None:
        # Arrange
        risks = [make_risk(RiskType.OVERLOAD, 70, drivers=[_driver('meeting_hours', 0.30, 0.8)])]
        mock_conn.fetchrow.return_value = _action_row()

        # Act
        with patch(f'{MODULE}.get_active_action', new=AsyncMock(return_value=None)), \
                patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            action = await generate_action(
                'team-1', WEEK, _state(TeamHealthState.OVERLOADED, DominantRisk.OVERLOAD), risks
            )

        # Assert
        assert action.status == ActionStatus.SUGGESTED
        sql, *args = mock_conn.fetchrow.call_args[0]
        assert 'ON CONFLICT (team_id, created_week) DO NOTHING' in sql
        assert args[1:6] == [
            'team-1', WEEK, 'overload', 'meeting_hours', 'Reduce meeting frequency by 20%'
        ]
        assert args[7] == 'suggested'

    @pytest.mark.asyncio
    async def test_rerun_returns_existing_week_action(self, mock_db_pool, mock_conn) -> None:
        risks = [make_risk(RiskType.OVERLOAD, 70, drivers=[_driver('meeting_hours', 0.30, 0.8)])]
        mock_conn.fetchrow.side_effect = [None, _action_row(id='action-existing')]

        with patch(f'{MODULE}.get_active_action', new=AsyncMock(return_value=None)), \
                patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            action = await generate_action(
                'team-1', WEEK, _state(TeamHealthState.OVERLOADED, DominantRisk.OVERLOAD), risks
            )

        assert action.id == 'action-existing'
        assert mock_conn.fetchrow.await_count == 2


# =============================================================================
# Lifecycle
# =============================================================================

class TestActivateAction:

    @pytest.fixture
    def experiment(self) -> Experiment:
        return Experiment(
            id='exp-1',
            action_id='action-1',
            team_id='team-1',
            start_date=WEEK,
            end_date=date(2025, 3, 24),
            hypothesis='',
        )

    @pytest.mark.asyncio
    async def test_activation_starts_experiment(self, mock_db_pool, mock_conn, experiment) -> None:
        # Arrange
        activated = _action_row('active', activated_by='lead@example.com')
        mock_conn.fetchrow.side_effect = [_action_row(), activated]
        mock_conn.fetchval.return_value = None
        snapshot = AsyncMock(return_value=[])
        start = AsyncMock(return_value=experiment)

        # Act
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)), \
                patch(f'{MODULE}.capture_metric_snapshot', new=snapshot), \
                patch(f'{MODULE}.start_experiment', new=start):
            action, started = await activate_action('action-1', 'lead@example.com', start_date=WEEK)

        # Assert
        assert action.status == ActionStatus.ACTIVE
        assert started is experiment
        mock_conn.transaction.assert_called_once()
        # Pre-metrics cover the week before the start date
        assert snapshot.call_args[0][2] == date(2025, 3, 9)
        assert start.call_args[0][0] is mock_conn

    @pytest.mark.asyncio
    async def test_snapshot_taken_between_connections(self, mock_db_pool, mock_conn, experiment) -> None:
        mock_conn.fetchrow.side_effect = [_action_row(), _action_row('active')]
        acquire_context = mock_db_pool.acquire.return_value
        held = []

        async def snapshot(*args):
            held.append(acquire_context.__aenter__.await_count - acquire_context.__aexit__.await_count)
            return []

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)), \
                patch(f'{MODULE}.capture_metric_snapshot', new=snapshot), \
                patch(f'{MODULE}.start_experiment', new=AsyncMock(return_value=experiment)):
            await activate_action('action-1', 'lead@example.com', start_date=WEEK)

        assert held == [0]
        assert mock_db_pool.acquire.call_count == 2

    @pytest.mark.asyncio
    async def test_missing_action(self, mock_db_pool) -> None:
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with pytest.raises(ActionNotFoundError):
                await activate_action('missing', 'lead@example.com')

    @pytest.mark.asyncio
    async def test_only_suggested_can_be_activated(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.return_value = _action_row('dismissed')

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with pytest.raises(ActionStateError, match='only suggested'):
                await activate_action('action-1', 'lead@example.com')

    @pytest.mark.asyncio
    async def test_second_active_action_rejected(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.return_value = _action_row()
        mock_conn.fetchval.return_value = 'action-0'
        snapshot = AsyncMock(return_value=[])

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)), \
                patch(f'{MODULE}.capture_metric_snapshot', new=snapshot):
            with pytest.raises(ActionStateError, match='already has an active action'):
                await activate_action('action-1', 'lead@example.com')

        snapshot.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_activation_hits_unique_index(
        self, mock_db_pool, mock_conn, experiment
    ) -> None:
        mock_conn.fetchrow.side_effect = [_action_row(), _action_row('active')]
        mock_conn.fetchval.return_value = None
        start = AsyncMock(side_effect=asyncpg.UniqueViolationError('team_action_one_active'))

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)), \
                patch(f'{MODULE}.capture_metric_snapshot', new=AsyncMock(return_value=[])), \
                patch(f'{MODULE}.start_experiment', new=start):
            with pytest.raises(ActionStateError):
                await activate_action('action-1', 'lead@example.com', start_date=WEEK)

    @pytest.mark.asyncio
    async def test_lost_race_on_status(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.side_effect = [_action_row(), None]
        mock_conn.fetchval.return_value = None

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)), \
                patch(f'{MODULE}.capture_metric_snapshot', new=AsyncMock(return_value=[])):
            with pytest.raises(ActionStateError, match='no longer suggested'):
                await activate_action('action-1', 'lead@example.com', start_date=WEEK)


class TestDismissAction:

    @pytest.mark.asyncio
    async def test_dismiss_suggested(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.return_value = _action_row(
            'dismissed', dismissed_by='lead@example.com', dismissal_reason='Not now'
        )

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            action = await dismiss_action('action-1', 'lead@example.com', 'Not now')

        assert action.status == ActionStatus.DISMISSED
        assert action.dismissal_reason == 'Not now'
        assert "status = 'suggested'" in mock_conn.fetchrow.call_args[0][0]

    @pytest.mark.asyncio
    async def test_dismiss_active_rejected(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchval.return_value = 'active'

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with pytest.raises(ActionStateError, match='is active'):
                await dismiss_action('action-1', 'lead@example.com')

    @pytest.mark.asyncio
    async def test_dismiss_missing(self, mock_db_pool) -> None:
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with pytest.raises(ActionNotFoundError):
                await dismiss_action('missing', 'lead@example.com')
