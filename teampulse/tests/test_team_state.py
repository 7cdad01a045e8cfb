"""
Tests for the weekly team-state machine (teampulse/services/team_state.py).

Test Classes:
- TestStateRules: breaking / overloaded / strained / healthy precedence
- TestHysteresis: breaking needs two consecutive red execution weeks
- TestConfidence: aggregation across the three risks
- TestStateStorage: upserts and the previous-week lookup
"""

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from teampulse.models.enums import Confidence, DominantRisk, RiskType, TeamHealthState
from teampulse.models.schemas import TeamState
from teampulse.services.team_state import (
    STATE_SUMMARIES,
    STRAINED_SUMMARIES,
    determine_team_state,
    get_previous_execution_score,
    get_team_state,
    persist_team_state,
)
from teampulse.tests.factories import make_risk


MODULE = 'teampulse.services.team_state'

WEEK = date(2025, 3, 10)


def _risks(overload: int, execution: int, retention: int, confidence=Confidence.HIGH):
    return [
        make_risk(RiskType.OVERLOAD, overload, confidence=confidence),
        make_risk(RiskType.EXECUTION, execution, confidence=confidence),
        make_risk(RiskType.RETENTION_STRAIN, retention, confidence=confidence),
    ]


class TestStateRules:

    def test_healthy_when_all_green(self) -> None:
        state = determine_team_state('team-1', WEEK, _risks(10, 20, 34), None)

        assert state.state == TeamHealthState.HEALTHY
        assert state.dominant_risk == DominantRisk.NONE
        assert state.summary == STATE_SUMMARIES[TeamHealthState.HEALTHY]

    def test_no_risks_is_healthy_with_low_confidence(self) -> None:
        state = determine_team_state('team-1', WEEK, [], None)

        assert state.state == TeamHealthState.HEALTHY
        assert state.confidence == Confidence.LOW

    def test_overloaded_at_sixty_five(self) -> None:
        state = determine_team_state('team-1', WEEK, _risks(65, 40, 10), None)

        assert state.state == TeamHealthState.OVERLOADED
        assert state.dominant_risk == DominantRisk.OVERLOAD

    def test_strained_takes_highest_risk_as_dominant(self) -> None:
        state = determine_team_state('team-1', WEEK, _risks(20, 30, 40), None)

        assert state.state == TeamHealthState.STRAINED
        assert state.dominant_risk == DominantRisk.RETENTION_STRAIN
        assert state.summary == STRAINED_SUMMARIES[DominantRisk.RETENTION_STRAIN]

    def test_strained_at_yellow_boundary(self) -> None:
        state = determine_team_state('team-1', WEEK, _risks(35, 0, 0), None)

        assert state.state == TeamHealthState.STRAINED
        assert state.dominant_risk == DominantRisk.OVERLOAD

    def test_breaking_outranks_overloaded(self) -> None:
        state = determine_team_state('team-1', WEEK, _risks(90, 80, 50), previous_execution_score=70)

        assert state.state == TeamHealthState.BREAKING
        assert state.dominant_risk == DominantRisk.EXECUTION
        assert state.summary == STATE_SUMMARIES[TeamHealthState.BREAKING]


class TestHysteresis:

    def test_two_red_weeks_break(self) -> None:
        state = determine_team_state('team-1', WEEK, _risks(10, 70, 10), previous_execution_score=65)

        assert state.state == TeamHealthState.BREAKING

    @pytest.mark.parametrize('previous', [None, 0, 64])
    def test_single_red_week_is_only_strained(self, previous) -> None:
        state = determine_team_state('team-1', WEEK, _risks(10, 70, 10), previous_execution_score=previous)

        assert state.state == TeamHealthState.STRAINED
        assert state.dominant_risk == DominantRisk.EXECUTION
        assert state.summary == STRAINED_SUMMARIES[DominantRisk.EXECUTION]

    def test_red_last_week_alone_does_not_break(self) -> None:
        state = determine_team_state('team-1', WEEK, _risks(10, 64, 10), previous_execution_score=90)

        assert state.state == TeamHealthState.STRAINED


class TestConfidence:

    def test_all_high(self) -> None:
        state = determine_team_state('team-1', WEEK, _risks(10, 10, 10), None)

        assert state.confidence == Confidence.HIGH

    def test_any_low_is_low(self) -> None:
        risks = _risks(10, 10, 10)
        risks[1] = make_risk(RiskType.EXECUTION, 10, confidence=Confidence.LOW)

        state = determine_team_state('team-1', WEEK, risks, None)

        assert state.confidence == Confidence.LOW

    def test_mixed_high_and_medium_is_medium(self) -> None:
        risks = _risks(10, 10, 10)
        risks[2] = make_risk(RiskType.RETENTION_STRAIN, 10, confidence=Confidence.MEDIUM)

        state = determine_team_state('team-1', WEEK, risks, None)

        assert state.confidence == Confidence.MEDIUM


class TestStateStorage:

    @pytest.mark.asyncio
    async def test_persist_is_upsert(self, mock_db_pool, mock_conn) -> None:
        team_state = TeamState(
            team_id='team-1',
            week_start=WEEK,
            state=TeamHealthState.STRAINED,
            dominant_risk=DominantRisk.EXECUTION,
            confidence=Confidence.MEDIUM,
            summary=STRAINED_SUMMARIES[DominantRisk.EXECUTION],
        )

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            await persist_team_state(team_state)

        sql, *args = mock_conn.execute.call_args[0]
        assert 'ON CONFLICT (team_id, week_start) DO UPDATE' in sql
        assert args[:5] == ['team-1', WEEK, 'strained', 'execution', 'medium']

    @pytest.mark.asyncio
    async def test_previous_execution_score_reads_prior_week(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchval.return_value = 72

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            score = await get_previous_execution_score('team-1', WEEK)

        assert score == 72
        args = mock_conn.fetchval.call_args[0]
        assert args[2] == date(2025, 3, 3)
        assert args[3] == 'execution'

    @pytest.mark.asyncio
    async def test_previous_week_not_scored(self, mock_db_pool) -> None:
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            assert await get_previous_execution_score('team-1', WEEK) is None

    @pytest.mark.asyncio
    async def test_missing_state(self, mock_db_pool) -> None:
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            assert await get_team_state('team-1') is None
