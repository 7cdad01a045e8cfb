"""
Tests for the metrics read interface (teampulse/services/metrics_source.py).

Test Classes:
- TestSampleFrames: row decoding, duplicate days, numeric coercion
- TestRecordSamples: append-only sample writes
- TestActivityWindow: hourly sums and observed-hour counts
"""

import json
from datetime import date, datetime
from unittest.mock import AsyncMock, patch

import pytest

from teampulse.models.schemas import MetricSample
from teampulse.services.metrics_source import (
    fetch_activity_window,
    frame_averages,
    frame_series,
    record_samples,
    samples_to_frame,
)
from teampulse.sql.metric_queries import ACTIVITY_COUNT_COLUMNS


MODULE = 'teampulse.services.metrics_source'


# =============================================================================
# Frames
# =============================================================================

class TestSampleFrames:

    def test_rows_sorted_and_deduplicated_by_day(self) -> None:
        rows = [
            {'sample_date': date(2025, 3, 4), 'metrics': json.dumps({'meeting_hours': 16.0})},
            {'sample_date': date(2025, 3, 3), 'metrics': {'meeting_hours': 14.0}},
            {'sample_date': date(2025, 3, 4), 'metrics': {'meeting_hours': 99.0}},
        ]

        frame = samples_to_frame(rows)

        assert list(frame.index) == [date(2025, 3, 3), date(2025, 3, 4)]
        assert frame_series(frame, 'meeting_hours') == [14.0, 16.0]

    def test_non_numeric_values_are_ignored_in_averages(self) -> None:
        rows = [
            {'sample_date': date(2025, 3, 3), 'metrics': {'meeting_hours': 'n/a'}},
            {'sample_date': date(2025, 3, 4), 'metrics': {'meeting_hours': 12.0}},
        ]

        averages = frame_averages(samples_to_frame(rows), ['meeting_hours', 'unique_contacts'])

        assert averages == {'meeting_hours': 12.0, 'unique_contacts': None}

    def test_empty_rows(self) -> None:
        frame = samples_to_frame([])

        assert frame.empty
        assert frame_series(frame, 'meeting_hours') == []


# =============================================================================
# Sample writes
# =============================================================================

class TestRecordSamples:

    @pytest.mark.asyncio
    async def test_samples_written_in_one_batch(self, mock_db_pool, mock_conn) -> None:
        samples = [
            MetricSample(team_id='team-1', sample_date=date(2025, 3, 3), metrics={'meeting_hours': 15.0}),
            MetricSample(team_id='team-1', sample_date=date(2025, 3, 4), metrics={'meeting_hours': 16.5}),
        ]

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            submitted = await record_samples(samples)

        assert submitted == 2
        sql, params = mock_conn.executemany.call_args.args
        assert 'ON CONFLICT (team_id, sample_date) DO NOTHING' in sql
        assert params[1] == ('team-1', date(2025, 3, 4), json.dumps({'meeting_hours': 16.5}))

    @pytest.mark.asyncio
    async def test_nothing_to_write(self) -> None:
        pool = AsyncMock()

        with patch(f'{MODULE}.get_db_pool', new=pool):
            assert await record_samples([]) == 0

        pool.assert_not_called()


# =============================================================================
# Hourly activity
# =============================================================================

class TestActivityWindow:

    @pytest.mark.asyncio
    async def test_sums_and_observed_hours(self, mock_db_pool, mock_conn) -> None:
        row = {column: 0 for column in ACTIVITY_COUNT_COLUMNS}
        row.update({'message_count': 420, 'sentiment_score': None, 'hours_observed': 36})
        mock_conn.fetchrow.return_value = row

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            activity = await fetch_activity_window(
                'team-1', datetime(2025, 3, 3), datetime(2025, 3, 4, 12)
            )

        assert activity['message_count'] == 420.0
        assert activity['negative_reactions'] == 0.0
        assert activity['sentiment_score'] is None
        assert activity['hours_observed'] == 36

    @pytest.mark.asyncio
    async def test_no_hourly_rows(self, mock_db_pool, mock_conn) -> None:
        row = {column: 0 for column in ACTIVITY_COUNT_COLUMNS}
        row.update({'sentiment_score': None, 'hours_observed': 0})
        mock_conn.fetchrow.return_value = row

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            activity = await fetch_activity_window(
                'team-1', datetime(2025, 3, 3), datetime(2025, 3, 4)
            )

        assert activity is None
