"""
Tests for time pattern detection module.

Tests cover:
- Weekly, daily and monthly routines
- Tolerance and minimum occurrences
- Descriptions and next-occurrence prediction
"""

import pytest
from datetime import datetime, timedelta, timezone

from sop_pattern_engine.config import TimePatternOptions
from sop_pattern_engine.models import SequencePattern, TimePattern, TimePatternType
from sop_pattern_engine.timing.time_pattern_detector import (
    TimePatternDetector,
    day_of_week,
    detect_time_patterns,
    ordinal_suffix,
)


# 2026-01-05 is a Monday
FIRST_MONDAY = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def make_pattern(timestamps, sequence=None, users=None):
    sequence = sequence or ['agent:brand', 'tool:notion', 'agent:finance']
    return SequencePattern(
        id='SEQ-TEST',
        sequence=sequence,
        frequency=len(timestamps),
        users=users or ['u1', 'u2'],
        avg_duration=120.0,
        first_seen=min(timestamps),
        last_seen=max(timestamps),
        confidence=min(len(timestamps) / 10, 1.0),
        occurrence_timestamps=sorted(timestamps),
    )


@pytest.fixture
def detector():
    return TimePatternDetector(TimePatternOptions(min_occurrences=3, tolerance_hours=2))


class TestDayOfWeek:
    """Tests for day numbering helpers."""

    def test_sunday_is_zero(self):
        assert day_of_week(datetime(2026, 1, 4, tzinfo=timezone.utc)) == 0
        assert day_of_week(FIRST_MONDAY) == 1
        assert day_of_week(datetime(2026, 1, 10, tzinfo=timezone.utc)) == 6

    @pytest.mark.parametrize("n,suffix", [
        (1, 'st'), (2, 'nd'), (3, 'rd'), (4, 'th'), (11, 'th'), (12, 'th'),
        (13, 'th'), (21, 'st'), (22, 'nd'), (23, 'rd'), (31, 'st'),
    ])
    def test_ordinal_suffix(self, n, suffix):
        assert ordinal_suffix(n) == suffix


class TestWeeklyRoutine:
    """Tests for a routine recurring every Monday morning."""

    def test_six_mondays(self, detector):
        timestamps = [FIRST_MONDAY + timedelta(weeks=i) for i in range(6)]
        pattern = make_pattern(timestamps)

        results = detector.detect([(pattern, timestamps)])

        assert len(results) == 1
        time_pattern = results[0]
        assert time_pattern.type == TimePatternType.WEEKLY
        assert time_pattern.day_of_week == 1
        assert time_pattern.day_of_month is None
        assert time_pattern.hour_of_day == 9
        assert time_pattern.minute == 0
        assert time_pattern.occurrences == 6
        assert time_pattern.confidence == pytest.approx(1.0)
        assert time_pattern.description == "Every Monday at 09:00"
        assert time_pattern.action_pattern.id == 'SEQ-TEST'
        assert time_pattern.id.startswith('TIME-')

    def test_jitter_within_tolerance(self, detector):
        jitter = [0, 7, 3, 9, 1, 5]
        timestamps = [
            FIRST_MONDAY + timedelta(weeks=i, minutes=m) for i, m in enumerate(jitter)
        ]
        time_pattern = detector.detect_pattern(make_pattern(timestamps), timestamps)

        assert time_pattern is not None
        assert time_pattern.type == TimePatternType.WEEKLY
        assert time_pattern.occurrences == 6
        assert 3 <= time_pattern.minute <= 5

    def test_outlier_lowers_confidence(self, detector):
        timestamps = [FIRST_MONDAY + timedelta(weeks=i) for i in range(5)]
        timestamps.append(FIRST_MONDAY + timedelta(weeks=5, hours=6))
        time_pattern = detector.detect_pattern(make_pattern(timestamps), timestamps)

        assert time_pattern.occurrences == 5
        assert time_pattern.confidence == pytest.approx(5 / 6)

    def test_id_is_stable(self, detector):
        timestamps = [FIRST_MONDAY + timedelta(weeks=i) for i in range(4)]
        first = detector.detect_pattern(make_pattern(timestamps), timestamps)
        second = detector.detect_pattern(make_pattern(timestamps), timestamps)
        assert first.id == second.id


class TestOtherPeriods:
    """Tests for daily, monthly and irregular timing."""

    def test_daily(self, detector):
        start = datetime(2026, 1, 5, 8, 30, tzinfo=timezone.utc)
        timestamps = [start + timedelta(days=i) for i in range(5)]
        time_pattern = detector.detect_pattern(make_pattern(timestamps), timestamps)

        assert time_pattern.type == TimePatternType.DAILY
        assert time_pattern.day_of_week is None
        assert (time_pattern.hour_of_day, time_pattern.minute) == (8, 30)
        assert time_pattern.description == "Every day at 08:30"

    def test_monthly(self, detector):
        timestamps = [
            datetime(2026, month, 1, 10, 0, tzinfo=timezone.utc) for month in range(1, 5)
        ]
        time_pattern = detector.detect_pattern(make_pattern(timestamps), timestamps)

        assert time_pattern.type == TimePatternType.MONTHLY
        assert time_pattern.day_of_month == 1
        assert time_pattern.description == "Every month on the 1st at 10:00"

    def test_quarterly(self, detector):
        timestamps = [
            datetime(2025, month, 15, 14, 0, tzinfo=timezone.utc) for month in (1, 4, 7, 10)
        ]
        time_pattern = detector.detect_pattern(make_pattern(timestamps), timestamps)

        assert time_pattern.type == TimePatternType.QUARTERLY
        assert time_pattern.day_of_month == 15
        assert time_pattern.description == "Quarterly on day 15 at 14:00"

    def test_irregular_spacing(self, detector):
        start = FIRST_MONDAY
        timestamps = [start + timedelta(hours=h) for h in (0, 60, 120, 180, 240)]
        assert detector.detect_pattern(make_pattern(timestamps), timestamps) is None

    def test_too_few_occurrences(self, detector):
        timestamps = [FIRST_MONDAY, FIRST_MONDAY + timedelta(weeks=1)]
        assert detector.detect([(make_pattern(timestamps), timestamps)]) == []

    def test_scattered_slots_rejected(self):
        detector = TimePatternDetector(TimePatternOptions(min_occurrences=3, tolerance_hours=1))
        # Weekly spacing, but a different hour every week
        timestamps = [FIRST_MONDAY + timedelta(weeks=i, hours=3 * i) for i in range(5)]
        assert detector.detect_pattern(make_pattern(timestamps), timestamps) is None

    def test_duplicate_timestamps_count_once(self, detector):
        timestamps = [FIRST_MONDAY + timedelta(weeks=i) for i in range(3)]
        time_pattern = detector.detect_pattern(make_pattern(timestamps), timestamps * 2)
        assert time_pattern.occurrences == 3

    def test_convenience_function(self):
        timestamps = [FIRST_MONDAY + timedelta(weeks=i) for i in range(3)]
        results = detect_time_patterns([(make_pattern(timestamps), timestamps)])
        assert [r.type for r in results] == [TimePatternType.WEEKLY]


class TestPrediction:
    """Tests for next-occurrence prediction."""

    def _pattern(self, period, **kwargs):
        timestamps = [FIRST_MONDAY]
        values = dict(
            id='TIME-TEST', type=period, description='', hour_of_day=9, minute=0,
            action_pattern=make_pattern(timestamps), occurrences=6, confidence=1.0,
        )
        values.update(kwargs)
        return TimePattern(**values)

    def test_weekly(self, detector):
        pattern = self._pattern(TimePatternType.WEEKLY, day_of_week=1)
        now = datetime(2026, 10, 21, 12, 0, tzinfo=timezone.utc)  # Wednesday
        assert detector.predict_next_occurrence(pattern, now) == datetime(
            2026, 10, 26, 9, 0, tzinfo=timezone.utc
        )

    def test_weekly_strictly_after_now(self, detector):
        pattern = self._pattern(TimePatternType.WEEKLY, day_of_week=1)
        now = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)  # Monday 09:00
        assert detector.predict_next_occurrence(pattern, now) == datetime(
            2026, 10, 26, 9, 0, tzinfo=timezone.utc
        )

    def test_daily(self, detector):
        pattern = self._pattern(TimePatternType.DAILY, hour_of_day=8, minute=30)
        before = datetime(2026, 10, 21, 7, 0, tzinfo=timezone.utc)
        after = datetime(2026, 10, 21, 9, 0, tzinfo=timezone.utc)
        assert detector.predict_next_occurrence(pattern, before) == datetime(
            2026, 10, 21, 8, 30, tzinfo=timezone.utc
        )
        assert detector.predict_next_occurrence(pattern, after) == datetime(
            2026, 10, 22, 8, 30, tzinfo=timezone.utc
        )

    def test_monthly_clamps_to_month_end(self, detector):
        pattern = self._pattern(TimePatternType.MONTHLY, day_of_month=31)
        now = datetime(2026, 2, 10, 0, 0, tzinfo=timezone.utc)
        assert detector.predict_next_occurrence(pattern, now) == datetime(
            2026, 2, 28, 9, 0, tzinfo=timezone.utc
        )

    def test_quarterly_rolls_into_next_quarter(self, detector):
        pattern = self._pattern(TimePatternType.QUARTERLY, day_of_month=1)
        now = datetime(2026, 2, 10, 0, 0, tzinfo=timezone.utc)
        assert detector.predict_next_occurrence(pattern, now) == datetime(
            2026, 4, 1, 9, 0, tzinfo=timezone.utc
        )
