"""
Time Pattern Detection Module.

Detects periodic recurrence of mined action sequences:
- Periodicity from the median spacing between occurrences
  (about a day, a week, a month or a quarter)
- Modal slot (day of week or month, hour, minute) for that period
- Confidence as the share of occurrences within tolerance of the slot

Day of week counts from Sunday (0) to Saturday (6). All times are UTC.
"""

import calendar
import hashlib
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable, List, NamedTuple, Optional, Tuple

import numpy as np
from scipy import stats

from ..config import TimePatternOptions
from ..models import SequencePattern, TimePattern, TimePatternType, ensure_utc, utc_now

logger = logging.getLogger(__name__)


DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


def day_of_week(moment: datetime) -> int:
    """Day of week with Sunday = 0."""
    return (moment.weekday() + 1) % 7


def ordinal_suffix(n: int) -> str:
    if 10 <= n % 100 <= 20:
        return 'th'
    return {1: 'st', 2: 'nd', 3: 'rd'}.get(n % 10, 'th')


class _Slot(NamedTuple):
    day: Optional[int]  # day of week (weekly) or day of month (monthly, quarterly)
    hour: int
    minute: int


class TimePatternDetector:
    """
    Detector for daily, weekly, monthly and quarterly routines.
    """

    # Nominal period length in hours
    PERIOD_HOURS = {
        TimePatternType.DAILY: 24.0,
        TimePatternType.WEEKLY: 24.0 * 7,
        TimePatternType.MONTHLY: 24.0 * 30.44,
        TimePatternType.QUARTERLY: 24.0 * 91.31,
    }

    # Median spacing may deviate this much from the nominal period
    PERIOD_TOLERANCE = 0.25

    def __init__(self, options: Optional[TimePatternOptions] = None):
        self.options = (options or TimePatternOptions()).clamped()

    def detect(
        self,
        patterns_with_timestamps: Iterable[Tuple[SequencePattern, List[datetime]]],
        options: Optional[TimePatternOptions] = None,
    ) -> List[TimePattern]:
        """
        Detect periodic patterns.

        Args:
            patterns_with_timestamps: (pattern, occurrence timestamps) pairs
            options: Overrides the detector's default options

        Returns:
            Time patterns with their descriptions filled in
        """
        opts = options.clamped() if options is not None else self.options
        results = []
        for pattern, timestamps in patterns_with_timestamps:
            time_pattern = self.detect_pattern(pattern, timestamps, opts)
            if time_pattern is not None:
                results.append(time_pattern)
        logger.info(f"Detected {len(results)} time patterns")
        return results

    def detect_pattern(
        self,
        pattern: SequencePattern,
        timestamps: List[datetime],
        options: Optional[TimePatternOptions] = None,
    ) -> Optional[TimePattern]:
        opts = options.clamped() if options is not None else self.options
        times = sorted({ensure_utc(t) for t in timestamps})
        if len(times) < opts.min_occurrences:
            return None

        gaps = np.diff([t.timestamp() for t in times]) / 3600.0
        period = self.classify_period(float(np.median(gaps)))
        if period is None:
            logger.debug(f"No periodicity for {pattern.id} (median gap {np.median(gaps):.1f}h)")
            return None

        slot = self._modal_slot(period, times)
        occurrences = sum(
            1 for t in times if self._slot_distance(period, t, slot) <= opts.tolerance_hours
        )
        confidence = occurrences / len(times)
        if occurrences < opts.min_occurrences or confidence < opts.min_slot_share:
            logger.debug(
                f"No coherent {period.value} slot for {pattern.id} "
                f"({occurrences}/{len(times)} within tolerance)"
            )
            return None

        digest = hashlib.sha256(f"{pattern.id}:{period.value}".encode()).hexdigest()
        time_pattern = TimePattern(
            id=f"TIME-{digest[:12].upper()}",
            type=period,
            description="",
            hour_of_day=slot.hour,
            minute=slot.minute,
            day_of_week=slot.day if period == TimePatternType.WEEKLY else None,
            day_of_month=slot.day if period in (
                TimePatternType.MONTHLY, TimePatternType.QUARTERLY
            ) else None,
            action_pattern=pattern,
            occurrences=occurrences,
            confidence=confidence,
        )
        time_pattern.description = self.describe(time_pattern)
        return time_pattern

    def classify_period(self, median_gap_hours: float) -> Optional[TimePatternType]:
        for period, hours in self.PERIOD_HOURS.items():
            if abs(median_gap_hours - hours) <= hours * self.PERIOD_TOLERANCE:
                return period
        return None

    def _modal_slot(self, period: TimePatternType, times: List[datetime]) -> _Slot:
        if period == TimePatternType.DAILY:
            day = None
            in_day = times
        else:
            day_of = day_of_week if period == TimePatternType.WEEKLY else (lambda t: t.day)
            day = _mode(day_of(t) for t in times)
            in_day = [t for t in times if day_of(t) == day]

        hour = _mode(t.hour for t in in_day)
        minutes = [t.minute for t in in_day if t.hour == hour]
        minute = int(round(stats.circmean(minutes, high=60, low=0))) % 60
        return _Slot(day=day, hour=hour, minute=minute)

    def _slot_distance(self, period: TimePatternType, moment: datetime, slot: _Slot) -> float:
        """Hours between a timestamp and the slot within the period's cycle."""
        clock = moment.hour + moment.minute / 60 + moment.second / 3600
        target = slot.hour + slot.minute / 60

        if period == TimePatternType.DAILY:
            return _circular(clock - target, 24.0)
        if period == TimePatternType.WEEKLY:
            return _circular(
                day_of_week(moment) * 24 + clock - (slot.day * 24 + target), 24.0 * 7
            )
        return abs((moment.day - slot.day) * 24 + clock - target)

    def describe(self, pattern: TimePattern) -> str:
        """Human-readable schedule, e.g. "Every Monday at 09:00"."""
        time_str = f"{pattern.hour_of_day:02d}:{pattern.minute:02d}"
        if pattern.type == TimePatternType.DAILY:
            return f"Every day at {time_str}"
        if pattern.type == TimePatternType.WEEKLY:
            return f"Every {DAY_NAMES[pattern.day_of_week or 0]} at {time_str}"
        if pattern.type == TimePatternType.MONTHLY:
            day = pattern.day_of_month or 1
            return f"Every month on the {day}{ordinal_suffix(day)} at {time_str}"
        return f"Quarterly on day {pattern.day_of_month or 1} at {time_str}"

    def predict_next_occurrence(
        self, pattern: TimePattern, now: Optional[datetime] = None
    ) -> datetime:
        """
        Next time the routine is expected to run, strictly after ``now``.
        """
        now = ensure_utc(now) if now is not None else utc_now()
        hour, minute = pattern.hour_of_day, pattern.minute

        if pattern.type == TimePatternType.DAILY:
            candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
            if candidate <= now:
                candidate += timedelta(days=1)
            return candidate

        if pattern.type == TimePatternType.WEEKLY:
            days_ahead = ((pattern.day_of_week or 0) - day_of_week(now)) % 7
            candidate = (now + timedelta(days=days_ahead)).replace(
                hour=hour, minute=minute, second=0, microsecond=0
            )
            if candidate <= now:
                candidate += timedelta(days=7)
            return candidate

        step = 1 if pattern.type == TimePatternType.MONTHLY else 3
        year, month = now.year, now.month
        if step == 3:
            month = (month - 1) // 3 * 3 + 1
        while True:
            candidate = _on_day(now, year, month, pattern.day_of_month or 1, hour, minute)
            if candidate > now:
                return candidate
            year, month = _add_months(year, month, step)


def _mode(values: Iterable[int]) -> int:
    """Most common value; ties go to the smallest."""
    counts = Counter(values)
    return max(sorted(counts), key=counts.get)


def _circular(delta: float, cycle: float) -> float:
    delta = abs(delta) % cycle
    return min(delta, cycle - delta)


def _add_months(year: int, month: int, n: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + n
    return index // 12, index % 12 + 1


def _on_day(reference: datetime, year: int, month: int, day: int, hour: int, minute: int) -> datetime:
    day = min(day, calendar.monthrange(year, month)[1])
    return reference.replace(
        year=year, month=month, day=day, hour=hour, minute=minute, second=0, microsecond=0
    )


def detect_time_patterns(
    patterns_with_timestamps: Iterable[Tuple[SequencePattern, List[datetime]]],
    min_occurrences: int = 3,
    tolerance_hours: float = 2.0,
) -> List[TimePattern]:
    """
    Convenience function for time pattern detection.

    Returns:
        Detected time patterns
    """
    detector = TimePatternDetector(TimePatternOptions(
        min_occurrences=min_occurrences,
        tolerance_hours=tolerance_hours,
    ))
    return detector.detect(patterns_with_timestamps)
