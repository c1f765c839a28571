"""
Time pattern detection for recurring daily, weekly, monthly and quarterly routines.
"""

from .time_pattern_detector import TimePatternDetector, detect_time_patterns

__all__ = ['TimePatternDetector', 'detect_time_patterns']
