"""
Automation potential scoring for detected patterns.
"""

from .pattern_scorer import PatternScorer, sequence_complexity

__all__ = ['PatternScorer', 'sequence_complexity']
