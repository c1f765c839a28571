"""
Pattern Scoring Module.

Scores detected patterns for SOP candidacy. Each pattern type maps to
five normalized factors which are combined with fixed weights:

    score = 0.25 * frequency + 0.20 * consistency + 0.20 * user_diversity
          + 0.20 * time_savings + 0.15 * complexity

Scoring has no side effects; scored patterns are copies.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List

from ..models import (
    DetectedPattern,
    PatternType,
    RequestCluster,
    ScoredPattern,
    ScoreFactors,
    SequencePattern,
    TimePattern,
    TimePatternType,
)

logger = logging.getLogger(__name__)


def sequence_complexity(length: int) -> float:
    """
    Complexity factor for a sequence of the given length.

    Three to five steps is the sweet spot; shorter sequences are too
    trivial to be worth a procedure, longer ones too brittle.
    """
    if length <= 2:
        return 0.3
    if length <= 5:
        return 0.8 + (length - 3) * 0.1
    return max(0.5, 1.0 - (length - 5) * 0.1)


def _unit(value: float) -> float:
    return min(max(float(value), 0.0), 1.0)


class PatternScorer:
    """
    Scores detected patterns for automation worthiness.
    """

    WEIGHTS = {
        'frequency': 0.25,
        'consistency': 0.20,
        'user_diversity': 0.20,
        'time_savings': 0.20,
        'complexity': 0.15,
    }

    TIME_SAVINGS_BY_PERIOD = {
        TimePatternType.DAILY: 0.9,
        TimePatternType.WEEKLY: 0.7,
        TimePatternType.MONTHLY: 0.5,
        TimePatternType.QUARTERLY: 0.3,
    }

    STRONG_THRESHOLD = 0.7
    WEAK_THRESHOLD = 0.3

    def score_pattern(self, pattern: DetectedPattern) -> ScoredPattern:
        """
        Score a detected pattern.

        Args:
            pattern: Pattern to score

        Returns:
            ScoredPattern whose ``pattern`` is a copy with confidence = score
        """
        factors = self.calculate_factors(pattern)
        score = self.calculate_overall_score(factors)
        return ScoredPattern(
            pattern=replace(pattern, confidence=score),
            score=score,
            factors=factors,
            recommendation=self._recommendation(score, factors),
        )

    def rank_patterns(self, patterns: List[DetectedPattern]) -> List[ScoredPattern]:
        scored = [self.score_pattern(p) for p in patterns]
        return sorted(scored, key=lambda s: s.score, reverse=True)

    def filter_sop_candidates(
        self, patterns: List[DetectedPattern], min_score: float = 0.6
    ) -> List[DetectedPattern]:
        """Patterns scoring at least ``min_score``, best first, with confidence = score."""
        return [s.pattern for s in self.rank_patterns(patterns) if s.score >= min_score]

    def get_top_patterns(
        self, patterns: List[DetectedPattern], limit: int = 10
    ) -> List[ScoredPattern]:
        return self.rank_patterns(patterns)[:limit]

    def compare_patterns(self, a: DetectedPattern, b: DetectedPattern) -> float:
        """Sort key comparator: negative when ``a`` should come first."""
        return self.score_pattern(b).score - self.score_pattern(a).score

    def calculate_factors(self, pattern: DetectedPattern) -> ScoreFactors:
        if pattern.type == PatternType.SEQUENCE:
            factors = self._sequence_factors(pattern.data)
        elif pattern.type == PatternType.CLUSTER:
            factors = self._cluster_factors(pattern.data)
        elif pattern.type == PatternType.TIME:
            factors = self._time_factors(pattern.data)
        else:
            logger.warning(f"Unknown pattern type for {pattern.id}, using neutral factors")
            factors = ScoreFactors(0.5, 0.5, 0.5, 0.5, 0.5)
        return ScoreFactors(
            frequency=_unit(factors.frequency),
            consistency=_unit(factors.consistency),
            user_diversity=_unit(factors.user_diversity),
            time_savings=_unit(factors.time_savings),
            complexity=_unit(factors.complexity),
        )

    def calculate_overall_score(self, factors: ScoreFactors) -> float:
        values = factors.to_dict()
        return _unit(sum(values[name] * weight for name, weight in self.WEIGHTS.items()))

    def _sequence_factors(self, seq: SequencePattern) -> ScoreFactors:
        return ScoreFactors(
            frequency=min(seq.frequency / 20, 1.0),
            consistency=seq.confidence,
            user_diversity=min(len(seq.users) / 10, 1.0),
            # Ten minutes of manual work saved is the maximum
            time_savings=min(seq.avg_duration / 600.0, 1.0),
            complexity=sequence_complexity(len(seq.sequence)),
        )

    def _cluster_factors(self, cluster: RequestCluster) -> ScoreFactors:
        if cluster.requests:
            avg_distance = sum(r.distance for r in cluster.requests) / len(cluster.requests)
        else:
            avg_distance = 1.0
        return ScoreFactors(
            frequency=min(cluster.size / 20, 1.0),
            consistency=1.0 - min(avg_distance, 1.0),
            user_diversity=min(cluster.distinct_users / 5, 1.0),
            time_savings=min(cluster.size / 15, 1.0),
            complexity=0.8 if cluster.automatable else 0.4,
        )

    def _time_factors(self, time_pattern: TimePattern) -> ScoreFactors:
        length = len(time_pattern.action_pattern.sequence)
        return ScoreFactors(
            frequency=min(time_pattern.occurrences / 15, 1.0),
            consistency=time_pattern.confidence,
            user_diversity=min(len(time_pattern.action_pattern.users) / 5, 1.0),
            time_savings=self.TIME_SAVINGS_BY_PERIOD.get(time_pattern.type, 0.4),
            complexity=0.8 if 2 <= length <= 5 else 0.5,
        )

    def _recommendation(self, score: float, factors: ScoreFactors) -> str:
        if score >= 0.8:
            return (
                "Highly recommended for automation. This pattern shows strong "
                "consistency and potential for significant time savings."
            )
        if score >= 0.6:
            weak_points = []
            if factors.frequency < 0.5:
                weak_points.append("could benefit from more occurrences")
            if factors.user_diversity < 0.5:
                weak_points.append("used by few users")
            if factors.consistency < 0.5:
                weak_points.append("shows some variation")
            if weak_points:
                return f"Good candidate for automation, but {' and '.join(weak_points)}."
            return "Good candidate for automation."
        if score >= 0.4:
            return "Moderate potential. Consider monitoring for more data before automation."
        return "Low priority. Pattern may be too infrequent or inconsistent for automation."

    def explain_score(self, pattern: DetectedPattern) -> Dict[str, Any]:
        """
        Explain a pattern's score for audit or UI display.

        Returns:
            Dictionary with score, factors and a list of explanation strings
        """
        factors = self.calculate_factors(pattern)
        score = self.calculate_overall_score(factors)
        strong, weak = self.STRONG_THRESHOLD, self.WEAK_THRESHOLD
        explanation: List[str] = []

        if factors.frequency >= strong:
            explanation.append("High frequency indicates this pattern is commonly used.")
        elif factors.frequency < weak:
            explanation.append("Low frequency - pattern may be too rare for automation.")

        if factors.consistency >= strong:
            explanation.append("High consistency shows reliable, predictable behavior.")
        elif factors.consistency < weak:
            explanation.append(
                "Low consistency - pattern varies significantly between occurrences."
            )

        if factors.user_diversity >= strong:
            explanation.append("Used by many users, indicating broad applicability.")
        elif factors.user_diversity < weak:
            explanation.append(
                "Used by few users - may be specific to individual workflows."
            )

        if factors.time_savings >= strong:
            explanation.append("Significant time savings potential from automation.")

        if factors.complexity >= strong:
            explanation.append("Appropriate complexity for automation.")
        elif factors.complexity < weak:
            explanation.append(
                "Pattern may be too simple or too complex for effective automation."
            )

        return {
            'score': score,
            'factors': factors.to_dict(),
            'explanation': explanation,
        }
