"""
Report Generator Module.

Generates analysis reports in various formats:
- JSON for programmatic use
- Markdown for human reading

Candidates are annotated with their score breakdown and recommendation.
"""

import json
from typing import Any, Dict

from .. import __version__
from ..models import DetectedPattern, PatternAnalysisResult, PatternType, utc_now
from ..scoring.pattern_scorer import PatternScorer


class ReportGenerator:
    """
    Generates reports from pattern analysis results.
    """

    def __init__(self, output_format: str = "json", include_metadata: bool = True):
        """
        Initialize the report generator.

        Args:
            output_format: Output format ('json' or 'markdown')
            include_metadata: Include generation metadata
        """
        if output_format not in ('json', 'markdown'):
            raise ValueError(f"Unsupported output format: {output_format}")
        self.output_format = output_format
        self.include_metadata = include_metadata
        self.scorer = PatternScorer()

    def generate(self, result: PatternAnalysisResult) -> str:
        """
        Generate a report.

        Args:
            result: Analysis result to report on

        Returns:
            Formatted report string
        """
        if self.output_format == 'markdown':
            return self._generate_markdown(result)
        return self._generate_json(result)

    def _generate_json(self, result: PatternAnalysisResult) -> str:
        report: Dict[str, Any] = {}
        if self.include_metadata:
            report['metadata'] = self._generate_metadata(result)
        report['summary'] = self._generate_summary(result)
        report['candidates'] = [self._explain(c) for c in result.sop_candidates]
        report['result'] = result.to_dict()
        return json.dumps(report, indent=2, default=str)

    def _generate_markdown(self, result: PatternAnalysisResult) -> str:
        lines = []

        lines.append(f"# Pattern Analysis Report: {result.organization_id}")
        lines.append("")
        if self.include_metadata:
            lines.append(f"**Generated**: {utc_now().isoformat()}")
            lines.append(f"**Analyzed**: {result.analyzed_at.isoformat()}")
            lines.append(f"**Lookback**: {result.lookback_days} days")
            lines.append(f"**Version**: {__version__}")
            lines.append("")

        summary = self._generate_summary(result)
        lines.append("## Summary")
        lines.append("")
        lines.append(f"- **Actions Analyzed**: {summary['total_actions_analyzed']}")
        lines.append(f"- **Sequences Found**: {summary['total_sequences_found']}")
        lines.append(f"- **Sequence Patterns**: {summary['sequence_patterns']}")
        lines.append(f"- **Request Clusters**: {summary['request_clusters']}")
        lines.append(f"- **Time Patterns**: {summary['time_patterns']}")
        lines.append(f"- **SOP Candidates**: {summary['sop_candidates']}")
        lines.append(f"- **SOP Drafts**: {summary['sop_drafts']}")
        lines.append("")

        if result.sequence_patterns:
            lines.append("## Sequence Patterns")
            lines.append("")
            lines.append("| Sequence | Frequency | Users | Avg Duration | Confidence |")
            lines.append("|----------|-----------|-------|--------------|------------|")
            for p in result.sequence_patterns:
                lines.append(
                    f"| {' → '.join(p.sequence)} | {p.frequency} | {len(p.users)} "
                    f"| {p.avg_duration:.0f}s | {p.confidence:.0%} |"
                )
            lines.append("")

        if result.request_clusters:
            lines.append("## Request Clusters")
            lines.append("")
            for c in result.request_clusters:
                lines.append(f"### {c.common_intent}")
                lines.append("")
                lines.append(f"- **Size**: {c.size} requests from {c.distinct_users} users")
                lines.append(f"- **Representative**: \"{c.centroid}\"")
                lines.append(f"- **Common Entities**: {', '.join(c.common_entities) or 'none'}")
                lines.append(f"- **Automatable**: {'yes' if c.automatable else 'no'}")
                lines.append("")

        if result.time_patterns:
            lines.append("## Time Patterns")
            lines.append("")
            for t in result.time_patterns:
                lines.append(
                    f"- **{t.description}**: {' → '.join(t.action_pattern.sequence)} "
                    f"({t.occurrences} occurrences, {t.confidence:.0%} on schedule)"
                )
            lines.append("")

        if result.sop_candidates:
            lines.append("## SOP Candidates")
            lines.append("")
            for candidate in result.sop_candidates:
                explained = self._explain(candidate)
                lines.append(
                    f"### {self._label(candidate)} (score {explained['score']:.2f})"
                )
                lines.append("")
                lines.append(explained['recommendation'])
                lines.append("")
                for statement in explained['explanation']:
                    lines.append(f"- {statement}")
                lines.append("")

        if result.sop_drafts:
            lines.append("## SOP Drafts")
            lines.append("")
            for d in result.sop_drafts:
                lines.append(f"- **{d.name}** ({d.function}, {len(d.steps)} steps, {d.status.value})")
            lines.append("")

        if result.draft_failures:
            lines.append("## Draft Failures")
            lines.append("")
            for f in result.draft_failures:
                lines.append(f"- {f.pattern_type.value} pattern {f.pattern_id} ({f.stage}): {f.error}")
            lines.append("")

        return '\n'.join(lines)

    def _generate_metadata(self, result: PatternAnalysisResult) -> Dict[str, Any]:
        return {
            'generated_at': utc_now().isoformat(),
            'version': __version__,
            'organization_id': result.organization_id,
            'lookback_days': result.lookback_days,
        }

    def _generate_summary(self, result: PatternAnalysisResult) -> Dict[str, Any]:
        scores = [c.confidence for c in result.sop_candidates]
        return {
            'total_actions_analyzed': result.total_actions_analyzed,
            'total_sequences_found': result.total_sequences_found,
            'sequence_patterns': len(result.sequence_patterns),
            'request_clusters': len(result.request_clusters),
            'time_patterns': len(result.time_patterns),
            'sop_candidates': len(result.sop_candidates),
            'sop_drafts': len(result.sop_drafts),
            'draft_failures': len(result.draft_failures),
            'average_candidate_score': sum(scores) / len(scores) if scores else 0.0,
        }

    def _explain(self, pattern: DetectedPattern) -> Dict[str, Any]:
        scored = self.scorer.score_pattern(pattern)
        explained = self.scorer.explain_score(pattern)
        return {
            'pattern_id': pattern.id,
            'type': pattern.type.value,
            'label': self._label(pattern),
            'score': scored.score,
            'factors': scored.factors.to_dict(),
            'recommendation': scored.recommendation,
            'explanation': explained['explanation'],
        }

    @staticmethod
    def _label(pattern: DetectedPattern) -> str:
        if pattern.type == PatternType.SEQUENCE:
            return ' → '.join(pattern.data.sequence)
        if pattern.type == PatternType.CLUSTER:
            return pattern.data.common_intent
        return pattern.data.description


def generate_json_report(result: PatternAnalysisResult) -> str:
    """Convenience function for JSON report generation."""
    return ReportGenerator(output_format='json').generate(result)


def generate_markdown_report(result: PatternAnalysisResult) -> str:
    """Convenience function for Markdown report generation."""
    return ReportGenerator(output_format='markdown').generate(result)
