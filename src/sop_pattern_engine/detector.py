"""
Pattern detection orchestrator.

Runs the full analysis for one organization:
    event store -> sequence mining -> request clustering
    -> time patterns -> persistence -> scoring -> optional SOP drafts

Also exposes the read and review operations a UI or API layer needs.
Collaborators are passed in; nothing here is a process-wide singleton.
"""

import logging
import time
from dataclasses import replace
from typing import List, Optional

from .cluster.request_clusterer import RequestClusterer
from .completion import TextCompletionService, default_completion_service
from .config import AnalyzeOptions, PatternDetectorConfig
from .drafting.sop_drafter import SOPDrafter
from .errors import ConflictError, NotFoundError
from .ingest.event_store import ActionEventStore
from .mining.sequence_miner import SequenceMiner
from .models import (
    ActionSequence,
    DetectedPattern,
    DraftFailure,
    PatternAnalysisResult,
    PatternStatus,
    PatternType,
    RequestRecord,
    SOPDraft,
    utc_now,
)
from .scoring.pattern_scorer import PatternScorer
from .storage.stores import DraftFilter, DraftStore, PatternFilter, PatternStore
from .timing.time_pattern_detector import TimePatternDetector

logger = logging.getLogger(__name__)


class PatternDetector:
    """
    End-to-end pattern detection and SOP drafting for organizations.
    """

    AUTOMATABLE_CLUSTER_CONFIDENCE = 0.7
    CLUSTER_CONFIDENCE = 0.5

    def __init__(
        self,
        event_store: ActionEventStore,
        pattern_store: PatternStore,
        draft_store: DraftStore,
        completion_service: Optional[TextCompletionService] = None,
        config: Optional[PatternDetectorConfig] = None,
    ):
        """
        Initialize the detector.

        Args:
            event_store: Source of action sequences
            pattern_store: Persistence for detected patterns
            draft_store: Persistence for SOP drafts
            completion_service: Defaults to Anthropic when ANTHROPIC_API_KEY
                is set; deterministic fallbacks are used without one
            config: Pipeline configuration; out-of-range values are clamped
        """
        self.event_store = event_store
        self.pattern_store = pattern_store
        self.draft_store = draft_store
        self.config = (config or PatternDetectorConfig()).clamped()
        if completion_service is None:
            completion_service = default_completion_service()
        self.completion_service = completion_service

        self.miner = SequenceMiner(self.config.sequence)
        self.clusterer = RequestClusterer(self.config.clustering, completion_service)
        self.time_detector = TimePatternDetector(self.config.time)
        self.scorer = PatternScorer()
        self.drafter = SOPDrafter(draft_store, pattern_store, completion_service)

    def analyze(
        self, organization_id: str, options: Optional[AnalyzeOptions] = None
    ) -> PatternAnalysisResult:
        """
        Run a full analysis for an organization.

        Pattern store failures propagate. Failures drafting or saving an
        individual SOP are logged and recorded in ``draft_failures``.

        Args:
            organization_id: Organization to analyze
            options: Lookback window, support override and draft generation

        Returns:
            Analysis result; empty lists when the window has no data
        """
        options = (options or AnalyzeOptions()).clamped()
        started = time.monotonic()
        result = PatternAnalysisResult(
            organization_id=organization_id,
            analyzed_at=utc_now(),
            lookback_days=options.lookback_days,
        )
        logger.info(
            f"Analyzing {organization_id} over {options.lookback_days} days "
            f"(generate_drafts={options.generate_drafts})"
        )

        sequences = self.event_store.get_action_sequences(
            organization_id,
            min_length=self.config.sequence.min_length,
            lookback_days=options.lookback_days,
        )
        result.total_sequences_found = len(sequences)
        result.total_actions_analyzed = sum(len(s.actions) for s in sequences)
        if not sequences:
            logger.info(f"No action sequences for {organization_id}")
            result.duration_seconds = time.monotonic() - started
            return result

        mining_options = self.config.sequence
        if options.min_support is not None:
            mining_options = replace(mining_options, min_support=options.min_support)
        result.sequence_patterns = self.miner.mine(sequences, mining_options)
        result.request_clusters = self.clusterer.cluster(self._extract_requests(sequences))
        result.time_patterns = self.time_detector.detect(
            (p, p.occurrence_timestamps) for p in result.sequence_patterns
        )

        result.detected_patterns = self._persist_patterns(organization_id, result)

        active = [p for p in result.detected_patterns if p.status == PatternStatus.ACTIVE]
        result.sop_candidates = self.scorer.filter_sop_candidates(
            active, self.config.min_confidence_for_sop
        )

        if options.generate_drafts:
            self._generate_drafts(organization_id, result)

        result.duration_seconds = time.monotonic() - started
        logger.info(
            f"Analysis of {organization_id} complete: "
            f"{len(result.sequence_patterns)} sequences, "
            f"{len(result.request_clusters)} clusters, "
            f"{len(result.time_patterns)} time patterns, "
            f"{len(result.sop_candidates)} SOP candidates, "
            f"{len(result.sop_drafts)} drafts ({len(result.draft_failures)} failed)"
        )
        return result

    @staticmethod
    def _extract_requests(sequences: List[ActionSequence]) -> List[RequestRecord]:
        requests = []
        for seq in sequences:
            for action in seq.actions:
                if action.original_request and action.original_request.strip():
                    requests.append(RequestRecord(
                        id=action.id,
                        text=action.original_request,
                        user_id=action.user_id,
                        timestamp=action.timestamp,
                    ))
        return requests

    def _persist_patterns(
        self, organization_id: str, result: PatternAnalysisResult
    ) -> List[DetectedPattern]:
        stored = []
        for seq in result.sequence_patterns:
            stored.append(self.pattern_store.create_detected_pattern(
                organization_id, PatternType.SEQUENCE, seq, seq.frequency, seq.confidence
            ))
        for cluster in result.request_clusters:
            confidence = (
                self.AUTOMATABLE_CLUSTER_CONFIDENCE if cluster.automatable
                else self.CLUSTER_CONFIDENCE
            )
            stored.append(self.pattern_store.create_detected_pattern(
                organization_id, PatternType.CLUSTER, cluster, cluster.size, confidence
            ))
        for time_pattern in result.time_patterns:
            stored.append(self.pattern_store.create_detected_pattern(
                organization_id, PatternType.TIME, time_pattern,
                time_pattern.occurrences, time_pattern.confidence,
            ))
        logger.info(f"Persisted {len(stored)} detected patterns for {organization_id}")
        return stored

    def _generate_drafts(self, organization_id: str, result: PatternAnalysisResult):
        for candidate in result.sop_candidates:
            if self._has_open_draft(candidate):
                logger.info(
                    f"Pattern {candidate.id} already has open SOP draft {candidate.sop_draft_id}"
                )
                continue
            stage = 'draft'
            try:
                draft = self.drafter.build_draft(candidate)
                stage = 'persist'
                draft = self.draft_store.create_sop_draft(draft)
                self._link_draft(candidate, draft)
                result.sop_drafts.append(draft)
            except Exception as e:
                logger.error(
                    f"Failed to {stage} SOP for pattern {candidate.id} "
                    f"({candidate.type.value}) in {organization_id}: {e}"
                )
                result.draft_failures.append(DraftFailure(
                    pattern_id=candidate.id,
                    pattern_type=candidate.type,
                    stage=stage,
                    error=str(e),
                ))

    def _has_open_draft(self, pattern: DetectedPattern) -> bool:
        """True if the pattern's linked draft is still draft or pending review."""
        if not pattern.sop_draft_id:
            return False
        draft = self.draft_store.get_draft(pattern.sop_draft_id)
        return draft is not None and not draft.status.is_terminal

    def _link_draft(self, pattern: DetectedPattern, draft: SOPDraft):
        # Converted and dismissed patterns keep their existing link
        if pattern.status == PatternStatus.ACTIVE:
            self.pattern_store.update_pattern_status(
                pattern.id, PatternStatus.ACTIVE, sop_draft_id=draft.id
            )

    # =========================================================================
    # Query and review
    # =========================================================================

    def get_patterns(
        self, organization_id: str, filters: Optional[PatternFilter] = None
    ) -> List[DetectedPattern]:
        return self.pattern_store.list_patterns(organization_id, filters)

    def get_pattern(self, pattern_id: str) -> Optional[DetectedPattern]:
        return self.pattern_store.get_pattern(pattern_id)

    def dismiss_pattern(self, pattern_id: str) -> DetectedPattern:
        """
        Dismiss a pattern so it is no longer suggested.

        Dismissing an already dismissed pattern is a no-op.

        Raises:
            NotFoundError: If the pattern does not exist
            ConflictError: If the pattern was already converted to an SOP
        """
        pattern = self.pattern_store.get_pattern(pattern_id)
        if pattern is None:
            raise NotFoundError('Pattern', pattern_id)
        if pattern.status == PatternStatus.DISMISSED:
            return pattern
        if pattern.status == PatternStatus.CONVERTED:
            raise ConflictError('Pattern', pattern_id, pattern.status.value,
                                PatternStatus.DISMISSED.value)
        logger.info(f"Dismissing pattern {pattern_id}")
        return self.pattern_store.update_pattern_status(pattern_id, PatternStatus.DISMISSED)

    def get_sop_drafts(
        self, organization_id: str, filters: Optional[DraftFilter] = None
    ) -> List[SOPDraft]:
        return self.draft_store.list_drafts(organization_id, filters)

    def get_sop_draft(self, draft_id: str) -> Optional[SOPDraft]:
        return self.draft_store.get_draft(draft_id)

    def generate_sop_from_pattern(self, pattern_id: str) -> SOPDraft:
        """
        Draft and save an SOP for a stored pattern.

        An explicit request always produces a new draft; an active
        pattern is linked to it.

        Raises:
            NotFoundError: If the pattern does not exist
        """
        pattern = self.pattern_store.get_pattern(pattern_id)
        if pattern is None:
            raise NotFoundError('Pattern', pattern_id)
        draft = self.drafter.draft_from_pattern(pattern)
        self._link_draft(pattern, draft)
        return draft

    def submit_sop_draft_for_review(self, draft_id: str, reviewers: List[str]) -> SOPDraft:
        return self.drafter.submit_for_review(draft_id, reviewers)

    def approve_sop_draft(self, draft_id: str, reviewer_id: str) -> SOPDraft:
        return self.drafter.approve_draft(draft_id, reviewer_id)

    def reject_sop_draft(self, draft_id: str, reviewer_id: str, reason: str) -> SOPDraft:
        return self.drafter.reject_draft(draft_id, reviewer_id, reason)

    def convert_to_yaml(self, draft: SOPDraft) -> str:
        return self.drafter.to_yaml(draft)
