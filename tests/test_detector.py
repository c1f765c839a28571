"""
Tests for the pattern detection orchestrator.

Tests cover:
- Empty organizations
- Full pipeline over a weekly routine plus free-text requests
- Draft failure isolation and store failures
- Pattern dismissal and idempotent re-runs, including draft generation
- Completion service selection
"""

import pytest
from datetime import datetime, timedelta, timezone

from sop_pattern_engine.completion import AnthropicCompletionService, DisabledCompletionService
from sop_pattern_engine.config import AnalyzeOptions, ClusteringOptions, PatternDetectorConfig
from sop_pattern_engine.detector import PatternDetector
from sop_pattern_engine.errors import ConflictError, NotFoundError
from sop_pattern_engine.ingest.event_store import InMemoryActionEventStore
from sop_pattern_engine.models import (
    DraftStatus,
    PatternStatus,
    PatternType,
    TimePatternType,
)
from sop_pattern_engine.storage.stores import (
    DraftFilter,
    InMemoryDraftStore,
    InMemoryPatternStore,
    PatternFilter,
)


ROUTINE = ['agent:brand-agent', 'tool:notion', 'agent:finance-agent']

# Mondays inside a 30 day lookback from 2026-03-02 12:00
MONDAYS = [datetime(2026, 2, 2, 9, 0, tzinfo=timezone.utc) + timedelta(weeks=i) for i in range(5)]


class FailingDraftStore(InMemoryDraftStore):
    def create_sop_draft(self, draft):
        raise RuntimeError("draft store offline")


class FailingPatternStore(InMemoryPatternStore):
    def create_detected_pattern(self, *args, **kwargs):
        raise RuntimeError("pattern store offline")


@pytest.fixture
def events(make_session, dark_mode_texts):
    events = []
    users = ['u1', 'u2', 'u3']
    for i, start in enumerate(MONDAYS):
        events += make_session(f"routine-{i}", ROUTINE, start, user_id=users[i % 3])

    request_users = ['u1', 'u2', 'u1', 'u3', 'u4']
    request_hours = [10, 13, 15, 11, 17]
    for i, text in enumerate(dark_mode_texts):
        start = datetime(2026, 2, 10 + i, request_hours[i], 0, tzinfo=timezone.utc)
        events += make_session(
            f"request-{i}", ['agent:support-agent', 'tool:settings'], start,
            user_id=request_users[i], request_text=text,
        )

    # Outside the lookback window
    events += make_session(
        'old', ROUTINE, datetime(2025, 12, 1, 9, 0, tzinfo=timezone.utc), user_id='u9'
    )
    return events


@pytest.fixture
def config():
    return PatternDetectorConfig(
        clustering=ClusteringOptions(min_cluster_size=3, similarity_threshold=0.3),
        min_confidence_for_sop=0.3,
    )


@pytest.fixture
def detector(events, pattern_store, draft_store, config, fixed_now):
    event_store = InMemoryActionEventStore(events, clock=lambda: fixed_now)
    return PatternDetector(event_store, pattern_store, draft_store, config=config)


def routine_pattern(detector):
    patterns = detector.get_patterns('org-1', PatternFilter(type=PatternType.SEQUENCE, limit=100))
    return next(p for p in patterns if p.data.sequence == ROUTINE)


class TestEmptyOrganization:
    """Tests for organizations without data."""

    def test_empty_result(self, pattern_store, draft_store):
        detector = PatternDetector(InMemoryActionEventStore(), pattern_store, draft_store)
        result = detector.analyze('org-empty', AnalyzeOptions(generate_drafts=True))

        assert result.organization_id == 'org-empty'
        assert result.sequence_patterns == []
        assert result.request_clusters == []
        assert result.time_patterns == []
        assert result.sop_candidates == []
        assert result.sop_drafts == []
        assert result.total_sequences_found == 0
        assert detector.get_patterns('org-empty') == []

    def test_other_organization_ignored(self, detector):
        result = detector.analyze('org-2')
        assert result.total_sequences_found == 0


class TestCompletionSelection:
    """Tests for the completion service a detector uses by default."""

    def test_disabled_without_api_key(self, pattern_store, draft_store):
        detector = PatternDetector(InMemoryActionEventStore(), pattern_store, draft_store)
        assert isinstance(detector.completion_service, DisabledCompletionService)

    def test_anthropic_from_environment(self, monkeypatch, pattern_store, draft_store):
        monkeypatch.setenv('ANTHROPIC_API_KEY', 'test-key')
        detector = PatternDetector(InMemoryActionEventStore(), pattern_store, draft_store)

        assert isinstance(detector.completion_service, AnthropicCompletionService)
        assert detector.drafter.completion_service is detector.completion_service

    def test_explicit_service_wins(self, monkeypatch, pattern_store, draft_store, fake_completion):
        monkeypatch.setenv('ANTHROPIC_API_KEY', 'test-key')
        service = fake_completion()
        detector = PatternDetector(InMemoryActionEventStore(), pattern_store, draft_store, service)
        assert detector.drafter.completion_service is service


class TestFullPipeline:
    """Tests for an end-to-end analysis run."""

    def test_counts(self, detector):
        result = detector.analyze('org-1')

        assert result.total_sequences_found == 10
        assert result.total_actions_analyzed == 5 * 3 + 5 * 2
        assert result.lookback_days == 30

    def test_routine_sequence_found(self, detector):
        result = detector.analyze('org-1')

        by_sequence = {tuple(p.sequence): p for p in result.sequence_patterns}
        routine = by_sequence[tuple(ROUTINE)]
        assert routine.frequency == 5
        assert routine.users == ['u1', 'u2', 'u3']
        assert ('agent:support-agent', 'tool:settings') in by_sequence

    def test_weekly_routine_found(self, detector):
        result = detector.analyze('org-1')

        weekly = [
            t for t in result.time_patterns
            if t.action_pattern.sequence == ROUTINE
        ]
        assert len(weekly) == 1
        assert weekly[0].type == TimePatternType.WEEKLY
        assert weekly[0].description == "Every Monday at 09:00"

    def test_request_cluster_found(self, detector):
        result = detector.analyze('org-1')

        assert len(result.request_clusters) == 1
        cluster = result.request_clusters[0]
        assert cluster.size == 4
        assert {r.id for r in cluster.requests} == {
            'request-0-0', 'request-1-0', 'request-2-0', 'request-3-0'
        }
        assert cluster.automatable is True

    def test_patterns_persisted(self, detector):
        result = detector.analyze('org-1')

        stored = detector.get_patterns('org-1', PatternFilter(limit=100))
        assert len(stored) == len(result.detected_patterns)
        assert len(stored) == (
            len(result.sequence_patterns) + len(result.request_clusters) + len(result.time_patterns)
        )
        assert all(p.status == PatternStatus.ACTIVE for p in stored)

    def test_candidates_ranked(self, detector):
        result = detector.analyze('org-1')

        scores = [c.confidence for c in result.sop_candidates]
        assert scores
        assert scores == sorted(scores, reverse=True)
        assert all(score >= 0.3 for score in scores)

    def test_min_support_override(self, detector):
        result = detector.analyze('org-1', AnalyzeOptions(min_support=6))
        assert result.sequence_patterns == []
        assert result.time_patterns == []

    def test_no_drafts_by_default(self, detector, draft_store):
        result = detector.analyze('org-1')
        assert result.sop_drafts == []
        assert draft_store.list_drafts('org-1') == []

    def test_drafts_generated(self, detector):
        result = detector.analyze('org-1', AnalyzeOptions(generate_drafts=True))

        assert result.draft_failures == []
        assert len(result.sop_drafts) == len(result.sop_candidates)
        candidate_ids = {c.id for c in result.sop_candidates}
        for draft in result.sop_drafts:
            assert draft.status == DraftStatus.DRAFT
            assert draft.source_pattern_id in candidate_ids
            assert detector.get_sop_draft(draft.id) is not None

    def test_result_serializes(self, detector):
        data = detector.analyze('org-1', AnalyzeOptions(generate_drafts=True)).to_dict()
        assert data['counts']['sop_drafts'] == len(data['sop_drafts'])


class TestFailures:
    """Tests for failure handling during analysis."""

    def test_draft_failures_are_isolated(self, events, pattern_store, config, fixed_now):
        detector = PatternDetector(
            InMemoryActionEventStore(events, clock=lambda: fixed_now),
            pattern_store, FailingDraftStore(), config=config,
        )
        result = detector.analyze('org-1', AnalyzeOptions(generate_drafts=True))

        assert result.sop_candidates
        assert result.sop_drafts == []
        assert len(result.draft_failures) == len(result.sop_candidates)
        failure = result.draft_failures[0]
        assert failure.stage == 'persist'
        assert failure.error == 'draft store offline'
        assert result.sequence_patterns

    def test_pattern_store_failure_propagates(self, events, draft_store, fixed_now):
        detector = PatternDetector(
            InMemoryActionEventStore(events, clock=lambda: fixed_now),
            FailingPatternStore(), draft_store,
        )
        with pytest.raises(RuntimeError, match="pattern store offline"):
            detector.analyze('org-1')


class TestPatternLifecycle:
    """Tests for dismissal and repeated analysis."""

    def test_rerun_is_idempotent(self, detector):
        first = detector.analyze('org-1')
        second = detector.analyze('org-1')

        assert {p.id for p in first.detected_patterns} == {p.id for p in second.detected_patterns}
        assert len(detector.get_patterns('org-1', PatternFilter(limit=100))) == len(
            first.detected_patterns
        )

    def test_rerun_keeps_open_drafts(self, detector, draft_store):
        first = detector.analyze('org-1', AnalyzeOptions(generate_drafts=True))
        assert first.sop_drafts
        second = detector.analyze('org-1', AnalyzeOptions(generate_drafts=True))

        assert second.sop_drafts == []
        assert second.draft_failures == []
        drafts = draft_store.list_drafts('org-1', DraftFilter(limit=100))
        assert len(drafts) == len(first.sop_drafts)
        for draft in first.sop_drafts:
            assert detector.get_pattern(draft.source_pattern_id).sop_draft_id == draft.id

    def test_rejected_draft_is_redrafted(self, detector):
        first = detector.analyze('org-1', AnalyzeOptions(generate_drafts=True))
        rejected = first.sop_drafts[0]
        detector.reject_sop_draft(rejected.id, 'lead', 'Wrong owner')

        second = detector.analyze('org-1', AnalyzeOptions(generate_drafts=True))

        assert [d.source_pattern_id for d in second.sop_drafts] == [rejected.source_pattern_id]
        relinked = detector.get_pattern(rejected.source_pattern_id)
        assert relinked.status == PatternStatus.ACTIVE
        assert relinked.sop_draft_id == second.sop_drafts[0].id

    def test_dismiss(self, detector):
        detector.analyze('org-1')
        pattern = routine_pattern(detector)

        dismissed = detector.dismiss_pattern(pattern.id)
        assert dismissed.status == PatternStatus.DISMISSED
        # Second dismissal is a no-op
        assert detector.dismiss_pattern(pattern.id).status == PatternStatus.DISMISSED

    def test_dismissed_pattern_survives_rerun(self, detector):
        first = detector.analyze('org-1')
        pattern = routine_pattern(detector)
        assert pattern.id in {c.id for c in first.sop_candidates}

        detector.dismiss_pattern(pattern.id)
        second = detector.analyze('org-1')

        assert detector.get_pattern(pattern.id).status == PatternStatus.DISMISSED
        assert pattern.id not in {c.id for c in second.sop_candidates}

    def test_dismiss_unknown(self, detector):
        with pytest.raises(NotFoundError):
            detector.dismiss_pattern('missing')

    def test_converted_pattern_cannot_be_dismissed(self, detector):
        detector.analyze('org-1')
        pattern = routine_pattern(detector)

        draft = detector.generate_sop_from_pattern(pattern.id)
        detector.submit_sop_draft_for_review(draft.id, ['lead@example.com'])
        detector.approve_sop_draft(draft.id, 'lead@example.com')

        converted = detector.get_pattern(pattern.id)
        assert converted.status == PatternStatus.CONVERTED
        assert converted.sop_draft_id == draft.id
        with pytest.raises(ConflictError):
            detector.dismiss_pattern(pattern.id)


class TestDraftOperations:
    """Tests for draft operations exposed by the detector."""

    def test_generate_from_unknown_pattern(self, detector):
        with pytest.raises(NotFoundError):
            detector.generate_sop_from_pattern('missing')

    def test_generate_and_render(self, detector):
        detector.analyze('org-1')
        draft = detector.generate_sop_from_pattern(routine_pattern(detector).id)

        assert draft.name == 'Auto: Brand Agent Workflow'
        assert detector.get_sop_drafts('org-1')[0].id == draft.id
        assert 'Agent: Brand Agent' in detector.convert_to_yaml(draft)

    def test_reject(self, detector):
        detector.analyze('org-1')
        draft = detector.generate_sop_from_pattern(routine_pattern(detector).id)

        rejected = detector.reject_sop_draft(draft.id, 'lead', 'Duplicate of an existing SOP')
        assert rejected.status == DraftStatus.REJECTED
        assert routine_pattern(detector).status == PatternStatus.ACTIVE
