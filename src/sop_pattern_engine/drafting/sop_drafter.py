"""
SOP Drafting Module.

Turns detected patterns into draft standard operating procedures:
- Sequence patterns: one step per action token
- Request clusters: a short intake/process/respond procedure
- Time patterns: a schedule trigger followed by the sequence steps

Names, descriptions and cluster steps come from the completion service
when one is available; every call has a deterministic fallback, so a
draft is always produced. Drafts move through a one-way review
lifecycle: draft -> pending_review -> approved | rejected.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..completion import DisabledCompletionService, TextCompletionService, extract_json
from ..errors import (
    CompletionError,
    CompletionUnavailableError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ..models import (
    DetectedPattern,
    DraftStatus,
    PatternStatus,
    PatternType,
    RequestCluster,
    SequencePattern,
    SOPDraft,
    SOPDraftStep,
    StepType,
    TimePattern,
)
from ..storage.stores import DraftStore, PatternStore

logger = logging.getLogger(__name__)


def format_id(identifier: str) -> str:
    """'brand-agent_v2' -> 'Brand Agent V2'."""
    words = re.split(r'[-_\s]+', identifier.strip())
    return " ".join(w[:1].upper() + w[1:] for w in words if w)


class SOPDrafter:
    """
    Drafts SOPs from detected patterns and manages their review.
    """

    # Department keywords, checked in order against word prefixes
    FUNCTION_KEYWORDS: List[Tuple[Tuple[str, ...], str]] = [
        (('brand', 'marketing'), 'Marketing'),
        (('finance', 'budget'), 'Finance'),
        (('hr', 'people'), 'Human Resources'),
        (('dev', 'eng'), 'Engineering'),
        (('ops', 'operations'), 'Operations'),
        (('sales',), 'Sales'),
        (('support', 'cs'), 'Customer Support'),
    ]
    DEFAULT_FUNCTION = 'General'

    OWNER = 'system@organization.com'
    VERSION = '1.0.0'

    CLUSTER_SAMPLE_SIZE = 3
    METADATA_MAX_TOKENS = 200
    STEPS_MAX_TOKENS = 500

    OPEN_STATUSES = (DraftStatus.DRAFT, DraftStatus.PENDING_REVIEW)

    def __init__(
        self,
        draft_store: DraftStore,
        pattern_store: Optional[PatternStore] = None,
        completion_service: Optional[TextCompletionService] = None,
    ):
        """
        Initialize the drafter.

        Args:
            draft_store: Where drafts are saved and reviewed
            pattern_store: Source patterns; approval marks them converted
            completion_service: Optional generative naming and step suggestions
        """
        self.draft_store = draft_store
        self.pattern_store = pattern_store
        self.completion_service = completion_service or DisabledCompletionService()

    # =========================================================================
    # Drafting
    # =========================================================================

    def draft_from_pattern(self, pattern: DetectedPattern) -> SOPDraft:
        """Build a draft for a detected pattern and save it."""
        return self.draft_store.create_sop_draft(self.build_draft(pattern))

    def build_draft(self, pattern: DetectedPattern) -> SOPDraft:
        """
        Build a draft for a detected pattern without saving it.

        The draft's confidence is the detected pattern's confidence, which
        is the automation score for scored candidates.
        """
        if pattern.type == PatternType.SEQUENCE:
            builder = self._build_sequence_draft
        elif pattern.type == PatternType.CLUSTER:
            builder = self._build_cluster_draft
        elif pattern.type == PatternType.TIME:
            builder = self._build_time_draft
        else:
            raise ValidationError(f"Unsupported pattern type: {pattern.type}")
        return builder(pattern.data, pattern.organization_id, pattern.id, pattern.confidence)

    def draft_from_sequence(
        self,
        sequence: SequencePattern,
        organization_id: str,
        source_pattern_id: Optional[str] = None,
    ) -> SOPDraft:
        draft = self._build_sequence_draft(
            sequence, organization_id, source_pattern_id, sequence.confidence
        )
        return self.draft_store.create_sop_draft(draft)

    def draft_from_cluster(
        self,
        cluster: RequestCluster,
        organization_id: str,
        source_pattern_id: Optional[str] = None,
    ) -> SOPDraft:
        confidence = 0.7 if cluster.automatable else 0.5
        draft = self._build_cluster_draft(cluster, organization_id, source_pattern_id, confidence)
        return self.draft_store.create_sop_draft(draft)

    def draft_from_time_pattern(
        self,
        time_pattern: TimePattern,
        organization_id: str,
        source_pattern_id: Optional[str] = None,
    ) -> SOPDraft:
        draft = self._build_time_draft(
            time_pattern, organization_id, source_pattern_id, time_pattern.confidence
        )
        return self.draft_store.create_sop_draft(draft)

    def _build_sequence_draft(
        self,
        sequence: SequencePattern,
        organization_id: str,
        source_pattern_id: Optional[str],
        confidence: float,
    ) -> SOPDraft:
        steps = self.steps_from_sequence(sequence.sequence)
        metadata, method = self._generate_metadata(sequence.sequence, steps)
        return self._new_draft(
            organization_id=organization_id,
            metadata=metadata,
            steps=steps,
            source_pattern_id=source_pattern_id,
            source_type=PatternType.SEQUENCE,
            confidence=confidence,
            method=method,
        )

    def _build_cluster_draft(
        self,
        cluster: RequestCluster,
        organization_id: str,
        source_pattern_id: Optional[str],
        confidence: float,
    ) -> SOPDraft:
        steps, method = self._steps_from_cluster(cluster)
        intent = cluster.common_intent or "similar requests"
        name = intent if intent.lower().startswith('handle ') else f"Handle {intent}"
        metadata = {
            'name': name,
            'description': (
                f"Automated workflow for handling {cluster.size} similar requests "
                f"related to: {', '.join(cluster.common_entities) or intent}"
            ),
            'function': self.infer_function(" ".join(cluster.common_entities)),
        }
        return self._new_draft(
            organization_id=organization_id,
            metadata=metadata,
            steps=steps,
            source_pattern_id=source_pattern_id,
            source_type=PatternType.CLUSTER,
            confidence=confidence,
            method=method,
        )

    def _build_time_draft(
        self,
        time_pattern: TimePattern,
        organization_id: str,
        source_pattern_id: Optional[str],
        confidence: float,
    ) -> SOPDraft:
        schedule = {
            'type': time_pattern.type.value,
            'day_of_week': time_pattern.day_of_week,
            'day_of_month': time_pattern.day_of_month,
            'hour_of_day': time_pattern.hour_of_day,
            'minute': time_pattern.minute,
        }
        trigger = SOPDraftStep(
            id='schedule-trigger',
            name='Schedule Trigger',
            type=StepType.AUTOMATED,
            description=f"Triggered {time_pattern.description[:1].lower()}{time_pattern.description[1:]}",
            config={'schedule': {k: v for k, v in schedule.items() if v is not None}},
        )
        steps = [trigger] + self.steps_from_sequence(time_pattern.action_pattern.sequence)
        metadata = {
            'name': f"Scheduled: {time_pattern.description}",
            'description': (
                f"Recurring workflow that runs {time_pattern.description.lower()} "
                f"with {len(steps) - 1} steps"
            ),
            'function': 'Scheduled Tasks',
        }
        return self._new_draft(
            organization_id=organization_id,
            metadata=metadata,
            steps=steps,
            source_pattern_id=source_pattern_id,
            source_type=PatternType.TIME,
            confidence=confidence,
            method='template',
        )

    def _new_draft(
        self,
        organization_id: str,
        metadata: Dict[str, str],
        steps: List[SOPDraftStep],
        source_pattern_id: Optional[str],
        source_type: PatternType,
        confidence: float,
        method: str,
    ) -> SOPDraft:
        draft = SOPDraft(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            name=metadata['name'],
            description=metadata['description'],
            function=metadata['function'],
            steps=steps,
            source_pattern_id=source_pattern_id,
            source_type=source_type,
            confidence=confidence,
            generation_method=method,
        )
        logger.info(
            f"Drafted SOP '{draft.name}' ({len(steps)} steps) for {organization_id} "
            f"from {source_type.value} pattern {source_pattern_id}"
        )
        return draft

    def steps_from_sequence(self, sequence: List[str]) -> List[SOPDraftStep]:
        """Map canonical action tokens to SOP steps."""
        steps = []
        for index, token in enumerate(sequence, start=1):
            kind, _, identifier = token.partition(':')
            step_id = f"step-{index}"
            if kind == 'agent' and identifier:
                step = SOPDraftStep(
                    id=step_id,
                    name=f"Agent: {format_id(identifier)}",
                    type=StepType.AUTOMATED,
                    agent_id=identifier,
                    description=f"Delegate to {format_id(identifier)} agent",
                )
            elif kind == 'tool' and identifier:
                step = SOPDraftStep(
                    id=step_id,
                    name=f"Tool: {format_id(identifier)}",
                    type=StepType.AUTOMATED,
                    tool_name=identifier,
                    description=f"Execute {format_id(identifier)} tool",
                )
            elif kind == 'workflow' and identifier:
                step = SOPDraftStep(
                    id=step_id,
                    name=f"Workflow: {format_id(identifier)}",
                    type=StepType.AUTOMATED,
                    description=f"Run workflow {format_id(identifier)}",
                    config={'workflow_id': identifier},
                )
            elif token == 'approval':
                step = SOPDraftStep(
                    id=step_id,
                    name='Approval Required',
                    type=StepType.APPROVAL,
                    description='Requires manual approval to continue',
                    required_approvers=[],
                )
            else:
                label = identifier or token
                step = SOPDraftStep(
                    id=step_id,
                    name=f"Action: {format_id(label)}",
                    type=StepType.MANUAL,
                    description=f"Manual step: {label}",
                )
            steps.append(step)
        return steps

    def infer_function(self, text: str) -> str:
        """Department for an agent id or entity list, by keyword."""
        words = [w for w in re.split(r'[^a-z0-9]+', text.lower()) if w]
        for keywords, function in self.FUNCTION_KEYWORDS:
            if any(w.startswith(k) for w in words for k in keywords):
                return function
        return self.DEFAULT_FUNCTION

    def _generate_metadata(
        self, sequence: List[str], steps: List[SOPDraftStep]
    ) -> Tuple[Dict[str, str], str]:
        prompt = (
            "Generate metadata for a standard operating procedure with these steps:\n"
            + "\n".join(f"- {s.name}: {s.description}" for s in steps)
            + "\n\nReturn only JSON in this format:\n"
            '{"name": "Short SOP name (max 50 chars)", '
            '"description": "One sentence description", '
            '"function": "Department or functional area"}'
        )
        try:
            data = extract_json(
                self.completion_service.complete(prompt, self.METADATA_MAX_TOKENS), dict
            )
            metadata = {k: str(data.get(k, '')).strip() for k in ('name', 'description', 'function')}
            if not all(metadata.values()):
                raise CompletionError(f"Incomplete metadata: {sorted(data)}")
            return metadata, 'ai'
        except CompletionUnavailableError:
            logger.debug("No completion service, using template metadata")
        except Exception as e:
            logger.warning(f"Failed to generate SOP metadata, using fallback: {e}")

        agents = [t.partition(':')[2] for t in sequence if t.startswith('agent:')]
        primary_agent = agents[0] if agents else 'general'
        fallback = {
            'name': f"Auto: {format_id(primary_agent)} Workflow",
            'description': (
                f"Automated workflow with {len(steps)} steps detected from user patterns"
            ),
            'function': self.infer_function(primary_agent),
        }
        return fallback, 'template'

    def _steps_from_cluster(self, cluster: RequestCluster) -> Tuple[List[SOPDraftStep], str]:
        samples = [r.text for r in cluster.requests[:self.CLUSTER_SAMPLE_SIZE]]
        prompt = (
            "Based on these similar user requests, suggest 2-4 automation steps "
            "for a standard operating procedure.\n\nRequests:\n"
            + "\n".join(f'{i}. "{s}"' for i, s in enumerate(samples, start=1))
            + f"\n\nCommon intent: {cluster.common_intent}\n\n"
            "Return only a JSON array in this format:\n"
            '[{"name": "Step name", "type": "automated|manual|approval", '
            '"description": "What this step does"}]'
        )
        try:
            raw_steps = extract_json(
                self.completion_service.complete(prompt, self.STEPS_MAX_TOKENS), list
            )
            return self._parse_suggested_steps(raw_steps), 'ai'
        except CompletionUnavailableError:
            logger.debug(f"No completion service, using template steps for {cluster.id}")
        except Exception as e:
            logger.warning(f"Failed to generate steps for cluster {cluster.id}, using fallback: {e}")

        intent = cluster.common_intent or "similar"
        fallback = [
            SOPDraftStep(
                id='step-1',
                name='Receive Request',
                type=StepType.AUTOMATED,
                description=f"Receive and parse {intent} request",
            ),
            SOPDraftStep(
                id='step-2',
                name='Process Request',
                type=StepType.MANUAL,
                description=f"Process the {intent} request",
            ),
            SOPDraftStep(
                id='step-3',
                name='Complete',
                type=StepType.AUTOMATED,
                description='Finalize and respond to request',
            ),
        ]
        return fallback, 'template'

    @staticmethod
    def _parse_suggested_steps(raw_steps: List[Any]) -> List[SOPDraftStep]:
        if not 2 <= len(raw_steps) <= 4:
            raise CompletionError(f"Expected 2-4 steps, got {len(raw_steps)}")
        steps = []
        for index, raw in enumerate(raw_steps, start=1):
            if not isinstance(raw, dict) or not str(raw.get('name', '')).strip():
                raise CompletionError(f"Malformed step {index}: {raw!r}")
            try:
                step_type = StepType(str(raw.get('type', 'manual')).lower())
            except ValueError:
                step_type = StepType.MANUAL
            steps.append(SOPDraftStep(
                id=f"step-{index}",
                name=str(raw['name']).strip(),
                type=step_type,
                description=str(raw.get('description', '')).strip(),
                required_approvers=[] if step_type == StepType.APPROVAL else None,
            ))
        return steps

    # =========================================================================
    # Rendering
    # =========================================================================

    def to_yaml(self, draft: SOPDraft) -> str:
        """
        Render a draft as an SOP YAML document.

        Rendering is a pure function of the draft: identical drafts give
        byte-identical output.
        """
        trigger_key = re.sub(r'\s+', '_', draft.name.lower())
        document = {
            'metadata': {
                'id': draft.id,
                'name': draft.name,
                'description': draft.description,
                'function': draft.function,
                'owner': self.OWNER,
                'version': self.VERSION,
                'status': draft.status.value,
                'generated_from': {
                    'pattern_id': draft.source_pattern_id,
                    'type': draft.source_type.value,
                    'confidence': round(float(draft.confidence), 4),
                    'method': draft.generation_method,
                },
            },
            'triggers': [
                {'pattern': f"auto:{trigger_key}"},
            ],
            'steps': [self._step_document(step) for step in draft.steps],
            'exception_handling': [
                {
                    'condition': 'step.failed',
                    'action': 'notify_owner',
                    'message': f"Step {{{{step.name}}}} failed in {draft.name}",
                },
            ],
        }
        return yaml.safe_dump(
            document,
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True,
            width=1000,
        )

    @staticmethod
    def _step_document(step: SOPDraftStep) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            'id': step.id,
            'name': step.name,
            'type': step.type.value,
        }
        if step.agent_id:
            document['agent'] = step.agent_id
        if step.tool_name:
            document['tool'] = step.tool_name
        document['description'] = step.description
        document['input'] = dict(step.config) if step.config else {}
        document['requires_approval'] = step.type == StepType.APPROVAL
        if step.required_approvers is not None:
            document['approvers'] = list(step.required_approvers)
        if step.timeout_minutes:
            document['timeout'] = f"{step.timeout_minutes}m"
        if step.skippable is not None:
            document['skippable'] = step.skippable
        return document

    # =========================================================================
    # Review lifecycle
    # =========================================================================

    def submit_for_review(self, draft_id: str, reviewers: List[str]) -> SOPDraft:
        """
        Move a draft to pending review.

        Raises:
            NotFoundError: If the draft does not exist
            ConflictError: If the draft is not in 'draft' status
        """
        updated = self.draft_store.update_draft_status(
            draft_id, DraftStatus.PENDING_REVIEW, reviewers=list(reviewers),
            expected_statuses=(DraftStatus.DRAFT,),
        )
        logger.info(f"SOP draft {draft_id} submitted for review by {reviewers}")
        return updated

    def approve_draft(self, draft_id: str, reviewer_id: str) -> SOPDraft:
        """
        Approve a draft and mark its source pattern converted.

        The draft moves first, and only if it is still in the status it
        was read in; a concurrent review gets a ConflictError. If marking
        the pattern then fails, the draft goes back to its prior status.

        Raises:
            NotFoundError: If the draft does not exist
            ConflictError: If the draft was already approved or rejected
        """
        draft = self._require_draft(draft_id)
        self._check_open(draft, DraftStatus.APPROVED)

        updated = self.draft_store.update_draft_status(
            draft_id, DraftStatus.APPROVED, reviewer=reviewer_id,
            expected_statuses=(draft.status,),
        )
        try:
            self._convert_source_pattern(updated)
        except Exception as e:
            logger.error(f"Could not convert source pattern of SOP draft {draft_id}: {e}")
            self.draft_store.update_draft_status(
                draft_id, draft.status, expected_statuses=(DraftStatus.APPROVED,)
            )
            raise

        logger.info(f"SOP draft {draft_id} approved by {reviewer_id}")
        return updated

    def reject_draft(self, draft_id: str, reviewer_id: str, reason: str) -> SOPDraft:
        """
        Reject a draft.

        Raises:
            ValidationError: If the reason is empty
            NotFoundError: If the draft does not exist
            ConflictError: If the draft was already approved or rejected
        """
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        updated = self.draft_store.update_draft_status(
            draft_id, DraftStatus.REJECTED, reviewer=reviewer_id, reason=reason.strip(),
            expected_statuses=self.OPEN_STATUSES,
        )
        logger.info(f"SOP draft {draft_id} rejected by {reviewer_id}: {reason}")
        return updated

    def _require_draft(self, draft_id: str) -> SOPDraft:
        draft = self.draft_store.get_draft(draft_id)
        if draft is None:
            raise NotFoundError('SOP draft', draft_id)
        return draft

    @staticmethod
    def _check_open(draft: SOPDraft, requested: DraftStatus):
        if draft.status.is_terminal:
            raise ConflictError('SOP draft', draft.id, draft.status.value, requested.value)

    def _convert_source_pattern(self, draft: SOPDraft):
        if self.pattern_store is None or not draft.source_pattern_id:
            return
        pattern = self.pattern_store.get_pattern(draft.source_pattern_id)
        if pattern is None:
            logger.warning(
                f"Source pattern {draft.source_pattern_id} of draft {draft.id} not found"
            )
            return
        self.pattern_store.update_pattern_status(
            pattern.id, PatternStatus.CONVERTED, sop_draft_id=draft.id
        )
