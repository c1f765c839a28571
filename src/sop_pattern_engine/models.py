"""
Data model for pattern detection and SOP drafting.

Covers the whole pipeline:
- ActionEvent / ActionSequence: raw input grouped per session
- SequencePattern, RequestCluster, TimePattern: the three pattern kinds
- DetectedPattern: persisted, organization-scoped wrapper with a status
- SOPDraft / SOPDraftStep: generated procedures and their review state
- PatternAnalysisResult: everything one analysis run produced

All timestamps are timezone-aware UTC. Naive datetimes and ISO strings
are interpreted as UTC. Durations are in seconds. Every entity
serializes to JSON-safe dicts via ``to_dict`` and back via ``from_dict``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def ensure_utc(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Coerce a datetime or ISO-8601 string to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ActionType(Enum):
    """Known kinds of recorded actions."""

    AGENT_CALL = "agent_call"
    WORKFLOW_RUN = "workflow_run"
    TOOL_USE = "tool_use"
    APPROVAL = "approval"


class PatternType(Enum):
    SEQUENCE = "sequence"
    CLUSTER = "cluster"
    TIME = "time"


class PatternStatus(Enum):
    ACTIVE = "active"
    DISMISSED = "dismissed"
    CONVERTED = "converted"


class TimePatternType(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class StepType(Enum):
    AUTOMATED = "automated"
    MANUAL = "manual"
    APPROVAL = "approval"


class DraftStatus(Enum):
    """Review lifecycle of an SOP draft."""

    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (DraftStatus.APPROVED, DraftStatus.REJECTED)


# =============================================================================
# Input
# =============================================================================

@dataclass(frozen=True)
class ActionEvent:
    """
    One recorded user or agent action.

    Attributes:
        action_type: One of ActionType's values; other strings are kept
            as-is and mined as generic actions
        original_request: Free text the user typed, when there was any
        sequence_position: Position of the action within its session
    """
    id: str
    organization_id: str
    user_id: str
    session_id: str
    action_type: str
    timestamp: datetime
    agent_id: Optional[str] = None
    workflow_id: Optional[str] = None
    tool_name: Optional[str] = None
    original_request: Optional[str] = None
    success: bool = True
    duration_seconds: float = 0.0
    sequence_position: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'timestamp', ensure_utc(self.timestamp))
        if isinstance(self.action_type, ActionType):
            object.__setattr__(self, 'action_type', self.action_type.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'user_id': self.user_id,
            'session_id': self.session_id,
            'action_type': self.action_type,
            'timestamp': _iso(self.timestamp),
            'agent_id': self.agent_id,
            'workflow_id': self.workflow_id,
            'tool_name': self.tool_name,
            'original_request': self.original_request,
            'success': self.success,
            'duration_seconds': self.duration_seconds,
            'sequence_position': self.sequence_position,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActionEvent':
        return cls(
            id=str(data['id']),
            organization_id=str(data['organization_id']),
            user_id=str(data['user_id']),
            session_id=str(data['session_id']),
            action_type=data['action_type'],
            timestamp=ensure_utc(data['timestamp']),
            agent_id=data.get('agent_id'),
            workflow_id=data.get('workflow_id'),
            tool_name=data.get('tool_name'),
            original_request=data.get('original_request'),
            success=bool(data.get('success', True)),
            duration_seconds=float(data.get('duration_seconds') or 0.0),
            sequence_position=int(data.get('sequence_position') or 0),
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass
class ActionSequence:
    """The ordered actions of one session."""
    session_id: str
    user_id: str
    organization_id: str
    actions: List[ActionEvent]

    @property
    def start_time(self) -> Optional[datetime]:
        return self.actions[0].timestamp if self.actions else None

    @property
    def end_time(self) -> Optional[datetime]:
        return self.actions[-1].timestamp if self.actions else None

    @property
    def duration_seconds(self) -> float:
        if not self.actions:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def __len__(self) -> int:
        return len(self.actions)


@dataclass
class RequestRecord:
    """A free-text request fed to the clusterer."""
    id: str
    text: str
    user_id: str
    timestamp: datetime

    def __post_init__(self):
        self.timestamp = ensure_utc(self.timestamp)


# =============================================================================
# Patterns
# =============================================================================

@dataclass
class SequencePattern:
    """
    A frequent ordered subsequence of canonical action tokens.

    ``frequency`` is the number of distinct sequences containing the
    subsequence. ``occurrence_timestamps`` holds the start of each
    supporting instance and feeds periodicity detection.
    """
    id: str
    sequence: List[str]
    frequency: int
    users: List[str]
    avg_duration: float
    first_seen: datetime
    last_seen: datetime
    confidence: float
    sop_candidate: bool = False
    occurrence_timestamps: List[datetime] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'sequence': list(self.sequence),
            'frequency': self.frequency,
            'users': list(self.users),
            'avg_duration': self.avg_duration,
            'first_seen': _iso(self.first_seen),
            'last_seen': _iso(self.last_seen),
            'confidence': self.confidence,
            'sop_candidate': self.sop_candidate,
            'occurrence_timestamps': [_iso(t) for t in self.occurrence_timestamps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SequencePattern':
        return cls(
            id=data['id'],
            sequence=list(data['sequence']),
            frequency=int(data['frequency']),
            users=list(data.get('users', [])),
            avg_duration=float(data.get('avg_duration', 0.0)),
            first_seen=ensure_utc(data['first_seen']),
            last_seen=ensure_utc(data['last_seen']),
            confidence=float(data.get('confidence', 0.0)),
            sop_candidate=bool(data.get('sop_candidate', False)),
            occurrence_timestamps=[
                ensure_utc(t) for t in data.get('occurrence_timestamps', [])
            ],
        )


@dataclass
class ClusteredRequest:
    """A request inside a cluster, with its distance to the cluster mean."""
    id: str
    text: str
    embedding: List[float]
    user_id: str
    timestamp: datetime
    distance: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'text': self.text,
            'embedding': list(self.embedding),
            'user_id': self.user_id,
            'timestamp': _iso(self.timestamp),
            'distance': self.distance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClusteredRequest':
        return cls(
            id=data['id'],
            text=data['text'],
            embedding=[float(x) for x in data.get('embedding', [])],
            user_id=data['user_id'],
            timestamp=ensure_utc(data['timestamp']),
            distance=float(data.get('distance', 0.0)),
        )


@dataclass
class RequestCluster:
    """A group of similar free-text requests."""
    id: str
    centroid: str
    requests: List[ClusteredRequest]
    common_intent: str
    common_entities: List[str]
    automatable: bool = False

    @property
    def size(self) -> int:
        return len(self.requests)

    @property
    def distinct_users(self) -> int:
        return len({r.user_id for r in self.requests})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'centroid': self.centroid,
            'requests': [r.to_dict() for r in self.requests],
            'size': self.size,
            'common_intent': self.common_intent,
            'common_entities': list(self.common_entities),
            'automatable': self.automatable,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RequestCluster':
        return cls(
            id=data['id'],
            centroid=data.get('centroid', ''),
            requests=[ClusteredRequest.from_dict(r) for r in data.get('requests', [])],
            common_intent=data.get('common_intent', ''),
            common_entities=list(data.get('common_entities', [])),
            automatable=bool(data.get('automatable', False)),
        )


@dataclass
class TimePattern:
    """
    A periodic recurrence of a sequence pattern.

    ``day_of_week`` counts from Sunday (0) to Saturday (6).
    """
    id: str
    type: TimePatternType
    description: str
    hour_of_day: int
    minute: int
    action_pattern: SequencePattern
    occurrences: int
    confidence: float
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'description': self.description,
            'day_of_week': self.day_of_week,
            'day_of_month': self.day_of_month,
            'hour_of_day': self.hour_of_day,
            'minute': self.minute,
            'action_pattern': self.action_pattern.to_dict(),
            'occurrences': self.occurrences,
            'confidence': self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimePattern':
        return cls(
            id=data['id'],
            type=TimePatternType(data['type']),
            description=data.get('description', ''),
            hour_of_day=int(data['hour_of_day']),
            minute=int(data.get('minute', 0)),
            action_pattern=SequencePattern.from_dict(data['action_pattern']),
            occurrences=int(data['occurrences']),
            confidence=float(data['confidence']),
            day_of_week=data.get('day_of_week'),
            day_of_month=data.get('day_of_month'),
        )


PatternData = Union[SequencePattern, RequestCluster, TimePattern]

_PATTERN_DATA_TYPES = {
    PatternType.SEQUENCE: SequencePattern,
    PatternType.CLUSTER: RequestCluster,
    PatternType.TIME: TimePattern,
}


@dataclass
class DetectedPattern:
    """A persisted pattern owned by one organization."""
    id: str
    organization_id: str
    type: PatternType
    data: PatternData
    frequency: int
    confidence: float
    status: PatternStatus = PatternStatus.ACTIVE
    sop_draft_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'type': self.type.value,
            'data': self.data.to_dict(),
            'frequency': self.frequency,
            'confidence': self.confidence,
            'status': self.status.value,
            'sop_draft_id': self.sop_draft_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DetectedPattern':
        pattern_type = PatternType(data['type'])
        return cls(
            id=data['id'],
            organization_id=data['organization_id'],
            type=pattern_type,
            data=_PATTERN_DATA_TYPES[pattern_type].from_dict(data['data']),
            frequency=int(data['frequency']),
            confidence=float(data['confidence']),
            status=PatternStatus(data.get('status', 'active')),
            sop_draft_id=data.get('sop_draft_id'),
            created_at=ensure_utc(data.get('created_at')) or utc_now(),
            updated_at=ensure_utc(data.get('updated_at')) or utc_now(),
        )


# =============================================================================
# Scoring
# =============================================================================

@dataclass
class ScoreFactors:
    """Normalized [0, 1] inputs to the automation-worthiness score."""
    frequency: float
    consistency: float
    user_diversity: float
    time_savings: float
    complexity: float

    def to_dict(self) -> Dict[str, float]:
        return {
            'frequency': self.frequency,
            'consistency': self.consistency,
            'user_diversity': self.user_diversity,
            'time_savings': self.time_savings,
            'complexity': self.complexity,
        }


@dataclass
class ScoredPattern:
    pattern: DetectedPattern
    score: float
    factors: ScoreFactors
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pattern': self.pattern.to_dict(),
            'score': self.score,
            'factors': self.factors.to_dict(),
            'recommendation': self.recommendation,
        }


# =============================================================================
# SOP drafts
# =============================================================================

@dataclass
class SOPDraftStep:
    """One step of a drafted procedure."""
    id: str
    name: str
    type: StepType
    description: str
    agent_id: Optional[str] = None
    tool_name: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    timeout_minutes: Optional[int] = None
    required_approvers: Optional[List[str]] = None
    skippable: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type.value,
            'description': self.description,
            'agent_id': self.agent_id,
            'tool_name': self.tool_name,
            'config': self.config,
            'timeout_minutes': self.timeout_minutes,
            'required_approvers': self.required_approvers,
            'skippable': self.skippable,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SOPDraftStep':
        return cls(
            id=data['id'],
            name=data['name'],
            type=StepType(data['type']),
            description=data.get('description', ''),
            agent_id=data.get('agent_id'),
            tool_name=data.get('tool_name'),
            config=data.get('config'),
            timeout_minutes=data.get('timeout_minutes'),
            required_approvers=data.get('required_approvers'),
            skippable=data.get('skippable'),
        )


@dataclass
class SOPDraft:
    """
    A generated candidate procedure.

    ``generation_method`` records whether name/steps came from the
    completion service ('ai') or the deterministic fallback ('template').
    """
    id: str
    organization_id: str
    name: str
    description: str
    function: str
    steps: List[SOPDraftStep]
    source_pattern_id: Optional[str]
    source_type: PatternType
    confidence: float
    status: DraftStatus = DraftStatus.DRAFT
    generation_method: str = 'template'
    generated_at: datetime = field(default_factory=utc_now)
    reviewers: List[str] = field(default_factory=list)
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'name': self.name,
            'description': self.description,
            'function': self.function,
            'steps': [s.to_dict() for s in self.steps],
            'source_pattern_id': self.source_pattern_id,
            'source_type': self.source_type.value,
            'confidence': self.confidence,
            'status': self.status.value,
            'generation_method': self.generation_method,
            'generated_at': _iso(self.generated_at),
            'reviewers': list(self.reviewers),
            'reviewed_by': self.reviewed_by,
            'reviewed_at': _iso(self.reviewed_at),
            'rejection_reason': self.rejection_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SOPDraft':
        return cls(
            id=data['id'],
            organization_id=data['organization_id'],
            name=data['name'],
            description=data.get('description', ''),
            function=data.get('function', 'General'),
            steps=[SOPDraftStep.from_dict(s) for s in data.get('steps', [])],
            source_pattern_id=data.get('source_pattern_id'),
            source_type=PatternType(data['source_type']),
            confidence=float(data.get('confidence', 0.0)),
            status=DraftStatus(data.get('status', 'draft')),
            generation_method=data.get('generation_method', 'template'),
            generated_at=ensure_utc(data.get('generated_at')) or utc_now(),
            reviewers=list(data.get('reviewers', [])),
            reviewed_by=data.get('reviewed_by'),
            reviewed_at=ensure_utc(data.get('reviewed_at')),
            rejection_reason=data.get('rejection_reason'),
        )


# =============================================================================
# Analysis result
# =============================================================================

@dataclass
class DraftFailure:
    """A candidate whose draft could not be built or stored."""
    pattern_id: str
    pattern_type: PatternType
    stage: str  # 'draft' or 'persist'
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pattern_id': self.pattern_id,
            'pattern_type': self.pattern_type.value,
            'stage': self.stage,
            'error': self.error,
        }


@dataclass
class PatternAnalysisResult:
    """Everything one analysis run produced for an organization."""
    organization_id: str
    analyzed_at: datetime
    lookback_days: int
    sequence_patterns: List[SequencePattern] = field(default_factory=list)
    request_clusters: List[RequestCluster] = field(default_factory=list)
    time_patterns: List[TimePattern] = field(default_factory=list)
    detected_patterns: List[DetectedPattern] = field(default_factory=list)
    sop_candidates: List[DetectedPattern] = field(default_factory=list)
    sop_drafts: List[SOPDraft] = field(default_factory=list)
    draft_failures: List[DraftFailure] = field(default_factory=list)
    total_actions_analyzed: int = 0
    total_sequences_found: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'organization_id': self.organization_id,
            'analyzed_at': _iso(self.analyzed_at),
            'lookback_days': self.lookback_days,
            'counts': {
                'sequence_patterns': len(self.sequence_patterns),
                'request_clusters': len(self.request_clusters),
                'time_patterns': len(self.time_patterns),
                'sop_candidates': len(self.sop_candidates),
                'sop_drafts': len(self.sop_drafts),
                'draft_failures': len(self.draft_failures),
            },
            'sequence_patterns': [p.to_dict() for p in self.sequence_patterns],
            'request_clusters': [c.to_dict() for c in self.request_clusters],
            'time_patterns': [t.to_dict() for t in self.time_patterns],
            'detected_patterns': [p.to_dict() for p in self.detected_patterns],
            'sop_candidates': [p.to_dict() for p in self.sop_candidates],
            'sop_drafts': [d.to_dict() for d in self.sop_drafts],
            'draft_failures': [f.to_dict() for f in self.draft_failures],
            'total_actions_analyzed': self.total_actions_analyzed,
            'total_sequences_found': self.total_sequences_found,
            'duration_seconds': self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PatternAnalysisResult':
        return cls(
            organization_id=data['organization_id'],
            analyzed_at=ensure_utc(data['analyzed_at']),
            lookback_days=int(data.get('lookback_days', 0)),
            sequence_patterns=[
                SequencePattern.from_dict(p) for p in data.get('sequence_patterns', [])
            ],
            request_clusters=[
                RequestCluster.from_dict(c) for c in data.get('request_clusters', [])
            ],
            time_patterns=[TimePattern.from_dict(t) for t in data.get('time_patterns', [])],
            detected_patterns=[
                DetectedPattern.from_dict(p) for p in data.get('detected_patterns', [])
            ],
            sop_candidates=[
                DetectedPattern.from_dict(p) for p in data.get('sop_candidates', [])
            ],
            sop_drafts=[SOPDraft.from_dict(d) for d in data.get('sop_drafts', [])],
            draft_failures=[
                DraftFailure(
                    pattern_id=f['pattern_id'],
                    pattern_type=PatternType(f['pattern_type']),
                    stage=f['stage'],
                    error=f['error'],
                )
                for f in data.get('draft_failures', [])
            ],
            total_actions_analyzed=int(data.get('total_actions_analyzed', 0)),
            total_sequences_found=int(data.get('total_sequences_found', 0)),
            duration_seconds=float(data.get('duration_seconds', 0.0)),
        )
