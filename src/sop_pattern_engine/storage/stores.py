"""
Pattern and draft persistence.

PatternStore and DraftStore are the only seams through which detected
patterns and SOP drafts are written. In-memory implementations keep
state per process; the JSON-file variants additionally write the full
state to a directory after every change.

Detected patterns are upserted on (organization, type, data id): a
re-run of the analysis refreshes an existing record's data and
confidence but keeps its id and status, so a dismissed pattern stays
dismissed.

Every write is applied to a copy of the record and only kept if saving
succeeds: a failed file write leaves the store exactly as it was.
"""

import copy
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import ConflictError, NotFoundError
from ..models import (
    DetectedPattern,
    DraftStatus,
    PatternData,
    PatternStatus,
    PatternType,
    SOPDraft,
    utc_now,
)

logger = logging.getLogger(__name__)


MAX_PAGE_SIZE = 100


@dataclass
class PatternFilter:
    """Query filters for listing detected patterns."""
    type: Optional[PatternType] = None
    status: Optional[PatternStatus] = None
    min_confidence: Optional[float] = None
    limit: int = 20
    offset: int = 0

    def __post_init__(self):
        self.limit = min(max(int(self.limit), 1), MAX_PAGE_SIZE)
        self.offset = max(int(self.offset), 0)
        if self.min_confidence is not None:
            self.min_confidence = min(max(float(self.min_confidence), 0.0), 1.0)

    def matches(self, pattern: DetectedPattern) -> bool:
        if self.type is not None and pattern.type != self.type:
            return False
        if self.status is not None and pattern.status != self.status:
            return False
        if self.min_confidence is not None and pattern.confidence < self.min_confidence:
            return False
        return True


@dataclass
class DraftFilter:
    """Query filters for listing SOP drafts."""
    status: Optional[DraftStatus] = None
    limit: int = 20
    offset: int = 0

    def __post_init__(self):
        self.limit = min(max(int(self.limit), 1), MAX_PAGE_SIZE)
        self.offset = max(int(self.offset), 0)

    def matches(self, draft: SOPDraft) -> bool:
        return self.status is None or draft.status == self.status


class PatternStore(ABC):
    """Persistence for detected patterns."""

    @abstractmethod
    def create_detected_pattern(
        self,
        organization_id: str,
        pattern_type: PatternType,
        data: PatternData,
        frequency: int,
        confidence: float,
    ) -> DetectedPattern:
        pass

    @abstractmethod
    def update_pattern_status(
        self,
        pattern_id: str,
        status: PatternStatus,
        sop_draft_id: Optional[str] = None,
    ) -> DetectedPattern:
        """
        Set a pattern's status and draft link.

        Raises:
            NotFoundError: If the pattern does not exist
        """
        pass

    @abstractmethod
    def get_pattern(self, pattern_id: str) -> Optional[DetectedPattern]:
        pass

    @abstractmethod
    def list_patterns(
        self, organization_id: str, filters: Optional[PatternFilter] = None
    ) -> List[DetectedPattern]:
        pass


class DraftStore(ABC):
    """Persistence for SOP drafts."""

    @abstractmethod
    def create_sop_draft(self, draft: SOPDraft) -> SOPDraft:
        pass

    @abstractmethod
    def update_draft_status(
        self,
        draft_id: str,
        status: DraftStatus,
        reviewer: Optional[str] = None,
        reason: Optional[str] = None,
        reviewers: Optional[List[str]] = None,
        expected_statuses: Optional[Iterable[DraftStatus]] = None,
    ) -> SOPDraft:
        """
        Set a draft's status and review fields.

        The status check and the write happen under one lock, so of two
        concurrent transitions out of the same status only one succeeds.

        Args:
            expected_statuses: If given, the draft must currently be in
                one of these statuses

        Raises:
            NotFoundError: If the draft does not exist
            ConflictError: If the draft is not in an expected status
        """
        pass

    @abstractmethod
    def get_draft(self, draft_id: str) -> Optional[SOPDraft]:
        pass

    @abstractmethod
    def list_drafts(
        self, organization_id: str, filters: Optional[DraftFilter] = None
    ) -> List[SOPDraft]:
        pass


class InMemoryPatternStore(PatternStore):
    """Pattern store kept in process memory."""

    def __init__(self):
        self._patterns: Dict[str, DetectedPattern] = {}
        self._index: Dict[Tuple[str, PatternType, str], str] = {}
        self._lock = threading.Lock()

    def create_detected_pattern(
        self,
        organization_id: str,
        pattern_type: PatternType,
        data: PatternData,
        frequency: int,
        confidence: float,
    ) -> DetectedPattern:
        key = (organization_id, pattern_type, data.id)
        with self._lock:
            existing_id = self._index.get(key)
            if existing_id is not None:
                record = copy.deepcopy(self._patterns[existing_id])
                record.data = copy.deepcopy(data)
                record.frequency = frequency
                record.confidence = confidence
                record.updated_at = utc_now()
            else:
                record = DetectedPattern(
                    id=str(uuid.uuid4()),
                    organization_id=organization_id,
                    type=pattern_type,
                    data=copy.deepcopy(data),
                    frequency=frequency,
                    confidence=confidence,
                )
            self._commit(record, key)
            return copy.deepcopy(record)

    def update_pattern_status(
        self,
        pattern_id: str,
        status: PatternStatus,
        sop_draft_id: Optional[str] = None,
    ) -> DetectedPattern:
        with self._lock:
            current = self._patterns.get(pattern_id)
            if current is None:
                raise NotFoundError('Pattern', pattern_id)
            record = copy.deepcopy(current)
            record.status = status
            record.sop_draft_id = sop_draft_id
            record.updated_at = utc_now()
            self._commit(record)
            return copy.deepcopy(record)

    def get_pattern(self, pattern_id: str) -> Optional[DetectedPattern]:
        with self._lock:
            record = self._patterns.get(pattern_id)
            return copy.deepcopy(record) if record is not None else None

    def list_patterns(
        self, organization_id: str, filters: Optional[PatternFilter] = None
    ) -> List[DetectedPattern]:
        filters = filters or PatternFilter()
        with self._lock:
            matching = [
                p for p in self._patterns.values()
                if p.organization_id == organization_id and filters.matches(p)
            ]
            matching.sort(key=lambda p: (-p.confidence, p.created_at, p.id))
            page = matching[filters.offset:filters.offset + filters.limit]
            return copy.deepcopy(page)

    def _commit(self, record: DetectedPattern, key: Optional[Tuple] = None):
        """Swap in ``record`` and save; restores the prior state if saving fails."""
        previous = self._patterns.get(record.id)
        self._patterns[record.id] = record
        if key is not None:
            self._index[key] = record.id
        try:
            self._changed()
        except Exception:
            if previous is not None:
                self._patterns[record.id] = previous
            else:
                del self._patterns[record.id]
                if key is not None:
                    self._index.pop(key, None)
            raise

    def _changed(self):
        """Hook called with the lock held after every write."""


class InMemoryDraftStore(DraftStore):
    """Draft store kept in process memory."""

    def __init__(self):
        self._drafts: Dict[str, SOPDraft] = {}
        self._lock = threading.Lock()

    def create_sop_draft(self, draft: SOPDraft) -> SOPDraft:
        with self._lock:
            self._commit(copy.deepcopy(draft))
            return copy.deepcopy(draft)

    def update_draft_status(
        self,
        draft_id: str,
        status: DraftStatus,
        reviewer: Optional[str] = None,
        reason: Optional[str] = None,
        reviewers: Optional[List[str]] = None,
        expected_statuses: Optional[Iterable[DraftStatus]] = None,
    ) -> SOPDraft:
        with self._lock:
            current = self._drafts.get(draft_id)
            if current is None:
                raise NotFoundError('SOP draft', draft_id)
            if expected_statuses is not None and current.status not in set(expected_statuses):
                raise ConflictError('SOP draft', draft_id, current.status.value, status.value)
            record = copy.deepcopy(current)
            record.status = status
            if reviewers is not None:
                record.reviewers = list(reviewers)
            # Review fields belong to terminal states only
            if status.is_terminal:
                record.reviewed_by = reviewer
                record.reviewed_at = utc_now()
            else:
                record.reviewed_by = None
                record.reviewed_at = None
            if reason is not None:
                record.rejection_reason = reason
            self._commit(record)
            return copy.deepcopy(record)

    def get_draft(self, draft_id: str) -> Optional[SOPDraft]:
        with self._lock:
            record = self._drafts.get(draft_id)
            return copy.deepcopy(record) if record is not None else None

    def list_drafts(
        self, organization_id: str, filters: Optional[DraftFilter] = None
    ) -> List[SOPDraft]:
        filters = filters or DraftFilter()
        with self._lock:
            matching = [
                d for d in self._drafts.values()
                if d.organization_id == organization_id and filters.matches(d)
            ]
            matching.sort(key=lambda d: (d.generated_at, d.id), reverse=True)
            page = matching[filters.offset:filters.offset + filters.limit]
            return copy.deepcopy(page)

    def _commit(self, record: SOPDraft):
        previous = self._drafts.get(record.id)
        self._drafts[record.id] = record
        try:
            self._changed()
        except Exception:
            if previous is not None:
                self._drafts[record.id] = previous
            else:
                del self._drafts[record.id]
            raise

    def _changed(self):
        """Hook called with the lock held after every write."""


def _write_json(path: Path, records: List[Dict]):
    tmp_path = path.with_suffix(path.suffix + '.tmp')
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(records, f, indent=2, default=str)
    tmp_path.replace(path)


def _read_json(path: Path) -> List[Dict]:
    if not path.exists():
        return []
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


class JsonFilePatternStore(InMemoryPatternStore):
    """Pattern store persisted to ``<directory>/patterns.json``."""

    FILE_NAME = 'patterns.json'

    def __init__(self, directory: Path):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path = self.directory / self.FILE_NAME
        for raw in _read_json(self.path):
            record = DetectedPattern.from_dict(raw)
            self._patterns[record.id] = record
            self._index[(record.organization_id, record.type, record.data.id)] = record.id
        logger.debug(f"Loaded {len(self._patterns)} patterns from {self.path}")

    def _changed(self):
        _write_json(self.path, [p.to_dict() for p in self._patterns.values()])


class JsonFileDraftStore(InMemoryDraftStore):
    """Draft store persisted to ``<directory>/drafts.json``."""

    FILE_NAME = 'drafts.json'

    def __init__(self, directory: Path):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path = self.directory / self.FILE_NAME
        for raw in _read_json(self.path):
            record = SOPDraft.from_dict(raw)
            self._drafts[record.id] = record
        logger.debug(f"Loaded {len(self._drafts)} drafts from {self.path}")

    def _changed(self):
        _write_json(self.path, [d.to_dict() for d in self._drafts.values()])
