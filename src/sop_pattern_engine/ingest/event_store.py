"""
Action event stores.

The pipeline reads action sequences through ActionEventStore. Two
implementations ship with the package:
- InMemoryActionEventStore: events added programmatically
- JsonActionEventStore: events loaded from a JSON file, accepting both
  snake_case and camelCase field names

Events are grouped per session, ordered by sequence position and then
timestamp, and filtered to the lookback window.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..models import ActionEvent, ActionSequence, utc_now

logger = logging.getLogger(__name__)


class ActionEventStore(ABC):
    """Read-only source of action sequences."""

    @abstractmethod
    def get_action_sequences(
        self, organization_id: str, min_length: int, lookback_days: int
    ) -> List[ActionSequence]:
        """
        Fetch sessions for an organization.

        Args:
            organization_id: Organization to read
            min_length: Sessions with fewer actions are skipped
            lookback_days: Only actions newer than now minus this many days

        Returns:
            Action sequences ordered by session start
        """
        pass


class InMemoryActionEventStore(ActionEventStore):
    """Action event store kept in process memory."""

    def __init__(
        self,
        events: Optional[Iterable[ActionEvent]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the store.

        Args:
            events: Initial events
            clock: Returns the current time; used for the lookback window
        """
        self._events: List[ActionEvent] = []
        self._lock = threading.Lock()
        self.clock = clock or utc_now
        if events:
            self.add_events(events)

    def add_events(self, events: Iterable[ActionEvent]) -> int:
        events = list(events)
        with self._lock:
            self._events.extend(events)
        return len(events)

    def __len__(self) -> int:
        return len(self._events)

    def get_action_sequences(
        self, organization_id: str, min_length: int, lookback_days: int
    ) -> List[ActionSequence]:
        cutoff = self.clock() - timedelta(days=lookback_days)
        with self._lock:
            events = [
                e for e in self._events
                if e.organization_id == organization_id and e.timestamp >= cutoff
            ]

        by_session: Dict[str, List[ActionEvent]] = defaultdict(list)
        for event in events:
            by_session[event.session_id].append(event)

        sequences = []
        for session_id, actions in by_session.items():
            if len(actions) < min_length:
                continue
            actions.sort(key=lambda e: (e.sequence_position, e.timestamp))
            sequences.append(ActionSequence(
                session_id=session_id,
                user_id=actions[0].user_id,
                organization_id=organization_id,
                actions=actions,
            ))

        sequences.sort(key=lambda s: (s.start_time, s.session_id))
        logger.info(
            f"Loaded {len(sequences)} sequences ({len(events)} actions) "
            f"for {organization_id} over {lookback_days} days"
        )
        return sequences


@dataclass
class EventLoadResult:
    """Result of loading an event file."""
    loaded: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


class JsonActionEventStore(InMemoryActionEventStore):
    """Action event store backed by a JSON file."""

    # Field name mappings: normalized name -> accepted source names
    FIELD_MAPPINGS = {
        'id': ['id', 'event_id', 'eventId'],
        'organization_id': ['organization_id', 'organizationId', 'org_id', 'orgId'],
        'user_id': ['user_id', 'userId'],
        'session_id': ['session_id', 'sessionId'],
        'action_type': ['action_type', 'actionType', 'type'],
        'timestamp': ['timestamp', 'time', 'created_at', 'createdAt'],
        'agent_id': ['agent_id', 'agentId'],
        'workflow_id': ['workflow_id', 'workflowId'],
        'tool_name': ['tool_name', 'toolName'],
        'original_request': ['original_request', 'originalRequest', 'request'],
        'success': ['success'],
        'duration_seconds': ['duration_seconds', 'durationSeconds'],
        'sequence_position': ['sequence_position', 'sequencePosition', 'position'],
        'metadata': ['metadata'],
    }

    REQUIRED_FIELDS = ['id', 'organization_id', 'user_id', 'session_id', 'action_type', 'timestamp']

    # Wrapper keys tried when the file holds an object instead of a list
    WRAPPER_KEYS = ['events', 'actions', 'data', 'items']

    def __init__(self, path: Path, clock: Optional[Callable[[], datetime]] = None):
        super().__init__(clock=clock)
        self.path = Path(path)
        self.load_result = self.load(self.path)

    def load(self, path: Path) -> EventLoadResult:
        """
        Load events from a JSON file.

        Raises:
            FileNotFoundError: If the file does not exist
            json.JSONDecodeError: If the file is not valid JSON
        """
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if isinstance(data, dict):
            for key in self.WRAPPER_KEYS:
                if key in data:
                    data = data[key]
                    break
            else:
                data = [data]

        result = EventLoadResult()
        events = []
        for raw in data:
            if not isinstance(raw, dict):
                result.skipped += 1
                result.errors.append(f"Not an event object: {raw!r}")
                continue
            record = self._normalize_record(raw)
            missing = [f for f in self.REQUIRED_FIELDS if record.get(f) in (None, '')]
            if missing:
                result.skipped += 1
                result.errors.append(f"Event {record.get('id')} missing {missing}")
                continue
            if 'duration_seconds' not in record and 'durationMs' in raw:
                record['duration_seconds'] = float(raw['durationMs']) / 1000.0
            try:
                events.append(ActionEvent.from_dict(record))
            except (TypeError, ValueError) as e:
                result.skipped += 1
                result.errors.append(f"Event {record.get('id')}: {e}")

        result.loaded = self.add_events(events)
        if result.skipped:
            logger.warning(f"Skipped {result.skipped} invalid events in {path}")
        logger.info(f"Loaded {result.loaded} events from {path}")
        return result

    def _normalize_record(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        normalized = {}
        for norm_name, possible_names in self.FIELD_MAPPINGS.items():
            for name in possible_names:
                if name in raw:
                    normalized[norm_name] = raw[name]
                    break
        return normalized


def save_events(events: Iterable[ActionEvent], path: Path) -> Path:
    """Write events as a JSON list readable by JsonActionEventStore."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump([e.to_dict() for e in events], f, indent=2, default=str)
    return path
