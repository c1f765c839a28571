"""
Sequence Mining Module for action logs.

Finds frequent ordered subsequences of actions across user sessions
using PrefixSpan-style projected-database growth:
- Each action maps to a canonical token (agent:<id>, tool:<name>, ...)
- Sessions are split into windows at gaps longer than max_gap_hours
- Support is the number of distinct windows containing the subsequence
- Only the first match per window counts, so repeated tokens never
  count one occurrence twice
"""

import hashlib
import logging
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import List, Optional

import numpy as np

from ..config import SequenceMiningOptions
from ..models import ActionEvent, ActionSequence, ActionType, SequencePattern
from ..scoring.pattern_scorer import sequence_complexity

logger = logging.getLogger(__name__)


def action_token(action: ActionEvent) -> str:
    """Map an action to its canonical mining token."""
    if action.action_type == ActionType.AGENT_CALL.value:
        return f"agent:{action.agent_id or 'unknown'}"
    if action.action_type == ActionType.WORKFLOW_RUN.value:
        return f"workflow:{action.workflow_id or 'unknown'}"
    if action.action_type == ActionType.TOOL_USE.value:
        return f"tool:{action.tool_name or 'unknown'}"
    if action.action_type == ActionType.APPROVAL.value:
        return "approval"
    return f"action:{action.action_type}"


def pattern_id_for(sequence: List[str]) -> str:
    digest = hashlib.sha256("→".join(sequence).encode('utf-8')).hexdigest()
    return f"SEQ-{digest[:12].upper()}"


@dataclass(frozen=True)
class _Item:
    token: str
    timestamp: datetime


@dataclass(frozen=True)
class _Window:
    owner: str
    items: List[_Item]


@dataclass(frozen=True)
class _Projection:
    window: int
    start: int  # position of the prefix's first match
    last: int   # position of the prefix's last match


@dataclass(frozen=True)
class _Instance:
    owner: str
    start: datetime
    end: datetime


class _BudgetExhausted(Exception):
    pass


class SequenceMiner:
    """
    Frequent action sequence miner.

    Mining is deterministic: candidate items are explored in sorted
    order and windows in input order.
    """

    # Scoring weights for score_pattern
    SCORE_WEIGHTS = {
        'frequency': 0.30,
        'users': 0.25,
        'complexity': 0.20,
        'confidence': 0.15,
        'duration': 0.10,
    }

    FREQUENCY_CAP = 10
    USER_CAP = 5
    DURATION_CAP_SECONDS = 300.0

    def __init__(self, options: Optional[SequenceMiningOptions] = None):
        self.options = (options or SequenceMiningOptions()).clamped()
        self.expansions = 0

    def mine(
        self,
        sequences: List[ActionSequence],
        options: Optional[SequenceMiningOptions] = None,
    ) -> List[SequencePattern]:
        """
        Mine frequent subsequences.

        Args:
            sequences: Action sequences, one per session
            options: Overrides the miner's default options

        Returns:
            Patterns ordered by discovery (depth first, tokens sorted)
        """
        opts = options.clamped() if options is not None else self.options
        if not sequences:
            return []

        windows = self._split_windows(sequences, opts.max_gap_hours)
        if not windows:
            return []

        counts = Counter()
        for window in windows:
            counts.update({item.token for item in window.items})
        frequent_items = sorted(t for t, c in counts.items() if c >= opts.min_support)
        if not frequent_items:
            return []

        logger.info(
            f"Mining {len(windows)} windows with {len(frequent_items)} frequent tokens "
            f"(min_support={opts.min_support})"
        )

        found: List[SequencePattern] = []
        self.expansions = 0
        root = [_Projection(window=i, start=-1, last=-1) for i in range(len(windows))]
        try:
            self._grow([], root, windows, frequent_items, opts, found)
        except _BudgetExhausted:
            logger.warning(
                f"Sequence mining stopped after {opts.max_expansions} expansions; "
                f"returning {len(found)} patterns found so far"
            )

        logger.info(f"Found {len(found)} sequence patterns")
        return found

    def _split_windows(
        self, sequences: List[ActionSequence], max_gap_hours: float
    ) -> List[_Window]:
        max_gap = timedelta(hours=max_gap_hours)
        windows = []
        for seq in sequences:
            current: List[_Item] = []
            previous: Optional[datetime] = None
            for action in seq.actions:
                if previous is not None and action.timestamp - previous > max_gap:
                    windows.append(_Window(owner=seq.user_id, items=current))
                    current = []
                current.append(_Item(token=action_token(action), timestamp=action.timestamp))
                previous = action.timestamp
            if current:
                windows.append(_Window(owner=seq.user_id, items=current))
        return windows

    def _grow(
        self,
        prefix: List[str],
        projections: List[_Projection],
        windows: List[_Window],
        frequent_items: List[str],
        opts: SequenceMiningOptions,
        found: List[SequencePattern],
    ):
        if len(prefix) >= opts.max_length or len(projections) < opts.min_support:
            return

        for token in frequent_items:
            self.expansions += 1
            if self.expansions > opts.max_expansions:
                raise _BudgetExhausted()

            instances: List[_Instance] = []
            projected: List[_Projection] = []
            for proj in projections:
                items = windows[proj.window].items
                pos = next(
                    (i for i in range(proj.last + 1, len(items)) if items[i].token == token),
                    None,
                )
                if pos is None:
                    continue
                start = proj.start if prefix else pos
                instances.append(_Instance(
                    owner=windows[proj.window].owner,
                    start=items[start].timestamp,
                    end=items[pos].timestamp,
                ))
                if pos + 1 < len(items):
                    projected.append(_Projection(window=proj.window, start=start, last=pos))

            if len(instances) < opts.min_support:
                continue

            extended = prefix + [token]
            if len(extended) >= opts.min_length:
                found.append(self._build_pattern(extended, instances))
            if projected:
                self._grow(extended, projected, windows, frequent_items, opts, found)

    def _build_pattern(self, sequence: List[str], instances: List[_Instance]) -> SequencePattern:
        support = len(instances)
        users = list(dict.fromkeys(inst.owner for inst in instances))
        durations = [(inst.end - inst.start).total_seconds() for inst in instances]
        starts = sorted(inst.start for inst in instances)
        return SequencePattern(
            id=pattern_id_for(sequence),
            sequence=list(sequence),
            frequency=support,
            users=users,
            avg_duration=float(np.mean(durations)),
            first_seen=starts[0],
            last_seen=max(inst.end for inst in instances),
            confidence=min(support / 10, 1.0),
            occurrence_timestamps=starts,
        )

    def score_pattern(self, pattern: SequencePattern) -> float:
        """
        Quick automation score used for pre-filtering mined patterns.

        Returns:
            Score in [0, 1]
        """
        components = {
            'frequency': min(pattern.frequency / self.FREQUENCY_CAP, 1.0),
            'users': min(len(pattern.users) / self.USER_CAP, 1.0),
            'complexity': sequence_complexity(len(pattern.sequence)),
            'confidence': pattern.confidence,
            'duration': min(pattern.avg_duration / self.DURATION_CAP_SECONDS, 1.0),
        }
        return sum(components[k] * w for k, w in self.SCORE_WEIGHTS.items())

    def filter_sop_candidates(
        self, patterns: List[SequencePattern], min_score: float = 0.5
    ) -> List[SequencePattern]:
        """
        Keep patterns scoring at least ``min_score``, best first.

        The returned patterns are copies whose confidence is the score
        and whose sop_candidate flag is set.
        """
        scored = [(self.score_pattern(p), p) for p in patterns]
        kept = [
            replace(p, confidence=score, sop_candidate=True)
            for score, p in scored
            if score >= min_score
        ]
        kept.sort(key=lambda p: p.confidence, reverse=True)
        return kept


def mine_sequences(
    sequences: List[ActionSequence],
    min_support: int = 3,
    min_length: int = 2,
    max_length: int = 10,
    max_gap_hours: float = 24.0,
) -> List[SequencePattern]:
    """
    Convenience function for sequence mining.

    Returns:
        Frequent sequence patterns
    """
    miner = SequenceMiner(SequenceMiningOptions(
        min_support=min_support,
        min_length=min_length,
        max_length=max_length,
        max_gap_hours=max_gap_hours,
    ))
    return miner.mine(sequences)
