"""
Configuration settings for the SOP Pattern Engine.

Each pipeline stage takes a small options dataclass. Out-of-range values
are never rejected: ``clamped()`` returns a copy pulled back into the
safe range and logs what it changed.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, Optional

from . import DEFAULT_CONFIG

logger = logging.getLogger(__name__)


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _clamp(name: str, value: float, low: float, high: Optional[float] = None) -> float:
    clamped = max(low, value)
    if high is not None:
        clamped = min(high, clamped)
    if clamped != value:
        logger.warning(f"Option {name}={value} out of range, using {clamped}")
    return clamped


@dataclass
class SequenceMiningOptions:
    """Options for frequent action sequence mining."""

    min_support: int = DEFAULT_CONFIG["min_support"]
    min_length: int = DEFAULT_CONFIG["min_sequence_length"]
    max_length: int = DEFAULT_CONFIG["max_sequence_length"]
    # Consecutive actions further apart than this start a new window
    max_gap_hours: float = DEFAULT_CONFIG["max_gap_hours"]
    # Upper bound on candidate extensions tried per mining run
    max_expansions: int = 100_000

    def clamped(self) -> "SequenceMiningOptions":
        min_support = int(_clamp("min_support", self.min_support, 1))
        min_length = int(_clamp("min_length", self.min_length, 1))
        max_length = int(_clamp("max_length", self.max_length, min_length))
        max_gap_hours = self.max_gap_hours
        if max_gap_hours is None or max_gap_hours <= 0:
            logger.warning(f"Option max_gap_hours={max_gap_hours} out of range, using default")
            max_gap_hours = DEFAULT_CONFIG["max_gap_hours"]
        max_expansions = int(_clamp("max_expansions", self.max_expansions, 1))
        return replace(
            self,
            min_support=min_support,
            min_length=min_length,
            max_length=max_length,
            max_gap_hours=float(max_gap_hours),
            max_expansions=max_expansions,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SequenceMiningOptions":
        return cls(**_known_fields(cls, data))


@dataclass
class ClusteringOptions:
    """Options for free-text request clustering."""

    min_cluster_size: int = DEFAULT_CONFIG["min_cluster_size"]
    similarity_threshold: float = DEFAULT_CONFIG["similarity_threshold"]

    def clamped(self) -> "ClusteringOptions":
        return replace(
            self,
            min_cluster_size=int(_clamp("min_cluster_size", self.min_cluster_size, 1)),
            similarity_threshold=float(
                _clamp("similarity_threshold", self.similarity_threshold, 0.0, 1.0)
            ),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusteringOptions":
        return cls(**_known_fields(cls, data))


@dataclass
class TimePatternOptions:
    """Options for periodic recurrence detection."""

    min_occurrences: int = DEFAULT_CONFIG["min_occurrences"]
    tolerance_hours: float = DEFAULT_CONFIG["tolerance_hours"]
    # Share of occurrences the modal slot must hold to count as coherent
    min_slot_share: float = 0.5

    def clamped(self) -> "TimePatternOptions":
        return replace(
            self,
            min_occurrences=int(_clamp("min_occurrences", self.min_occurrences, 2)),
            tolerance_hours=float(_clamp("tolerance_hours", self.tolerance_hours, 0.0)),
            min_slot_share=float(_clamp("min_slot_share", self.min_slot_share, 0.0, 1.0)),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimePatternOptions":
        return cls(**_known_fields(cls, data))


@dataclass
class AnalyzeOptions:
    """Per-call options for PatternDetector.analyze."""

    lookback_days: int = DEFAULT_CONFIG["lookback_days"]
    min_support: Optional[int] = None
    generate_drafts: bool = False

    def clamped(self) -> "AnalyzeOptions":
        min_support = self.min_support
        if min_support is not None:
            min_support = int(_clamp("min_support", min_support, 1))
        return replace(
            self,
            lookback_days=int(_clamp("lookback_days", self.lookback_days, 1, 365)),
            min_support=min_support,
        )


@dataclass
class PatternDetectorConfig:
    """Main configuration for the analysis pipeline."""

    sequence: SequenceMiningOptions = field(default_factory=SequenceMiningOptions)
    clustering: ClusteringOptions = field(default_factory=ClusteringOptions)
    time: TimePatternOptions = field(default_factory=TimePatternOptions)
    min_confidence_for_sop: float = DEFAULT_CONFIG["min_confidence_for_sop"]

    def clamped(self) -> "PatternDetectorConfig":
        return replace(
            self,
            sequence=self.sequence.clamped(),
            clustering=self.clustering.clamped(),
            time=self.time.clamped(),
            min_confidence_for_sop=float(
                _clamp("min_confidence_for_sop", self.min_confidence_for_sop, 0.0, 1.0)
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternDetectorConfig":
        return cls(
            sequence=SequenceMiningOptions.from_dict(data.get("sequence", {})),
            clustering=ClusteringOptions.from_dict(data.get("clustering", {})),
            time=TimePatternOptions.from_dict(data.get("time", {})),
            min_confidence_for_sop=data.get(
                "min_confidence_for_sop", DEFAULT_CONFIG["min_confidence_for_sop"]
            ),
        )
