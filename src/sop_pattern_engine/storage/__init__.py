"""
Pattern and draft persistence.
"""

from .stores import (
    DraftFilter,
    DraftStore,
    InMemoryDraftStore,
    InMemoryPatternStore,
    JsonFileDraftStore,
    JsonFilePatternStore,
    PatternFilter,
    PatternStore,
)

__all__ = [
    'DraftFilter',
    'DraftStore',
    'InMemoryDraftStore',
    'InMemoryPatternStore',
    'JsonFileDraftStore',
    'JsonFilePatternStore',
    'PatternFilter',
    'PatternStore',
]
