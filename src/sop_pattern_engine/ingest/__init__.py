"""
Action event ingestion: stores that group events into ordered sessions.
"""

from .event_store import (
    ActionEventStore,
    EventLoadResult,
    InMemoryActionEventStore,
    JsonActionEventStore,
    save_events,
)

__all__ = [
    'ActionEventStore',
    'EventLoadResult',
    'InMemoryActionEventStore',
    'JsonActionEventStore',
    'save_events',
]
