"""
Pytest configuration and fixtures for SOP pattern engine tests.
"""

import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from sop_pattern_engine.completion import TextCompletionService
from sop_pattern_engine.models import ActionEvent, ActionSequence
from sop_pattern_engine.storage.stores import InMemoryDraftStore, InMemoryPatternStore


# Fixed "now" used by stores and detectors under test: Monday 2026-03-02 12:00 UTC
FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeCompletionService(TextCompletionService):
    """Completion service returning canned responses, recording prompts."""

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.prompts = []

    def complete(self, prompt: str, max_tokens: int) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if not self.responses:
            return ""
        return self.responses.pop(0)


def _parse_token(token: str) -> dict:
    kind, _, identifier = token.partition(':')
    if kind == 'agent':
        return {'action_type': 'agent_call', 'agent_id': identifier}
    if kind == 'tool':
        return {'action_type': 'tool_use', 'tool_name': identifier}
    if kind == 'workflow':
        return {'action_type': 'workflow_run', 'workflow_id': identifier}
    if token == 'approval':
        return {'action_type': 'approval'}
    return {'action_type': identifier or token}


@pytest.fixture(autouse=True)
def no_anthropic_key(monkeypatch):
    """Keep detectors built without a completion service off the network."""
    monkeypatch.delenv('ANTHROPIC_API_KEY', raising=False)


@pytest.fixture
def fixed_now():
    """Reference time for lookback windows."""
    return FIXED_NOW


@pytest.fixture
def make_session():
    """
    Factory building the events of one session from mining tokens.

    Tokens use the canonical form ("agent:brand", "tool:notion", "approval").
    Actions are spaced ``step_seconds`` apart starting at ``start``.
    """
    def _make(session_id, tokens, start, user_id='u1', organization_id='org-1',
              step_seconds=60, request_text=None, duration_seconds=30.0):
        events = []
        for position, token in enumerate(tokens):
            events.append(ActionEvent(
                id=f"{session_id}-{position}",
                organization_id=organization_id,
                user_id=user_id,
                session_id=session_id,
                timestamp=start + timedelta(seconds=step_seconds * position),
                original_request=request_text if position == 0 else None,
                duration_seconds=duration_seconds,
                sequence_position=position,
                **_parse_token(token),
            ))
        return events
    return _make


@pytest.fixture
def make_sequence(make_session):
    """Factory building an ActionSequence from mining tokens."""
    def _make(session_id, tokens, start, user_id='u1', organization_id='org-1', **kwargs):
        return ActionSequence(
            session_id=session_id,
            user_id=user_id,
            organization_id=organization_id,
            actions=make_session(session_id, tokens, start, user_id=user_id,
                                 organization_id=organization_id, **kwargs),
        )
    return _make


@pytest.fixture
def pattern_store():
    return InMemoryPatternStore()


@pytest.fixture
def draft_store():
    return InMemoryDraftStore()


@pytest.fixture
def fake_completion():
    """Factory for FakeCompletionService instances."""
    return FakeCompletionService


@pytest.fixture
def dark_mode_texts():
    """Four similarly phrased requests plus one unrelated request."""
    return [
        "Please enable dark mode in the dashboard",
        "Can you enable dark mode for the dashboard",
        "Enable dark mode on my dashboard please",
        "I want dark mode enabled on the dashboard",
        "Reset my password for the email account",
    ]
