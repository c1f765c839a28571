"""
Tests for the text completion services.
"""

import httpx
import anthropic
import pytest
from types import SimpleNamespace

from sop_pattern_engine.completion import (
    AnthropicCompletionService,
    DisabledCompletionService,
    default_completion_service,
    extract_json,
)
from sop_pattern_engine.errors import CompletionError, CompletionUnavailableError


class FakeMessages:
    def __init__(self, content=None, error=None):
        self.content = content or []
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=self.content)


def fake_client(content=None, error=None):
    return SimpleNamespace(messages=FakeMessages(content, error))


class TestDisabledService:
    def test_always_unavailable(self):
        with pytest.raises(CompletionUnavailableError):
            DisabledCompletionService().complete("anything", 10)

    def test_unavailable_is_a_completion_error(self):
        assert issubclass(CompletionUnavailableError, CompletionError)


class TestAnthropicService:
    """Tests for the Anthropic-backed service with a stubbed client."""

    def test_joins_text_blocks(self):
        client = fake_client(content=[
            SimpleNamespace(type='text', text='Weekly '),
            SimpleNamespace(type='tool_use', text='ignored'),
            SimpleNamespace(type='text', text='brand review \n'),
        ])
        service = AnthropicCompletionService(model='test-model', client=client)

        assert service.complete("Name this", 50) == 'Weekly brand review'
        call = client.messages.calls[0]
        assert call['model'] == 'test-model'
        assert call['max_tokens'] == 50
        assert call['messages'] == [{'role': 'user', 'content': 'Name this'}]

    def test_default_model(self):
        service = AnthropicCompletionService(client=fake_client())
        assert service.model == AnthropicCompletionService.DEFAULT_MODEL

    def test_empty_response(self):
        service = AnthropicCompletionService(client=fake_client(content=[]))
        with pytest.raises(CompletionError):
            service.complete("Name this", 50)

    def test_api_error_wrapped(self):
        error = anthropic.APIConnectionError(
            request=httpx.Request('POST', 'https://api.anthropic.com/v1/messages')
        )
        service = AnthropicCompletionService(client=fake_client(error=error))
        with pytest.raises(CompletionError):
            service.complete("Name this", 50)

    def test_from_env_without_key(self, monkeypatch):
        monkeypatch.delenv('ANTHROPIC_API_KEY', raising=False)
        assert AnthropicCompletionService.from_env() is None
        assert isinstance(default_completion_service(), DisabledCompletionService)

    def test_from_env_with_key(self, monkeypatch):
        monkeypatch.setenv('ANTHROPIC_API_KEY', 'test-key')
        monkeypatch.setenv('SOP_ENGINE_MODEL', 'env-model')
        service = AnthropicCompletionService.from_env()
        assert service.model == 'env-model'
        assert isinstance(default_completion_service(), AnthropicCompletionService)


class TestExtractJson:
    """Tests for pulling JSON out of completion text."""

    def test_object_in_prose(self):
        text = 'Sure! Here it is:\n```json\n{"name": "Review", "function": "Marketing"}\n```'
        assert extract_json(text) == {'name': 'Review', 'function': 'Marketing'}

    def test_array(self):
        assert extract_json('Steps: [{"name": "a"}, {"name": "b"}]', list) == [
            {'name': 'a'}, {'name': 'b'}
        ]

    @pytest.mark.parametrize("text,expect", [
        ('no json here', dict),
        ('{"name": ', dict),
        ('{"name": "x"}', list),
        ('', dict),
        (None, dict),
    ])
    def test_errors(self, text, expect):
        with pytest.raises(CompletionError):
            extract_json(text, expect)
