"""
Text completion capability used for naming clusters and drafting SOPs.

Completion is always optional. Every caller catches failures and falls
back to deterministic text, so a missing API key only changes wording,
never whether a pattern or draft is produced.
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import anthropic

from .errors import CompletionError, CompletionUnavailableError

logger = logging.getLogger(__name__)


class TextCompletionService(ABC):
    """Abstract text completion backend."""

    @abstractmethod
    def complete(self, prompt: str, max_tokens: int) -> str:
        """
        Complete a prompt.

        Args:
            prompt: Prompt text
            max_tokens: Maximum tokens to generate

        Returns:
            Generated text

        Raises:
            CompletionError: If no usable text could be produced
        """
        pass


class DisabledCompletionService(TextCompletionService):
    """Completion backend that is always unavailable."""

    def complete(self, prompt: str, max_tokens: int) -> str:
        raise CompletionUnavailableError("Text completion is disabled")


class AnthropicCompletionService(TextCompletionService):
    """Completion backed by the Anthropic Messages API."""

    DEFAULT_MODEL = "claude-3-5-haiku-20241022"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        self.model = model or self.DEFAULT_MODEL
        self.client = client or anthropic.Anthropic(api_key=api_key)

    @classmethod
    def from_env(cls, model: Optional[str] = None) -> Optional['AnthropicCompletionService']:
        """Build a service from ANTHROPIC_API_KEY, or None when it is unset."""
        api_key = os.getenv('ANTHROPIC_API_KEY')
        if not api_key:
            logger.info("ANTHROPIC_API_KEY not set, text completion disabled")
            return None
        return cls(api_key=api_key, model=model or os.getenv('SOP_ENGINE_MODEL'))

    def complete(self, prompt: str, max_tokens: int) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise CompletionError(f"Completion request failed: {e}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, 'type', None) == 'text'
        ).strip()
        if not text:
            raise CompletionError("Completion returned no text")
        return text


def default_completion_service() -> TextCompletionService:
    """Anthropic when configured through the environment, otherwise disabled."""
    return AnthropicCompletionService.from_env() or DisabledCompletionService()


_JSON_OBJECT = re.compile(r'\{.*\}', re.DOTALL)
_JSON_ARRAY = re.compile(r'\[.*\]', re.DOTALL)


def extract_json(text: str, expect: type = dict) -> Any:
    """
    Pull the first JSON object (or array) out of model output.

    Args:
        text: Raw completion text, possibly wrapped in prose or fences
        expect: dict or list

    Returns:
        The parsed value

    Raises:
        CompletionError: If no JSON value of the expected type is present
    """
    pattern = _JSON_ARRAY if expect is list else _JSON_OBJECT
    match = pattern.search(text or "")
    if not match:
        raise CompletionError(f"No JSON {expect.__name__} in completion output")
    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise CompletionError(f"Unparseable JSON in completion output: {e}") from e
    if not isinstance(value, expect):
        raise CompletionError(f"Expected JSON {expect.__name__}, got {type(value).__name__}")
    return value
