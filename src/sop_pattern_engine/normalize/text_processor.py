"""
Text Normalization Module for request clustering.

Provides text preprocessing including:
- Lowercasing
- Punctuation stripping
- Tokenization with a minimum token length
"""

import re
from typing import List


class RequestTextProcessor:
    """
    Text processor for free-text user requests.

    Tokens are lowercase runs of word characters; anything shorter than
    ``min_token_length`` is dropped ("a", "to", "is" carry no signal).
    """

    NON_WORD_PATTERN = re.compile(r'[^\w\s]')

    def __init__(self, min_token_length: int = 3):
        """
        Initialize the text processor.

        Args:
            min_token_length: Minimum length for tokens to be kept
        """
        self.min_token_length = min_token_length

    def tokenize(self, text: str) -> List[str]:
        """
        Tokenize text.

        Args:
            text: Input text

        Returns:
            List of tokens in their original order
        """
        if not text:
            return []
        cleaned = self.NON_WORD_PATTERN.sub(' ', text.lower())
        return [t for t in cleaned.split() if len(t) >= self.min_token_length]


def tokenize(text: str) -> List[str]:
    """
    Convenience function for tokenization.

    Args:
        text: Input text

    Returns:
        List of tokens
    """
    processor = RequestTextProcessor()
    return processor.tokenize(text)
