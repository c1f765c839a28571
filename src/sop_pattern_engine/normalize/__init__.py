"""
Text normalization module for free-text requests.
"""

from .text_processor import RequestTextProcessor, tokenize

__all__ = ['RequestTextProcessor', 'tokenize']
