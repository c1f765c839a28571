"""
Synthetic action log generation with known, recoverable patterns.
"""

from .config import ActionLogConfig
from .generator import ActionLogGenerator, generate_action_log

__all__ = ['ActionLogConfig', 'ActionLogGenerator', 'generate_action_log']
