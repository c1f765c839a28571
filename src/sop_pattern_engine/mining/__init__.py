"""
Frequent action sequence mining.
"""

from .sequence_miner import SequenceMiner, action_token, mine_sequences, pattern_id_for

__all__ = ['SequenceMiner', 'action_token', 'mine_sequences', 'pattern_id_for']
