"""
SOP Pattern Engine

This engine mines user/agent action logs for recurring sequences,
similar requests and scheduled routines, scores them for automation
potential, and drafts standard operating procedures from the best ones.
"""

__version__ = "0.1.0"
__author__ = "SOP Pattern Engine Team"

# Default configuration
DEFAULT_CONFIG = {
    "lookback_days": 30,
    "min_support": 3,
    "min_sequence_length": 2,
    "max_sequence_length": 10,
    "max_gap_hours": 24.0,
    "min_cluster_size": 3,
    "similarity_threshold": 0.5,
    "min_occurrences": 3,
    "tolerance_hours": 2.0,
    "min_confidence_for_sop": 0.7,
}
