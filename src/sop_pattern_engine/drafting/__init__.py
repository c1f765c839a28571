"""
SOP drafting, YAML rendering and the draft review lifecycle.
"""

from .sop_drafter import SOPDrafter, format_id

__all__ = ['SOPDrafter', 'format_id']
