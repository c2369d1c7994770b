"""
Analytics module for Privacy Advisor.

This module provides:
- Privacy score calculation from scan evidence
- Report payload generation (top fixes, data sharing, domain)
"""

from .report_generator import build_report_payload, data_sharing_level, select_top_fixes
from .score_calculator import ScoreCalculator

__all__ = [
    'build_report_payload',
    'data_sharing_level',
    'select_top_fixes',
    'ScoreCalculator',
]
