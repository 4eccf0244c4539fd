"""Scoring package initialization."""

from .ranker import (
    SEVERITY_ORDER, bubble_up_sort, filter_by_min_severity, filter_by_severity, get_top_threats,
)
from .scorer import RiskScorer, add_risk_scores, get_enhanced_severity, get_severity

__all__ = [
    'RiskScorer', 'SEVERITY_ORDER', 'add_risk_scores', 'bubble_up_sort',
    'filter_by_min_severity', 'filter_by_severity', 'get_enhanced_severity',
    'get_severity', 'get_top_threats',
]
