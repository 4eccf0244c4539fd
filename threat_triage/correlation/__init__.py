"""Correlation package initialization."""

from .correlator import (
    add_correlation_data, find_related_threats, generate_correlation_id,
    get_correlation_stats, summarize_correlations,
)

__all__ = [
    'add_correlation_data', 'find_related_threats', 'generate_correlation_id',
    'get_correlation_stats', 'summarize_correlations',
]
