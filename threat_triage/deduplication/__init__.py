"""Deduplication package initialization."""

from .deduplicator import (
    are_duplicates, deduplicate, levenshtein_distance, normalize_url_for_comparison,
    similarity_ratio,
)

__all__ = [
    'are_duplicates', 'deduplicate', 'levenshtein_distance',
    'normalize_url_for_comparison', 'similarity_ratio',
]
