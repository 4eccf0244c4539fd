"""Normalization module for raw feed items."""

from .normalizer import ItemNormalizer, normalize_items

__all__ = ['ItemNormalizer', 'normalize_items']
