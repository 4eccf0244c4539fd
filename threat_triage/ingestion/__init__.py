"""Ingestion package initialization."""

from .collector import FeedCollector, FeedSource, JsonFeedFile, StaticFeed, build_collector, parse_json_feed

__all__ = ['FeedCollector', 'FeedSource', 'JsonFeedFile', 'StaticFeed', 'build_collector', 'parse_json_feed']
