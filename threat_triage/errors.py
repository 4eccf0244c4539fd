"""Exception taxonomy for the threat triage pipeline."""


class ThreatTriageError(Exception):
    """Base class for all pipeline errors."""


class FetchError(ThreatTriageError):
    """A single feed failed or timed out; its items are dropped for the cycle."""

    def __init__(self, feed_name: str, message: str):
        super().__init__(f"Feed '{feed_name}' failed: {message}")
        self.feed_name = feed_name


class ParseError(ThreatTriageError):
    """A raw item is too malformed to normalize and is skipped."""


class CacheMiss(ThreatTriageError):
    """The requested key is absent or expired."""

    def __init__(self, key: str):
        super().__init__(f"Cache miss for key '{key}'")
        self.key = key


class CacheReadError(ThreatTriageError):
    """The backing store could not be read."""


class CacheWriteError(ThreatTriageError):
    """The backing store could not be written."""


class ValidationError(ThreatTriageError):
    """A reference profile document is malformed."""
