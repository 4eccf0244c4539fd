"""
Threat Triage Pipeline

Turns raw threat-intelligence feed items into a ranked, deduplicated and
cross-referenced stream for prioritized analyst review.
"""

__version__ = "2.0.0"
