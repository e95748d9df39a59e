"""
Log stream feature — per-room ordered progress events for live viewers.

Public API:
    from features.logstream import LogStream, Subscription
"""

from features.logstream.stream import LogStream, Subscription

__all__ = ["LogStream", "Subscription"]
