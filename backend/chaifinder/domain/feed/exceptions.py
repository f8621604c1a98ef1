"""Feed errors. These are recorded on the feed state rather than raised to callers."""

from __future__ import annotations


class FeedError(Exception):
    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class FeedTimeout(FeedError):
    reason = "timeout"


class FeedUnavailable(FeedError):
    reason = "unavailable"
