"""Domain-level exceptions for friend requests & friendships."""

from __future__ import annotations


class SocialError(Exception):
    """Base class for social feature errors."""

    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class ProfileNotFound(SocialError):
    reason = "profile_not_found"

    def __init__(self, user_id: str) -> None:
        super().__init__()
        self.user_id = user_id


class RequestSelfError(SocialError):
    reason = "self_request"


class RequestNotFound(SocialError):
    reason = "request_not_found"
