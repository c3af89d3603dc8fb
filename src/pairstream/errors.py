"""Exceptions raised inside the relay pipeline."""

from typing import Optional


class RelayError(Exception):
    """Base class for pairstream errors."""


class FeedMessageError(RelayError):
    """An upstream message could not be parsed into a trade observation."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class PositionLookupError(RelayError):
    """The position store failed while fetching positions for a subscriber."""

    def __init__(self, identity: str, cause: Exception):
        super().__init__(f"Position lookup failed for {identity[:8]}: {cause}")
        self.identity = identity
        self.cause = cause
