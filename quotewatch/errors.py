"""Exception hierarchy for quotewatch.

The engine itself never raises these to callers: fetch errors degrade
to a stale quote and decode errors to a skipped entry.  They exist so
adapters can signal *what* failed and the boundary can log it.
"""
from __future__ import annotations


class QuoteWatchError(Exception):
    """Base error for all quotewatch subsystems."""
    pass


class QuoteSourceError(QuoteWatchError):
    """The market-data endpoint returned an error or unusable payload."""

    def __init__(self, message: str, *, symbol: str = "", endpoint: str = ""):
        self.symbol = symbol
        self.endpoint = endpoint
        super().__init__(message)


class StoreDecodeError(QuoteWatchError):
    """A persisted value could not be decoded."""

    def __init__(self, message: str, *, key: str = ""):
        self.key = key
        super().__init__(message)
