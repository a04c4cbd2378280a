from __future__ import annotations


class MarketSimError(Exception):
    """Base class for engine errors."""


class TickInProgress(MarketSimError):
    """Another tick holds the guard. Safe to retry later."""

    def __init__(self, message: str = "a tick is already in progress") -> None:
        super().__init__(message)


class TickAborted(MarketSimError):
    """The tick guard or the tick record could not be written."""


class InvalidComputation(MarketSimError):
    """A price computation produced a NaN, infinite or non-positive value."""


class MissingFundamentals(MarketSimError):
    """Company fundamentals are absent or unusable as a price anchor."""


class PersistenceFailure(MarketSimError):
    """A write to the store failed or lost a race with another writer."""


class ConfigurationError(MarketSimError):
    """An instrument or the game configuration holds a malformed value."""
