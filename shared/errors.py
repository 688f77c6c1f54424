"""
errors.py – exception taxonomy shared by every service
======================================================

PortfolioError
 ├─ ConfigError          bad / missing settings (fatal at startup)
 ├─ FeedError            returned (not raised) by feed adapters
 │   ├─ NetworkError
 │   ├─ RateLimited
 │   └─ InvalidSymbol
 ├─ FeedUnavailable      per-symbol, degrades to stale / unavailable quote
 ├─ PersistenceFailure   tick-scoped, retried next interval
 ├─ NotifierFailure      logged; trades are never rolled back
 └─ InvariantViolation   aborts the affected holding for this tick
"""

from __future__ import annotations


class PortfolioError(Exception):
    """Base class for everything raised by this project."""


class ConfigError(PortfolioError):
    pass


class FeedError(PortfolioError):
    """Typed feed failure. Adapters *return* these across their boundary."""

    def __init__(self, symbol: str, message: str) -> None:
        super().__init__(f"{symbol}: {message}")
        self.symbol = symbol
        self.message = message


class NetworkError(FeedError):
    pass


class RateLimited(FeedError):
    def __init__(self, symbol: str, message: str, retry_after: float | None = None) -> None:
        super().__init__(symbol, message)
        self.retry_after = retry_after


class InvalidSymbol(FeedError):
    pass


class FeedUnavailable(PortfolioError):
    def __init__(self, symbol: str, category: str, cause: Exception | None = None) -> None:
        super().__init__(f"{category} feed unavailable for {symbol}: {cause}")
        self.symbol = symbol
        self.category = category
        self.cause = cause


class PersistenceFailure(PortfolioError):
    pass


class NotifierFailure(PortfolioError):
    def __init__(self, channel: str, message: str) -> None:
        super().__init__(f"{channel} notification failed: {message}")
        self.channel = channel


class InvariantViolation(PortfolioError):
    pass


__all__ = [
    "PortfolioError",
    "ConfigError",
    "FeedError",
    "NetworkError",
    "RateLimited",
    "InvalidSymbol",
    "FeedUnavailable",
    "PersistenceFailure",
    "NotifierFailure",
    "InvariantViolation",
]
