"""
feeds.py – External Feed interface + HTTP provider adapters
===========================================================

The aggregator only knows `ExternalFeed`:

    fetch_price(sym)     -> PriceQuote     | FeedError
    fetch_sentiment(sym) -> SentimentScore | FeedError

Errors are *returned*, never raised, so one bad symbol cannot unwind a
worker thread. Concrete providers (Binance 24h ticker, LunarCrush topic
sentiment) raise `FeedError` internally; `CompositeFeed` converts at the
boundary.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping

import requests

from shared.config import FeedSettings
from shared.errors import FeedError, InvalidSymbol, NetworkError, RateLimited
from shared.logging import get_logger
from shared.models import PriceQuote, SentimentScore

log = get_logger("quote_loader.feeds")


class ExternalFeed(ABC):
    """Capability interface every price/sentiment source must satisfy."""

    @abstractmethod
    def fetch_price(self, symbol: str) -> PriceQuote | FeedError:
        ...

    @abstractmethod
    def fetch_sentiment(self, symbol: str) -> SentimentScore | FeedError:
        ...


# ───── HTTP plumbing ──────────────────────────────────────────────────
class _HttpProvider:
    name = "http"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.clock = clock

    def _get_json(
        self,
        symbol: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NetworkError(symbol, f"{self.name} request failed – {exc}") from exc

        if resp.status_code == 429:
            retry = resp.headers.get("Retry-After")
            raise RateLimited(symbol, f"{self.name} rate limited",
                              float(retry) if retry and retry.isdigit() else None)
        if resp.status_code in (400, 404):
            raise InvalidSymbol(symbol, f"{self.name} rejected symbol ({resp.status_code})")
        if resp.status_code >= 400:
            raise NetworkError(symbol, f"{self.name} HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise NetworkError(symbol, f"{self.name} returned non-JSON body") from exc


class BinancePriceProvider(_HttpProvider):
    """`GET /api/v3/ticker/24hr?symbol=PHAUSDT`."""

    name = "binance"

    def __init__(self, base_url: str, symbol_map: Mapping[str, str],
                 api_key: str = "", **kw: Any) -> None:
        super().__init__(base_url, **kw)
        self.symbol_map = {k.upper(): v for k, v in symbol_map.items()}
        self.api_key = api_key

    def price(self, symbol: str) -> PriceQuote:
        pair = self.symbol_map.get(symbol.upper())
        if pair is None:
            raise InvalidSymbol(symbol, "symbol not supported by Binance")
        headers = {"X-MBX-APIKEY": self.api_key} if self.api_key else None
        data = self._get_json(symbol, "/api/v3/ticker/24hr", {"symbol": pair}, headers)
        try:
            price = float(data["lastPrice"])
            change = float(data["priceChangePercent"]) if data.get("priceChangePercent") else None
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError(symbol, f"unparseable Binance ticker – {exc}") from exc
        if price <= 0:
            raise NetworkError(symbol, f"non-positive price {price}")
        return PriceQuote(symbol, price, self.name, self.clock(), None, change)


class LunarCrushSentimentProvider(_HttpProvider):
    """`GET /topic/<sym>/v1` – `data.sentiment` is a 0‥100 percentage."""

    name = "lunarcrush"

    def __init__(self, base_url: str, api_key: str = "", **kw: Any) -> None:
        super().__init__(base_url, **kw)
        self.api_key = api_key

    def sentiment(self, symbol: str) -> SentimentScore:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        data = self._get_json(symbol, f"/topic/{symbol.lower()}/v1", None, headers)
        try:
            raw = float(data["data"]["sentiment"])
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError(symbol, f"unparseable LunarCrush payload – {exc}") from exc
        score = min(1.0, max(0.0, raw / 100.0 if raw > 1 else raw))
        return SentimentScore(symbol, score, self.name, self.clock())


# ───── boundary adapter ───────────────────────────────────────────────
class CompositeFeed(ExternalFeed):
    """Price from one provider, sentiment from another; errors returned."""

    def __init__(self, prices: BinancePriceProvider, sentiment: LunarCrushSentimentProvider) -> None:
        self.prices = prices
        self.sentiment_provider = sentiment

    def fetch_price(self, symbol: str) -> PriceQuote | FeedError:
        try:
            return self.prices.price(symbol)
        except FeedError as exc:
            log.debug("price feed error – %s", exc)
            return exc

    def fetch_sentiment(self, symbol: str) -> SentimentScore | FeedError:
        try:
            return self.sentiment_provider.sentiment(symbol)
        except FeedError as exc:
            log.debug("sentiment feed error – %s", exc)
            return exc


def create_feed(cfg: FeedSettings, clock: Callable[[], float] = time.time) -> ExternalFeed:
    session = requests.Session()
    return CompositeFeed(
        BinancePriceProvider(cfg.binance_url, cfg.symbol_map, cfg.binance_api_key,
                             timeout=cfg.timeout, session=session, clock=clock),
        LunarCrushSentimentProvider(cfg.lunarcrush_url, cfg.lunarcrush_api_key,
                                    timeout=cfg.timeout, session=session, clock=clock),
    )


__all__: list[str] = [
    "ExternalFeed",
    "CompositeFeed",
    "BinancePriceProvider",
    "LunarCrushSentimentProvider",
    "create_feed",
]
