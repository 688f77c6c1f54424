"""
aggregator.py – per-tick quote fan-out / fan-in
===============================================

For every (symbol, category) the freshness cache is consulted first; only
non-fresh categories hit the feed. All feed calls of a tick run in one
thread pool and are joined under a single deadline: whatever has not
settled by then is abandoned and treated as a failed fetch.

Failure policy per (symbol, category)
-------------------------------------
fresh cache   → used, no feed call
fetch ok      → used, written back with the category TTL
fetch failed  → retained cache entry (flagged stale) if any,
                otherwise the category is absent for this tick
"""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from shared.cache import FreshnessCache
from shared.constants import CATEGORIES, PRICE, SENTIMENT
from shared.errors import FeedError, FeedUnavailable, NetworkError, PersistenceFailure
from shared.logging import get_logger
from shared.models import PriceQuote, Quote, SentimentScore

from .feeds import ExternalFeed

log = get_logger("quote_loader")


@dataclass
class AggregationResult:
    quotes: Dict[str, Quote] = field(default_factory=dict)
    failures: List[FeedUnavailable] = field(default_factory=list)
    feed_calls: int = 0

    @property
    def unavailable(self) -> List[str]:
        return [s for s, q in self.quotes.items() if not q.available]

    @property
    def stale(self) -> List[str]:
        return [s for s, q in self.quotes.items() if q.stale]


class QuoteAggregator:
    def __init__(
        self,
        feed: ExternalFeed,
        cache: FreshnessCache,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.feed = feed
        self.cache = cache
        self.clock = clock

    # ───── cache helpers ───────────────────────────────────────────────
    def _lookup(self, symbol: str, category: str, allow_stale: bool = False) -> Optional[Dict[str, Any]]:
        try:
            hit = self.cache.get(symbol, category, allow_stale=allow_stale)
        except PersistenceFailure as exc:
            log.warning("%s – treating as cache miss", exc)
            return None
        return None if hit is None else hit.value

    def _store(self, symbol: str, category: str, value: Dict[str, Any], fetched_at: float) -> None:
        try:
            self.cache.put(symbol, category, value, fetched_at=fetched_at)
        except PersistenceFailure as exc:
            log.warning("%s – quote kept for this tick only", exc)

    # ───── main entry ──────────────────────────────────────────────────
    def aggregate(self, symbols: Iterable[str], deadline: float) -> AggregationResult:
        """Resolve one Quote per symbol within `deadline` seconds."""
        symbols = list(symbols)
        result = AggregationResult()
        resolved: Dict[Tuple[str, str], Dict[str, Any]] = {}
        stale: set[Tuple[str, str]] = set()
        jobs: List[Tuple[str, str]] = []

        for sym in symbols:
            for cat in CATEGORIES:
                cached = self._lookup(sym, cat)
                if cached is not None:
                    resolved[(sym, cat)] = cached
                else:
                    jobs.append((sym, cat))

        if jobs:
            outcomes = self._fan_out(jobs, deadline)
            result.feed_calls = len(jobs)
            for (sym, cat), outcome in outcomes.items():
                if isinstance(outcome, FeedError):
                    result.failures.append(FeedUnavailable(sym, cat, outcome))
                    fallback = self._lookup(sym, cat, allow_stale=True)
                    if fallback is not None:
                        resolved[(sym, cat)] = fallback
                        stale.add((sym, cat))
                        log.warning("%s %s feed failed (%s) – using stale cache", sym, cat, outcome.message)
                    else:
                        log.warning("%s %s unavailable this tick – %s", sym, cat, outcome.message)
                    continue
                value = _to_cache_value(outcome)
                resolved[(sym, cat)] = value
                self._store(sym, cat, value, outcome.fetched_at)

        for sym in symbols:
            result.quotes[sym] = _merge(
                sym,
                resolved.get((sym, PRICE)),
                resolved.get((sym, SENTIMENT)),
                (sym, PRICE) in stale,
                (sym, SENTIMENT) in stale,
            )
        return result

    def _fan_out(self, jobs: List[Tuple[str, str]], deadline: float) -> Dict[Tuple[str, str], Any]:
        pool = ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="feed")
        futures: Dict[Future, Tuple[str, str]] = {}
        for sym, cat in jobs:
            fn = self.feed.fetch_price if cat == PRICE else self.feed.fetch_sentiment
            futures[pool.submit(fn, sym)] = (sym, cat)
        done, pending = wait(futures, timeout=max(0.0, deadline))
        # abandoned calls keep their thread until the socket times out
        pool.shutdown(wait=False, cancel_futures=True)

        outcomes: Dict[Tuple[str, str], Any] = {}
        for fut, (sym, cat) in futures.items():
            if fut in pending:
                outcomes[(sym, cat)] = NetworkError(sym, f"{cat} fetch exceeded tick deadline")
                continue
            exc = fut.exception()
            if exc is not None:
                # adapters must not raise; if one does, isolate it to its symbol
                log.error("%s %s feed raised %r", sym, cat, exc)
                outcomes[(sym, cat)] = NetworkError(sym, f"feed raised {exc!r}")
            else:
                outcomes[(sym, cat)] = fut.result()
        return outcomes


def _to_cache_value(outcome: PriceQuote | SentimentScore) -> Dict[str, Any]:
    if isinstance(outcome, PriceQuote):
        return {
            "price": outcome.price,
            "market_cap": outcome.market_cap,
            "change_pct_24h": outcome.change_pct_24h,
            "source": outcome.source,
            "fetched_at": outcome.fetched_at,
        }
    return {"score": outcome.score, "source": outcome.source, "fetched_at": outcome.fetched_at}


def _merge(
    symbol: str,
    price: Optional[Dict[str, Any]],
    sentiment: Optional[Dict[str, Any]],
    price_stale: bool,
    sentiment_stale: bool,
) -> Quote:
    price = price or {}
    sentiment = sentiment or {}
    return Quote(
        symbol=symbol,
        price=price.get("price"),
        market_cap=price.get("market_cap"),
        change_pct_24h=price.get("change_pct_24h"),
        sentiment_score=sentiment.get("score"),
        source=price.get("source") or sentiment.get("source", ""),
        fetched_at=float(price.get("fetched_at") or sentiment.get("fetched_at") or 0.0),
        stale=price_stale,
        sentiment_stale=sentiment_stale,
    )
