"""
cache.py – Redis-backed freshness cache + notification dedup marks
=================================================================

Layout
------
cache:<category>:<SYM>   STRING  {"ts": fetched_at, "ttl": s, "data": {...}}
notify:sent:<key>        STRING  epoch-seconds of the last send

Freshness is decided *here*, from the stored timestamp and an injectable
clock, not from Redis' own expiry: an entry older than its TTL is a miss
(lazy expiry) but stays physically present for `retention` seconds so the
aggregator can fall back to it when a feed is down.
"""

from __future__ import annotations

import json
import math
import time
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional

import redis

from .constants import KEY_CACHE, KEY_NOTIFY, PRICE, SENTIMENT
from .errors import PersistenceFailure
from .logging import get_logger

log = get_logger("shared.cache")

DEFAULT_TTLS: Dict[str, float] = {PRICE: 300.0, SENTIMENT: 3600.0}


class CacheHit(NamedTuple):
    value: Dict[str, Any]
    age: float


class FreshnessCache:
    def __init__(
        self,
        client: redis.Redis,
        ttls: Mapping[str, float] | None = None,
        retention: float = 86400.0,
        notify_window: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self.retention = retention
        self.notify_window = notify_window
        self.clock = clock

    def ttl_for(self, category: str) -> float:
        try:
            return self.ttls[category]
        except KeyError:
            raise ValueError(f"unknown cache category {category!r}") from None

    # ───── quotes ──────────────────────────────────────────────────────
    def get(
        self,
        key: str,
        category: str,
        ttl: float | None = None,
        allow_stale: bool = False,
    ) -> Optional[CacheHit]:
        """Local lookup. Returns None on a miss (absent, expired or unreadable)."""
        try:
            raw = self.client.get(KEY_CACHE.format(category, key))
        except redis.RedisError as exc:
            raise PersistenceFailure(f"cache read {category}:{key} – {exc}") from exc
        if raw is None:
            return None
        try:
            blob = json.loads(raw)
            stored_at = float(blob["ts"])
        except (ValueError, KeyError, TypeError):
            log.warning("discarding corrupt cache entry %s:%s", category, key)
            return None

        limit = ttl if ttl is not None else blob.get("ttl") or self.ttl_for(category)
        age = max(0.0, self.clock() - stored_at)
        if age > limit and not allow_stale:
            return None
        return CacheHit(blob.get("data") or {}, age)

    def put(
        self,
        key: str,
        category: str,
        value: Dict[str, Any],
        ttl: float | None = None,
        fetched_at: float | None = None,
    ) -> None:
        ttl = ttl if ttl is not None else self.ttl_for(category)
        blob = {
            "ts": fetched_at if fetched_at is not None else self.clock(),
            "ttl": ttl,
            "data": value,
        }
        try:
            self.client.set(
                KEY_CACHE.format(category, key),
                json.dumps(blob),
                ex=math.ceil(max(ttl, self.retention)),
            )
        except redis.RedisError as exc:
            raise PersistenceFailure(f"cache write {category}:{key} – {exc}") from exc

    # ───── notification dedup ──────────────────────────────────────────
    def seen_notification(self, dedup_key: str, window: float | None = None) -> bool:
        window = window if window is not None else self.notify_window
        try:
            raw = self.client.get(KEY_NOTIFY.format(dedup_key))
        except redis.RedisError as exc:
            raise PersistenceFailure(f"dedup read {dedup_key} – {exc}") from exc
        if raw is None:
            return False
        return self.clock() - float(raw) <= window

    def mark_notification(self, dedup_key: str, window: float | None = None) -> None:
        window = window if window is not None else self.notify_window
        try:
            self.client.set(KEY_NOTIFY.format(dedup_key), self.clock(), ex=math.ceil(window))
        except redis.RedisError as exc:
            raise PersistenceFailure(f"dedup write {dedup_key} – {exc}") from exc

    def claim_notification(self, dedup_key: str, window: float | None = None) -> bool:
        """Atomic check-and-mark. True if the caller now owns the send."""
        window = window if window is not None else self.notify_window
        key = KEY_NOTIFY.format(dedup_key)
        now = self.clock()
        try:
            if self.client.set(key, now, nx=True, ex=math.ceil(window)):
                return True
            # a mark exists; it may be logically expired but not yet evicted
            with self.client.pipeline() as pipe:
                pipe.watch(key)
                current = pipe.get(key)
                if current is not None and now - float(current) <= window:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, now, ex=math.ceil(window))
                pipe.execute()
                return True
        except redis.WatchError:
            return False
        except redis.RedisError as exc:
            raise PersistenceFailure(f"dedup claim {dedup_key} – {exc}") from exc

    def forget_notification(self, dedup_key: str) -> None:
        try:
            self.client.delete(KEY_NOTIFY.format(dedup_key))
        except redis.RedisError as exc:
            raise PersistenceFailure(f"dedup release {dedup_key} – {exc}") from exc

    # ───── housekeeping ────────────────────────────────────────────────
    def sweep(self) -> int:
        """Delete quote entries older than `retention`. Returns the count."""
        removed = 0
        now = self.clock()
        for name in self.client.scan_iter(match=KEY_CACHE.format("*", "*")):
            raw = self.client.get(name)
            if raw is None:
                continue
            try:
                stored_at = float(json.loads(raw)["ts"])
            except (ValueError, KeyError, TypeError):
                stored_at = 0.0
            if now - stored_at > self.retention:
                self.client.delete(name)
                removed += 1
        if removed:
            log.debug("cache sweep removed %d entries", removed)
        return removed
