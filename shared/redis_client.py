"""
redis_client.py – singleton Redis connection + helpers
======================================================

• 100 % lazy: first call triggers connect; retries until Redis is up.
• `heartbeat(service)` once per loop; the operator API reports its age.
• `trading_paused()` lets the scheduler honour the global kill-switch.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

import redis

from .config import env
from .constants import KEY_HEARTBEAT, KEY_PAUSE_FLAG
from .logging import get_logger

# ───── CONFIG ──────────────────────────────────────────────────────────
REDIS_URL = env("REDIS_URL", "redis://redis:6379/0")
log = get_logger("shared.redis")

# ───── LAZY SINGLETON ─────────────────────────────────────────────────
class _LazyRedis:
    """Proxy object that connects on first attribute access (auto-retry)."""
    _client: Optional[redis.Redis] = None

    def __init__(self, url: str = REDIS_URL, retries: int | None = None) -> None:
        self.url = url
        self.retries = retries

    def __getattr__(self, name: str) -> Callable[..., Any]:  # noqa: D401
        if self._client is None:
            self._connect()
        return getattr(self._client, name)  # type: ignore[arg-type]

    def _connect(self) -> None:
        attempt = 0
        while True:
            try:
                self._client = redis.Redis.from_url(
                    self.url,
                    decode_responses=True,
                    socket_timeout=2,
                )
                self._client.ping()
                log.info("Connected to Redis at %s", self.url)
                break
            except redis.RedisError as exc:
                attempt += 1
                if self.retries is not None and attempt >= self.retries:
                    raise
                log.warning("Redis unavailable – retrying in 2 s (%s)", exc)
                time.sleep(2)

# Exposed singleton used by all services
rds: redis.Redis = _LazyRedis()  # type: ignore[assignment]


def connect(url: str) -> redis.Redis:
    """Return a lazy client for an explicit URL (Settings.redis_url)."""
    return _LazyRedis(url)  # type: ignore[return-value]

# ───── HELPER FUNCTIONS ───────────────────────────────────────────────
def heartbeat(service: str, client: redis.Redis | None = None) -> None:
    """Store current epoch-seconds in `heartbeat:<service>`."""
    try:
        (client or rds).set(KEY_HEARTBEAT.format(service), time.time())
    except redis.RedisError as exc:
        log.error("heartbeat failed – %s", exc)

def heartbeat_age(service: str, client: redis.Redis | None = None) -> float | None:
    last = (client or rds).get(KEY_HEARTBEAT.format(service))
    return None if last is None else time.time() - float(last)

def trading_paused(client: redis.Redis | None = None) -> bool:
    """Return True if the operator set the global pause flag."""
    try:
        return (client or rds).get(KEY_PAUSE_FLAG) == "1"
    except redis.RedisError:
        # On Redis failure, default to *paused* for safety.
        return True

def set_paused(flag: bool, reason: str = "", client: redis.Redis | None = None) -> None:
    (client or rds).set(KEY_PAUSE_FLAG, "1" if flag else "0")
    if flag:
        log.error("TRADING PAUSED – %s", reason)
    else:
        log.info("trading resumed manually")
