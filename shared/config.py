"""
config.py – centralised env-var handling
=======================================

• Loads the first `.env` file it finds (cwd or /app) exactly **once**.
• Exposes `ENV` – a dict-like object that also supports attribute access.
• `env(key, default=None, cast=None)` helper for one-off lookups
  with automatic type-casting (int, float, bool).
• `Settings.load()` – the immutable runtime configuration handed to the
  scheduler, decision engine and notifier at construction time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError

# ───── locate & load .env (first one wins) ────────────────────────────
for candidate in (Path.cwd() / ".env", Path("/app/.env")):
    if candidate.is_file():
        load_dotenv(dotenv_path=candidate, override=False)
        break

# ───── ENV proxy object ───────────────────────────────────────────────
class _Env(dict):
    """Attr-style access to `os.environ` while staying dict-compatible."""

    # attribute → getenv
    def __getattr__(self, item: str) -> str | None:  # noqa: D401
        return os.getenv(item)

    # keep mypy happy for dict subscripting
    def __getitem__(self, key: str) -> str:
        return os.environ[key]

    # ergonomic get with optional cast
    def get(self, key: str, default: Any = None, cast: Optional[type] = None) -> Any:  # noqa: D401
        val = os.getenv(key, default)
        if cast is not None and val is not None:
            try:
                if cast is bool:
                    return str(val).lower() in ("1", "true", "yes", "y")
                return cast(val)
            except (ValueError, TypeError):
                return default
        return val


ENV: _Env = _Env(os.environ)  # public alias

# convenience function so you can `from shared.config import env`
def env(key: str, default: Any = None, cast: Optional[type] = None) -> Any:
    """Shortcut for `ENV.get(key, default, cast)`."""
    return ENV.get(key, default, cast)


# ───── defaults ───────────────────────────────────────────────────────
DEFAULT_HOLDINGS = "PHA:250:0.20,SUI:10:3.00,DUSK:80:0.25"
DEFAULT_SYMBOL_MAP = "PHA:PHAUSDT,SUI:SUIUSDT,DUSK:DUSKUSDT"


@dataclass(frozen=True)
class HoldingSpec:
    """One entry of the genesis portfolio."""

    symbol: str
    quantity: float
    purchase_price: float
    stop_loss_pct: float


@dataclass(frozen=True)
class NotificationThresholds:
    portfolio_value_change_percent: float = 5.0
    holding_value_change_percent: float = 10.0
    sentiment_change: float = 0.2


@dataclass(frozen=True)
class Thresholds:
    """Decision + notification thresholds, read once at startup."""

    stop_loss_pct: float = 0.20
    max_allocation: float = 0.60
    positive_threshold: float = 0.70
    negative_threshold: float = 0.30
    notification: NotificationThresholds = field(default_factory=NotificationThresholds)
    notify_window: float = 3600.0
    price_ttl: float = 300.0
    sentiment_ttl: float = 3600.0
    stale_retention: float = 86400.0
    tick_interval: float = 60.0
    tick_deadline: float = 30.0
    feed_deadline: float = 20.0         # quote fetches; the rest of tick_deadline is for alerts


@dataclass(frozen=True)
class FeedSettings:
    binance_url: str = "https://api.binance.com"
    binance_api_key: str = ""
    symbol_map: Mapping[str, str] = field(default_factory=dict)
    lunarcrush_url: str = "https://lunarcrush.com/api4/public"
    lunarcrush_api_key: str = ""
    timeout: float = 10.0


@dataclass(frozen=True)
class NotifierSettings:
    sms_enabled: bool = False
    email_enabled: bool = False
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    recipient_phone_number: str = ""
    sendgrid_api_key: str = ""
    sender_email: str = ""
    recipient_email: str = ""
    dry_run: bool = True


@dataclass(frozen=True)
class Settings:
    """Runtime configuration (immutable for the process lifetime)."""

    environment: str = "dev"
    redis_url: str = "redis://redis:6379/0"
    holdings: Tuple[HoldingSpec, ...] = ()
    initial_cash: float = 0.0
    thresholds: Thresholds = field(default_factory=Thresholds)
    feeds: FeedSettings = field(default_factory=FeedSettings)
    notifier: NotifierSettings = field(default_factory=NotifierSettings)
    api_port: int = 8000
    history_dir: Path = Path("./history")
    audit_secret: str = ""

    @property
    def symbols(self) -> list[str]:
        return [h.symbol for h in self.holdings]

    @staticmethod
    def load(environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from `os.environ` (or an explicit mapping)."""
        src: Mapping[str, str] = os.environ if environ is None else environ

        def _get(key: str, default: Any, cast: type = str) -> Any:
            raw = src.get(key)
            if raw is None or raw == "":
                return default
            try:
                if cast is bool:
                    return str(raw).lower() in ("1", "true", "yes", "y")
                return cast(raw)
            except (ValueError, TypeError) as exc:
                raise ConfigError(f"{key}={raw!r} is not a valid {cast.__name__}") from exc

        stop_loss_pct = _get("STOP_LOSS_PCT", 0.20, float)
        tick_deadline = _get("TICK_DEADLINE", 30.0, float)
        thresholds = Thresholds(
            stop_loss_pct=stop_loss_pct,
            max_allocation=_get("MAX_ALLOCATION", 0.60, float),
            positive_threshold=_get("POSITIVE_THRESHOLD", 0.70, float),
            negative_threshold=_get("NEGATIVE_THRESHOLD", 0.30, float),
            notification=NotificationThresholds(
                portfolio_value_change_percent=_get("PORTFOLIO_VALUE_CHANGE_PERCENT", 5.0, float),
                holding_value_change_percent=_get("HOLDING_VALUE_CHANGE_PERCENT", 10.0, float),
                sentiment_change=_get("SENTIMENT_CHANGE", 0.2, float),
            ),
            notify_window=_get("NOTIFY_WINDOW", 3600.0, float),
            price_ttl=_get("PRICE_TTL", 300.0, float),
            sentiment_ttl=_get("SENTIMENT_TTL", 3600.0, float),
            stale_retention=_get("STALE_RETENTION", 86400.0, float),
            tick_interval=_get("TICK_INTERVAL", 60.0, float),
            tick_deadline=tick_deadline,
            feed_deadline=_get("FEED_DEADLINE", tick_deadline * 2 / 3, float),
        )
        _validate(thresholds)

        twilio_sid = _get("TWILIO_ACCOUNT_SID", "")
        sendgrid_key = _get("SENDGRID_API_KEY", "")
        notifier = NotifierSettings(
            sms_enabled=_get("SMS_ENABLED", False, bool),
            email_enabled=_get("EMAIL_ENABLED", False, bool),
            twilio_account_sid=twilio_sid,
            twilio_auth_token=_get("TWILIO_AUTH_TOKEN", ""),
            twilio_phone_number=_get("TWILIO_PHONE_NUMBER", ""),
            recipient_phone_number=_get("RECIPIENT_PHONE_NUMBER", ""),
            sendgrid_api_key=sendgrid_key,
            sender_email=_get("SENDER_EMAIL", ""),
            recipient_email=_get("RECIPIENT_EMAIL", ""),
            dry_run=_get("DRY_RUN", not (twilio_sid or sendgrid_key), bool),
        )

        feeds = FeedSettings(
            binance_url=_get("BINANCE_URL", FeedSettings.binance_url),
            binance_api_key=_get("BINANCE_API_KEY", ""),
            symbol_map=_parse_pairs(_get("SYMBOL_MAP", DEFAULT_SYMBOL_MAP), "SYMBOL_MAP"),
            lunarcrush_url=_get("LUNARCRUSH_URL", FeedSettings.lunarcrush_url),
            lunarcrush_api_key=_get("LUNARCRUSH_API_KEY", ""),
            timeout=_get("FEED_TIMEOUT", 10.0, float),
        )

        environment = _get("ENVIRONMENT", "dev").lower()
        if environment not in ("dev", "prod"):
            raise ConfigError(f"ENVIRONMENT must be 'dev' or 'prod', got {environment!r}")

        return Settings(
            environment=environment,
            redis_url=_get("REDIS_URL", "redis://redis:6379/0"),
            holdings=parse_holdings(_get("HOLDINGS", DEFAULT_HOLDINGS), stop_loss_pct),
            initial_cash=_get("INITIAL_CASH", 0.0, float),
            thresholds=thresholds,
            feeds=feeds,
            notifier=notifier,
            api_port=_get("API_PORT", 8000, int),
            history_dir=Path(_get("HISTORY_DIR", "./history")).resolve(),
            audit_secret=_get("AUDIT_SECRET", ""),
        )


def parse_holdings(raw: str, default_stop_loss: float) -> Tuple[HoldingSpec, ...]:
    """`PHA:250:0.20,SUI:10:3.00[:0.15]` → tuple of HoldingSpec."""
    specs = []
    seen: set[str] = set()
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        parts = chunk.split(":")
        if len(parts) not in (3, 4):
            raise ConfigError(f"Holding {chunk!r} must be SYMBOL:QTY:PRICE[:STOP_PCT]")
        try:
            qty, price = float(parts[1]), float(parts[2])
            stop = float(parts[3]) if len(parts) == 4 else default_stop_loss
        except ValueError as exc:
            raise ConfigError(f"Holding {chunk!r} has a non-numeric field") from exc
        symbol = parts[0].strip().upper()
        if symbol in seen:
            raise ConfigError(f"Holding {symbol} listed twice")
        if qty < 0 or price <= 0 or not 0 <= stop < 1:
            raise ConfigError(f"Holding {chunk!r} is out of range")
        seen.add(symbol)
        specs.append(HoldingSpec(symbol, qty, price, stop))
    return tuple(specs)


def _parse_pairs(raw: str, name: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for chunk in filter(None, (c.strip() for c in raw.split(","))):
        if ":" not in chunk:
            raise ConfigError(f"{name} entry {chunk!r} must be KEY:VALUE")
        key, val = chunk.split(":", 1)
        out[key.strip().upper()] = val.strip()
    return out


def _validate(t: Thresholds) -> None:
    if not 0 < t.max_allocation <= 1:
        raise ConfigError("MAX_ALLOCATION must be in (0, 1]")
    if not 0 <= t.stop_loss_pct < 1:
        raise ConfigError("STOP_LOSS_PCT must be in [0, 1)")
    if t.negative_threshold > t.positive_threshold:
        raise ConfigError("NEGATIVE_THRESHOLD must not exceed POSITIVE_THRESHOLD")
    for name in ("price_ttl", "sentiment_ttl", "tick_interval", "tick_deadline", "feed_deadline",
                 "notify_window"):
        if getattr(t, name) <= 0:
            raise ConfigError(f"{name.upper()} must be positive")
    if t.feed_deadline >= t.tick_deadline:
        raise ConfigError("FEED_DEADLINE must leave part of TICK_DEADLINE for notifications")
    if t.stale_retention < max(t.price_ttl, t.sentiment_ttl):
        raise ConfigError("STALE_RETENTION must cover both PRICE_TTL and SENTIMENT_TTL")


__all__ = [
    "ENV",
    "env",
    "Settings",
    "Thresholds",
    "NotificationThresholds",
    "FeedSettings",
    "NotifierSettings",
    "HoldingSpec",
    "parse_holdings",
]
