"""
models.py – plain data records passed between services
======================================================

Everything here is a dataclass with JSON (de)serialisation helpers; no
Redis, no network. `Holding` / `PortfolioState` are mutated only by the
decision engine's `apply_decision`, quotes and ledger entries are frozen.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union


def utc_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="seconds")


# ───── portfolio ──────────────────────────────────────────────────────
@dataclass
class Holding:
    symbol: str
    quantity: float
    purchase_price: float
    stop_loss_pct: float

    @property
    def stop_loss_price(self) -> float:
        return self.purchase_price * (1 - self.stop_loss_pct)

    def value(self, price: float) -> float:
        return self.quantity * price


@dataclass
class PortfolioState:
    holdings: List[Holding] = field(default_factory=list)
    cash: float = 0.0
    last_total_value: float = 0.0
    last_updated: float = 0.0
    last_prices: Dict[str, float] = field(default_factory=dict)
    last_seq: int = 0

    def holding(self, symbol: str) -> Optional[Holding]:
        for h in self.holdings:
            if h.symbol == symbol:
                return h
        return None

    def copy(self) -> "PortfolioState":
        return replace(
            self,
            holdings=[replace(h) for h in self.holdings],
            last_prices=dict(self.last_prices),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["last_updated_iso"] = utc_iso(self.last_updated) if self.last_updated else None
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortfolioState":
        return cls(
            holdings=[Holding(**h) for h in data.get("holdings", [])],
            cash=float(data.get("cash", 0.0)),
            last_total_value=float(data.get("last_total_value", 0.0)),
            last_updated=float(data.get("last_updated", 0.0)),
            last_prices={k: float(v) for k, v in data.get("last_prices", {}).items()},
            last_seq=int(data.get("last_seq", 0)),
        )


# ───── quotes ─────────────────────────────────────────────────────────
@dataclass(frozen=True)
class PriceQuote:
    symbol: str
    price: float
    source: str
    fetched_at: float
    market_cap: Optional[float] = None
    change_pct_24h: Optional[float] = None


@dataclass(frozen=True)
class SentimentScore:
    symbol: str
    score: float            # normalised to [0, 1]
    source: str
    fetched_at: float


@dataclass(frozen=True)
class Quote:
    """Merged view of one symbol for one tick."""

    symbol: str
    price: Optional[float] = None
    market_cap: Optional[float] = None
    change_pct_24h: Optional[float] = None
    sentiment_score: Optional[float] = None
    source: str = ""
    fetched_at: float = 0.0
    stale: bool = False
    sentiment_stale: bool = False

    @property
    def available(self) -> bool:
        return self.price is not None


# ───── decisions ──────────────────────────────────────────────────────
@dataclass(frozen=True)
class Hold:
    kind = "hold"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind}


@dataclass(frozen=True)
class Liquidate:
    quantity: float
    price: float
    kind = "liquidate"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "quantity": self.quantity, "price": self.price}


@dataclass(frozen=True)
class Rebalance:
    delta_quantity: float   # negative: units sold
    price: float
    kind = "rebalance"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "delta_quantity": self.delta_quantity, "price": self.price}


Decision = Union[Hold, Liquidate, Rebalance]


def decision_from_dict(data: Dict[str, Any]) -> Decision:
    kind = data.get("kind")
    if kind == Liquidate.kind:
        return Liquidate(float(data["quantity"]), float(data["price"]))
    if kind == Rebalance.kind:
        return Rebalance(float(data["delta_quantity"]), float(data["price"]))
    if kind == Hold.kind:
        return Hold()
    raise ValueError(f"unknown decision kind {kind!r}")


# ───── ledger / notifications ─────────────────────────────────────────
@dataclass(frozen=True)
class LedgerEntry:
    seq: int
    timestamp: float
    symbol: str
    decision: Decision
    resulting_cash: float
    resulting_quantity: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "timestamp": self.timestamp,
            "time": utc_iso(self.timestamp),
            "symbol": self.symbol,
            "decision": self.decision.to_dict(),
            "resulting_cash": self.resulting_cash,
            "resulting_quantity": self.resulting_quantity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEntry":
        return cls(
            seq=int(data["seq"]),
            timestamp=float(data["timestamp"]),
            symbol=data["symbol"],
            decision=decision_from_dict(data["decision"]),
            resulting_cash=float(data["resulting_cash"]),
            resulting_quantity=float(data["resulting_quantity"]),
        )


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    dedup_key: str
    payload: Dict[str, Any]
    created_at: float
    magnitude: float = 0.0          # |change| the magnitude gate compares

    @property
    def subject(self) -> str:
        return self.payload.get("subject", self.kind)

    @property
    def message(self) -> str:
        return self.payload.get("message", "")
