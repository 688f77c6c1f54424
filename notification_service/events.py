"""
events.py – turn one tick's numbers into NotificationEvents
===========================================================

Events are built unconditionally; the throttle decides which go out.
Dedup keys collapse alerts that say the same thing: value changes are
bucketed by their own threshold step, so a portfolio drifting from -6 %
to -7 % (threshold 5) keeps key `portfolio_value:*:-2` and is sent once
per window.
"""

from __future__ import annotations

from typing import List, Mapping

from shared.config import NotificationThresholds
from shared.models import LedgerEntry, Liquidate, NotificationEvent
from shared.utils import bucket, pct_change

KIND_PORTFOLIO = "portfolio_value"
KIND_HOLDING   = "holding_value"
KIND_SENTIMENT = "sentiment"
KIND_LIQUIDATE = "liquidate"
KIND_REBALANCE = "rebalance"
TRADE_KINDS = frozenset({KIND_LIQUIDATE, KIND_REBALANCE})


def dedup_key(kind: str, symbol: str, bucketed: object) -> str:
    return f"{kind}:{symbol}:{bucketed}"


def portfolio_event(previous: float, current: float, now: float,
                    th: NotificationThresholds) -> NotificationEvent | None:
    if previous <= 0:
        return None
    change = pct_change(previous, current)
    return NotificationEvent(
        kind=KIND_PORTFOLIO,
        dedup_key=dedup_key(KIND_PORTFOLIO, "*", bucket(change, th.portfolio_value_change_percent)),
        payload={
            "subject": "Portfolio Value Change Alert",
            "message": (f"Portfolio value changed by {change:.2f}%: "
                        f"Previous ${previous:.2f}, Current ${current:.2f}"),
            "metrics": {"previous": round(previous, 2), "current": round(current, 2),
                        "change_pct": round(change, 2)},
        },
        created_at=now,
        magnitude=abs(change),
    )


def holding_events(previous: Mapping[str, float], current: Mapping[str, float], now: float,
                   th: NotificationThresholds) -> List[NotificationEvent]:
    """Per-holding value change; symbols missing on either side are skipped."""
    events = []
    for sym, value in current.items():
        prev = previous.get(sym)
        if not prev:
            continue
        change = pct_change(prev, value)
        events.append(NotificationEvent(
            kind=KIND_HOLDING,
            dedup_key=dedup_key(KIND_HOLDING, sym, bucket(change, th.holding_value_change_percent)),
            payload={
                "symbol": sym,
                "subject": "Holding Value Change Alert",
                "message": (f"{sym} value changed by {change:.2f}%: "
                            f"Previous ${prev:.2f}, Current ${value:.2f}"),
                "metrics": {"previous": round(prev, 2), "current": round(value, 2),
                            "change_pct": round(change, 2)},
            },
            created_at=now,
            magnitude=abs(change),
        ))
    return events


def sentiment_events(previous: Mapping[str, float], current: Mapping[str, float], now: float,
                     th: NotificationThresholds) -> List[NotificationEvent]:
    events = []
    for sym, score in current.items():
        if sym not in previous:
            continue
        delta = score - previous[sym]
        events.append(NotificationEvent(
            kind=KIND_SENTIMENT,
            dedup_key=dedup_key(KIND_SENTIMENT, sym, bucket(delta, th.sentiment_change)),
            payload={
                "symbol": sym,
                "subject": "Sentiment Change Alert",
                "message": (f"{sym} sentiment changed by {delta:.2f}: "
                            f"Previous {previous[sym]:.2f}, Current {score:.2f}"),
                "metrics": {"previous": round(previous[sym], 4), "current": round(score, 4),
                            "delta": round(delta, 4)},
            },
            created_at=now,
            magnitude=abs(delta),
        ))
    return events


def trade_event(entry: LedgerEntry, now: float) -> NotificationEvent:
    dec = entry.decision
    if isinstance(dec, Liquidate):
        kind, qty = KIND_LIQUIDATE, dec.quantity
        message = (f"{entry.symbol}: stop-loss hit, sold {qty:g} at ${dec.price:.4f} "
                   f"for ${qty * dec.price:.2f}")
    else:
        kind, qty = KIND_REBALANCE, -dec.delta_quantity  # type: ignore[union-attr]
        message = (f"{entry.symbol}: rebalanced, sold {qty:g} at ${dec.price:.4f} "
                   f"for ${qty * dec.price:.2f}")
    return NotificationEvent(
        kind=kind,
        dedup_key=dedup_key(kind, entry.symbol, f"{dec.price:.6g}"),
        payload={
            "symbol": entry.symbol,
            "subject": "Portfolio Action",
            "message": message,
            "metrics": {"seq": entry.seq, "quantity": qty, "price": dec.price,
                        "cash": round(entry.resulting_cash, 2),
                        "remaining": entry.resulting_quantity},
        },
        created_at=now,
    )
