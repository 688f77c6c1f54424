"""
rules.py  – per-holding trade rules + sentiment advice
======================================================
Pure-function utilities only; no Redis, no side-effects.

Hard triggers, in order:
  1. no price          → Hold
  2. price ≤ stop-loss → Liquidate everything at price
  3. share > max_alloc → Rebalance down to exactly max_alloc
     (skipped while any holding of the portfolio has no price)
Sentiment never trades; it only feeds `recommend()` and notifications.
"""

from __future__ import annotations
from typing import Optional

from shared.config import Thresholds
from shared.constants import ADVICE_BUY, ADVICE_MONITOR, ADVICE_SELL
from shared.models import Decision, Hold, Holding, Liquidate, Quote, Rebalance

# fraction overshoot tolerated before a rebalance fires (float noise)
EPSILON = 1e-9


def value_fraction(holding: Holding, price: float, total_value: float) -> float:
    if total_value <= 0:
        return 0.0
    return holding.value(price) / total_value


def decide(holding: Holding, quote: Quote, total_value: Optional[float], th: Thresholds) -> Decision:
    """`total_value=None` (portfolio not fully priced) disables rebalancing."""
    if not quote.available or holding.quantity <= 0:
        return Hold()
    price = float(quote.price)  # type: ignore[arg-type]

    if price <= holding.stop_loss_price:
        return Liquidate(quantity=holding.quantity, price=price)

    if total_value is None:
        return Hold()

    if value_fraction(holding, price, total_value) > th.max_allocation + EPSILON:
        # selling at `price` leaves total_value unchanged, so the target
        # quantity is simply max_allocation of the total at that price
        target_qty = th.max_allocation * total_value / price
        return Rebalance(delta_quantity=target_qty - holding.quantity, price=price)

    return Hold()


def recommend(score: Optional[float], positive: float, negative: float) -> Optional[str]:
    """Advisory label for the display collaborator; None without a score."""
    if score is None:
        return None
    if score >= positive:
        return ADVICE_BUY
    if score <= negative:
        return ADVICE_SELL
    return ADVICE_MONITOR
