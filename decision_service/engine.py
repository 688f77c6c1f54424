"""
engine.py – portfolio valuation, decision transitions, ledger replay
====================================================================

`evaluate()` values the portfolio once per tick and asks `rules.decide`
for one Decision per holding. `apply_decision()` is the only place a
PortfolioState changes; it works on a copy and refuses (never clamps) any
transition that would leave negative cash or quantity. `replay()` folds a
ledger over the genesis portfolio, re-applying every decision and checking
it lands on the recorded result.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from shared.config import HoldingSpec, Thresholds
from shared.errors import InvariantViolation
from shared.logging import get_logger
from shared.models import (
    Decision,
    Hold,
    Holding,
    LedgerEntry,
    Liquidate,
    PortfolioState,
    Quote,
    Rebalance,
)

from . import rules as R

log = get_logger("decision_service")

# ledger floats are compared with this relative tolerance on replay
REPLAY_TOL = 1e-9


def genesis_state(specs: Iterable[HoldingSpec], cash: float = 0.0) -> PortfolioState:
    """Portfolio as configured, before any ledger entry is applied."""
    return PortfolioState(
        holdings=[Holding(s.symbol, s.quantity, s.purchase_price, s.stop_loss_pct) for s in specs],
        cash=cash,
    )


def valuation_prices(state: PortfolioState, quotes: Mapping[str, Quote]) -> Dict[str, float]:
    """Tick price per holding; falls back to the last valuation price."""
    prices: Dict[str, float] = {}
    for h in state.holdings:
        q = quotes.get(h.symbol)
        if q is not None and q.available:
            prices[h.symbol] = float(q.price)  # type: ignore[arg-type]
        elif h.symbol in state.last_prices:
            prices[h.symbol] = state.last_prices[h.symbol]
        else:
            log.warning("%s has no price yet – excluded from valuation", h.symbol)
    return prices


def total_value(state: PortfolioState, prices: Mapping[str, float]) -> float:
    return state.cash + sum(h.value(prices[h.symbol]) for h in state.holdings if h.symbol in prices)


def valuation_complete(state: PortfolioState, prices: Mapping[str, float]) -> bool:
    """True if every holding has a valuation price."""
    return all(h.symbol in prices for h in state.holdings)


def evaluate(
    state: PortfolioState,
    quotes: Mapping[str, Quote],
    th: Thresholds,
) -> Tuple[Optional[float], List[Tuple[str, Decision]]]:
    """
    Decide every holding against the tick-start total value. The total is
    None while any holding has no price at all; rules then skip rebalancing.
    """
    prices = valuation_prices(state, quotes)
    total = total_value(state, prices) if valuation_complete(state, prices) else None
    decisions: List[Tuple[str, Decision]] = []
    for h in state.holdings:
        quote = quotes.get(h.symbol) or Quote(symbol=h.symbol)
        decisions.append((h.symbol, R.decide(h, quote, total, th)))
    return total, decisions


def apply_decision(state: PortfolioState, symbol: str, decision: Decision) -> PortfolioState:
    """Return the state after `decision`; raises InvariantViolation."""
    if isinstance(decision, Hold):
        return state

    new = state.copy()
    holding = new.holding(symbol)
    if holding is None:
        raise InvariantViolation(f"{symbol}: decision {decision.kind} for a holding that does not exist")

    if isinstance(decision, Liquidate):
        sold = decision.quantity
    elif isinstance(decision, Rebalance):
        sold = -decision.delta_quantity
    else:  # pragma: no cover
        raise InvariantViolation(f"{symbol}: unknown decision {decision!r}")

    if decision.price <= 0 or not math.isfinite(decision.price):
        raise InvariantViolation(f"{symbol}: non-positive trade price {decision.price}")
    if sold < 0:
        raise InvariantViolation(f"{symbol}: {decision.kind} would buy {-sold} units")

    quantity = holding.quantity - sold
    cash = new.cash + sold * decision.price
    if quantity < -REPLAY_TOL * max(1.0, holding.quantity):
        raise InvariantViolation(f"{symbol}: resulting quantity {quantity} is negative")
    if cash < 0:
        raise InvariantViolation(f"{symbol}: resulting cash {cash} is negative")

    new.cash = cash
    new.last_prices[symbol] = decision.price
    if isinstance(decision, Liquidate) or quantity <= 0:
        new.holdings = [h for h in new.holdings if h.symbol != symbol]
    else:
        holding.quantity = quantity
    return new


def resulting_quantity(state: PortfolioState, symbol: str) -> float:
    h = state.holding(symbol)
    return 0.0 if h is None else h.quantity


def replay(genesis: PortfolioState, entries: Iterable[LedgerEntry]) -> PortfolioState:
    """Fold ledger entries (ascending seq) over the genesis portfolio."""
    state = genesis.copy()
    for entry in entries:
        if entry.seq <= state.last_seq:
            raise InvariantViolation(f"ledger seq {entry.seq} is not after {state.last_seq}")
        state = apply_decision(state, entry.symbol, entry.decision)
        qty = resulting_quantity(state, entry.symbol)
        if not (math.isclose(state.cash, entry.resulting_cash, rel_tol=REPLAY_TOL, abs_tol=1e-9)
                and math.isclose(qty, entry.resulting_quantity, rel_tol=REPLAY_TOL, abs_tol=1e-9)):
            raise InvariantViolation(
                f"ledger seq {entry.seq} ({entry.symbol}) diverges: replay cash={state.cash} "
                f"qty={qty}, recorded cash={entry.resulting_cash} qty={entry.resulting_quantity}"
            )
        # recorded values win so repeated replays are bit-identical
        state.cash = entry.resulting_cash
        h = state.holding(entry.symbol)
        if h is not None:
            h.quantity = entry.resulting_quantity
        state.last_seq = entry.seq
        state.last_updated = entry.timestamp
    return state


def settle(state: PortfolioState, prices: Mapping[str, float], now: float) -> PortfolioState:
    """
    Stamp valuation fields after a tick; enforces the value identity.
    A partial valuation never replaces `last_total_value`.
    """
    new = state.copy()
    for sym, px in prices.items():
        if new.holding(sym) is not None:
            new.last_prices[sym] = px
    for h in new.holdings:
        if h.quantity < 0:
            raise InvariantViolation(f"{h.symbol}: quantity {h.quantity} after tick")
    if new.cash < 0:
        raise InvariantViolation(f"cash {new.cash} after tick")
    if valuation_complete(new, new.last_prices):
        new.last_total_value = total_value(new, new.last_prices)
    else:
        log.warning("valuation incomplete – last total $%.2f kept", new.last_total_value)
    new.last_updated = now
    return new
